"""Register/login/refresh/logout routes and auth dependencies (get_current_user, require_admin)."""

from typing import Annotated, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.core.tokens import AccessClaims, TokenIssuer
from app.schemas.auth import (
    LoginRequest,
    LoginResponse,
    LogoutResponse,
    RefreshRequest,
    RegisterRequest,
    TokenPair,
    UserProfile,
    UserSummary,
    UsersListResponse,
)
from app.services.authenticator import authenticate
from app.services.errors import AuthServiceError
from app.services.session import ROLE_ADMIN, SessionManager
from app.services.user_store import UserStore

router = APIRouter()
security = HTTPBearer(auto_error=False)


def get_token_issuer(
    settings: Annotated[Settings, Depends(get_settings)],
) -> TokenIssuer:
    """Dependency: token issuer built from the current settings."""
    return TokenIssuer(settings)


def get_session_manager(
    db: Annotated[Session, Depends(get_db)],
    issuer: Annotated[TokenIssuer, Depends(get_token_issuer)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> SessionManager:
    """Dependency: session manager bound to this request's DB session."""
    return SessionManager(UserStore(db), issuer, bcrypt_rounds=settings.BCRYPT_ROUNDS)


def _raise_http(e: AuthServiceError) -> NoReturn:
    headers = {"WWW-Authenticate": "Bearer"} if e.status_code == 401 else None
    raise HTTPException(status_code=e.status_code, detail=e.message, headers=headers) from e


def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    issuer: Annotated[TokenIssuer, Depends(get_token_issuer)],
) -> AccessClaims:
    """
    Dependency: require a valid Bearer access token. Raises 401 if missing or invalid.
    The verified claims are also stored on request.state.claims.
    """
    try:
        claims = authenticate(credentials, issuer)
    except AuthServiceError as e:
        _raise_http(e)
    request.state.claims = claims
    return claims


def require_admin(
    current_user: Annotated[AccessClaims, Depends(get_current_user)],
) -> AccessClaims:
    """Dependency: require authenticated user with role 'admin'. Raises 403 for non-admin."""
    if current_user.role != ROLE_ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


@router.post("/register", response_model=UserSummary, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
) -> UserSummary:
    """Create a user. role is 'admin' only when exactly 'admin' is sent; otherwise 'user'."""
    try:
        return sessions.register(body.username, body.password, body.role)
    except AuthServiceError as e:
        _raise_http(e)


@router.post("/login", response_model=LoginResponse)
def login(
    body: LoginRequest,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
) -> LoginResponse:
    """
    Authenticate with username and password; returns an access/refresh token pair.
    Include the access token in the Authorization header as: Bearer <accessToken>
    """
    try:
        return sessions.login(body.username, body.password)
    except AuthServiceError as e:
        _raise_http(e)


@router.post("/refresh-token", response_model=TokenPair)
def refresh_token(
    body: RefreshRequest,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
) -> TokenPair:
    """Exchange a refresh token for a new pair. The presented refresh token stops working."""
    try:
        return sessions.refresh(body.refresh_token)
    except AuthServiceError as e:
        _raise_http(e)


@router.post("/logout", response_model=LogoutResponse)
def logout(
    current_user: Annotated[AccessClaims, Depends(get_current_user)],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
) -> LogoutResponse:
    """Revoke the caller's refresh token. Safe to call repeatedly."""
    sessions.logout(current_user.subject_id)
    return LogoutResponse(ok=True)


@router.get("/me", response_model=UserProfile)
def me(
    current_user: Annotated[AccessClaims, Depends(get_current_user)],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
) -> UserProfile:
    """Profile of the authenticated user."""
    try:
        return sessions.get_profile(current_user.subject_id)
    except AuthServiceError as e:
        _raise_http(e)


@router.get("/users", response_model=UsersListResponse)
def list_users(
    _admin: Annotated[AccessClaims, Depends(require_admin)],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
) -> UsersListResponse:
    """List all users (admin only). Demonstrates RBAC."""
    return UsersListResponse(users=sessions.list_users())
