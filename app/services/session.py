"""
Session lifecycle: register, login, refresh (with rotation), logout, profile.

Single active session per user: login and refresh overwrite the stored
refresh-token fingerprint, logout clears it. A refresh token is only
accepted while its fingerprint is the stored one.
"""

import logging
from functools import lru_cache

from app.core.security import (
    BCRYPT_ROUNDS,
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    USERNAME_MAX_LEN,
    USERNAME_MIN_LEN,
    fingerprint_token,
    fingerprints_match,
    hash_password,
    verify_password,
)
from app.core.tokens import InvalidTokenError, TokenIssuer
from app.schemas.auth import LoginResponse, TokenPair, UserProfile, UserSummary
from app.services.errors import (
    INVALID_CREDENTIALS,
    INVALID_TOKEN,
    AuthenticationError,
    NotFoundError,
    ValidationError,
)
from app.services.user_store import UserStore

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"
ROLE_USER = "user"


@lru_cache
def _dummy_hash(rounds: int) -> str:
    """Per-process bcrypt hash verified against when the username is unknown."""
    return hash_password("dummy-password", rounds=rounds)


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def normalize_role(role: object) -> str:
    """Exactly 'admin' stays admin; any other value (missing, unknown, wrong type) is 'user'."""
    return ROLE_ADMIN if role == ROLE_ADMIN else ROLE_USER


class SessionManager:
    """Orchestrates the credential store, password hasher and token issuer."""

    def __init__(
        self,
        store: UserStore,
        issuer: TokenIssuer,
        bcrypt_rounds: int = BCRYPT_ROUNDS,
    ) -> None:
        self.store = store
        self.issuer = issuer
        self.bcrypt_rounds = bcrypt_rounds

    def _burn_verify(self, password: str) -> None:
        # Unknown usernames still pay for one bcrypt verify.
        verify_password(password, _dummy_hash(self.bcrypt_rounds))

    def register(
        self,
        username: str | None,
        password: str | None,
        role: object = None,
    ) -> UserSummary:
        if _is_blank(username) or _is_blank(password):
            raise ValidationError("username and password required")
        if not (USERNAME_MIN_LEN <= len(username) <= USERNAME_MAX_LEN):
            raise ValidationError("Invalid username length.")
        if not (PASSWORD_MIN_LEN <= len(password) <= PASSWORD_MAX_LEN):
            raise ValidationError("Invalid password length.")

        user = self.store.create(
            username=username,
            password_hash=hash_password(password, rounds=self.bcrypt_rounds),
            role=normalize_role(role),
        )
        logger.info(
            "User registered",
            extra={"user_id": user.id, "username": user.username, "role": user.role},
        )
        return UserSummary.model_validate(user)

    def login(self, username: str | None, password: str | None) -> LoginResponse:
        if _is_blank(username) or _is_blank(password):
            raise ValidationError("username and password required")

        user = self.store.get_by_username(username)
        if user is None:
            self._burn_verify(password)
            logger.info("Login rejected", extra={"username": username})
            raise AuthenticationError(INVALID_CREDENTIALS)
        if not verify_password(password, user.password_hash):
            logger.info("Login rejected", extra={"username": username})
            raise AuthenticationError(INVALID_CREDENTIALS)

        access_token = self.issuer.issue_access(user.id, user.username, user.role)
        refresh_token = self.issuer.issue_refresh(user.id)
        # Overwrites any previous session's fingerprint.
        self.store.set_refresh_hash(user.id, fingerprint_token(refresh_token))
        logger.info("Login succeeded", extra={"user_id": user.id, "username": user.username})
        return LoginResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            user=UserSummary.model_validate(user),
        )

    def refresh(self, refresh_token: str | None) -> TokenPair:
        if not refresh_token:
            raise ValidationError("refreshToken required")

        try:
            claims = self.issuer.verify_refresh(refresh_token)
        except InvalidTokenError as e:
            logger.info("Refresh rejected: token failed verification")
            raise AuthenticationError(INVALID_TOKEN) from e

        user = self.store.get_by_id(claims.subject_id)
        presented = fingerprint_token(refresh_token)
        if user is None or not fingerprints_match(presented, user.refresh_token_hash):
            logger.warning(
                "Refresh rejected: token is not the active session",
                extra={"user_id": claims.subject_id},
            )
            raise AuthenticationError(INVALID_TOKEN)

        new_refresh = self.issuer.issue_refresh(user.id)
        if not self.store.rotate_refresh_hash(user.id, presented, fingerprint_token(new_refresh)):
            raise AuthenticationError(INVALID_TOKEN)

        logger.info("Refresh token rotated", extra={"user_id": user.id})
        return TokenPair(
            access_token=self.issuer.issue_access(user.id, user.username, user.role),
            refresh_token=new_refresh,
        )

    def logout(self, subject_id: str) -> None:
        """Revoke the active refresh token. Idempotent."""
        self.store.set_refresh_hash(subject_id, None)
        logger.info("User logged out", extra={"user_id": subject_id})

    def get_profile(self, subject_id: str) -> UserProfile:
        user = self.store.get_by_id(subject_id)
        if user is None:
            raise NotFoundError("user not found")
        return UserProfile.model_validate(user)

    def list_users(self) -> list[UserSummary]:
        return [UserSummary.model_validate(u) for u in self.store.list_users()]
