"""Bearer-token request authentication."""

from fastapi.security import HTTPAuthorizationCredentials

from app.core.tokens import AccessClaims, InvalidTokenError, TokenIssuer
from app.services.errors import INVALID_TOKEN, AuthenticationError, Unauthenticated


def authenticate(
    credentials: HTTPAuthorizationCredentials | None,
    issuer: TokenIssuer,
) -> AccessClaims:
    """
    Authenticate a request from the credentials HTTPBearer extracted.

    Raises Unauthenticated when no bearer token is present and
    AuthenticationError when the token does not verify as an access token.
    """
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("missing token")
    try:
        return issuer.verify_access(credentials.credentials)
    except InvalidTokenError as e:
        raise AuthenticationError(INVALID_TOKEN) from e
