"""Signed access/refresh JWT issuance and verification."""

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

import jwt

if TYPE_CHECKING:
    from app.core.config import Settings


class TokenKind(str, Enum):
    """Which secret and type marker a token is checked against."""

    ACCESS = "access"
    REFRESH = "refresh"


class InvalidTokenError(Exception):
    """Raised when a token has a bad signature, is expired, or is the wrong kind."""

    def __init__(self, message: str = "invalid token") -> None:
        self.message = message
        super().__init__(message)


@dataclass(frozen=True)
class AccessClaims:
    """Identity carried by a verified access token."""

    subject_id: str
    username: str
    role: str


@dataclass(frozen=True)
class RefreshClaims:
    """Claims carried by a verified refresh token."""

    subject_id: str
    token_id: str


class TokenIssuer:
    """
    Creates and verifies access and refresh tokens.

    Access and refresh tokens are signed with different secrets and carry a
    `type` claim, so one kind never verifies as the other.
    """

    def __init__(self, settings: "Settings") -> None:
        self._algorithm = settings.JWT_ALGORITHM
        self._secrets = {
            TokenKind.ACCESS: settings.ACCESS_TOKEN_SECRET.get_secret_value(),
            TokenKind.REFRESH: settings.REFRESH_TOKEN_SECRET.get_secret_value(),
        }
        self._ttls = {
            TokenKind.ACCESS: settings.ACCESS_TOKEN_TTL,
            TokenKind.REFRESH: settings.REFRESH_TOKEN_TTL,
        }

    def _encode(self, kind: TokenKind, claims: dict[str, Any], now: datetime | None) -> str:
        issued_at = now or datetime.now(UTC)
        payload: dict[str, Any] = {
            **claims,
            "type": kind.value,
            "iat": issued_at,
            "exp": issued_at + self._ttls[kind],
        }
        return jwt.encode(payload, self._secrets[kind], algorithm=self._algorithm)

    def issue_access(
        self,
        subject_id: str,
        username: str,
        role: str,
        now: datetime | None = None,
    ) -> str:
        """Create an access token with sub, username, role, and exp."""
        return self._encode(
            TokenKind.ACCESS,
            {"sub": str(subject_id), "username": username, "role": role},
            now,
        )

    def issue_refresh(self, subject_id: str, now: datetime | None = None) -> str:
        """Create a refresh token; jti makes every token unique even within one second."""
        return self._encode(
            TokenKind.REFRESH,
            {"sub": str(subject_id), "jti": uuid.uuid4().hex},
            now,
        )

    def decode(self, token: str, kind: TokenKind) -> dict[str, Any]:
        """
        Decode and validate a token of the given kind; return the raw payload.
        Raises InvalidTokenError on bad signature, expiry, or wrong type.
        """
        kind = TokenKind(kind)
        if not token:
            raise InvalidTokenError()
        try:
            payload = jwt.decode(
                token,
                self._secrets[kind],
                algorithms=[self._algorithm],
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.PyJWTError as e:
            raise InvalidTokenError() from e
        if payload.get("type") != kind.value:
            raise InvalidTokenError()
        if not isinstance(payload.get("sub"), str) or not payload["sub"]:
            raise InvalidTokenError()
        return payload

    def verify_access(self, token: str) -> AccessClaims:
        payload = self.decode(token, TokenKind.ACCESS)
        username = payload.get("username")
        role = payload.get("role")
        if not isinstance(username, str) or not isinstance(role, str):
            raise InvalidTokenError()
        return AccessClaims(subject_id=payload["sub"], username=username, role=role)

    def verify_refresh(self, token: str) -> RefreshClaims:
        payload = self.decode(token, TokenKind.REFRESH)
        token_id = payload.get("jti")
        if not isinstance(token_id, str) or not token_id:
            raise InvalidTokenError()
        return RefreshClaims(subject_id=payload["sub"], token_id=token_id)

    def verify(self, token: str, kind: TokenKind) -> AccessClaims | RefreshClaims:
        """Verify a token of either kind and return its typed claims."""
        if TokenKind(kind) is TokenKind.ACCESS:
            return self.verify_access(token)
        return self.verify_refresh(token)
