"""Request/response schemas for auth endpoints."""

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class RegisterRequest(BaseModel):
    """
    Registration payload. Fields are optional here so that missing values are
    reported by the session service as a 400 rather than a schema error.
    """

    username: str | None = Field(default=None, description="Unique, case-sensitive username")
    password: str | None = Field(default=None, description="Plain-text password")
    role: Any = Field(default=None, description="'admin' or anything else for 'user'")


class LoginRequest(BaseModel):
    """Credentials for login."""

    username: str | None = Field(default=None, description="Username")
    password: str | None = Field(default=None, description="Password")


class RefreshRequest(BaseModel):
    """Refresh token presented for rotation."""

    refresh_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("refreshToken", "refresh_token"),
        description="Refresh token from login or the previous refresh",
    )


class UserSummary(BaseModel):
    """Public user fields (no password or refresh hash)."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    username: str
    role: str


class UserProfile(UserSummary):
    """Response for GET /me."""

    created_at: datetime = Field(alias="createdAt")


class TokenPair(BaseModel):
    """Access/refresh pair returned by POST /refresh-token."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken")
    refresh_token: str = Field(alias="refreshToken")


class LoginResponse(TokenPair):
    """Token pair plus the authenticated user, returned by POST /login."""

    user: UserSummary


class LogoutResponse(BaseModel):
    """Acknowledgement returned by POST /logout."""

    ok: bool = True


class UsersListResponse(BaseModel):
    """Response for GET /users (admin only)."""

    users: list[UserSummary]
