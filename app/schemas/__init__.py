"""Pydantic request/response schemas."""

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
from app.schemas.health import HealthResponse

__all__ = [
    "HealthResponse",
    "LoginRequest",
    "LoginResponse",
    "LogoutResponse",
    "RefreshRequest",
    "RegisterRequest",
    "TokenPair",
    "UserProfile",
    "UserSummary",
    "UsersListResponse",
]
