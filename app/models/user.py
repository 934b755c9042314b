"""ORM model for application users (credentials, role, active refresh session)."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, String

from app.models.base import Base


def _new_user_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


class User(Base):
    """
    User account for JWT authentication and role-based access control.

    role: 'admin' or 'user', fixed at registration.
    refresh_token_hash: SHA-256 fingerprint of the one valid refresh token, or
    NULL when the user has no active session.
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_user_id)
    username = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(32), nullable=False, default="user")
    refresh_token_hash = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
