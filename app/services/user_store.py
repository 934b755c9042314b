"""Credential store: persisted user records and the refresh-token fingerprint."""

import logging
from datetime import UTC, datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models import User
from app.services.errors import ConflictError

logger = logging.getLogger(__name__)


class UserStore:
    """
    Thin repository over the users table.

    Every mutating call commits its own transaction, so each session operation
    is atomic at the single-request level.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_by_username(self, username: str) -> User | None:
        return self.db.query(User).filter(User.username == username).first()

    def get_by_id(self, user_id: str) -> User | None:
        return self.db.get(User, user_id)

    def list_users(self) -> list[User]:
        return self.db.query(User).order_by(User.created_at, User.username).all()

    def create(self, username: str, password_hash: str, role: str) -> User:
        """
        Insert a new user with no active session.
        Raises ConflictError if the username is taken (checked first, then by the unique index).
        """
        if self.get_by_username(username) is not None:
            raise ConflictError("username taken")
        user = User(
            username=username,
            password_hash=password_hash,
            role=role,
            refresh_token_hash=None,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError("username taken") from e
        self.db.refresh(user)
        return user

    def set_refresh_hash(self, user_id: str, refresh_hash: str | None) -> bool:
        """
        Unconditionally replace (or clear, with None) the stored fingerprint.
        Returns False when no such user exists.
        """
        result = self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(refresh_token_hash=refresh_hash, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def rotate_refresh_hash(self, user_id: str, expected_hash: str, new_hash: str) -> bool:
        """
        Compare-and-swap the stored fingerprint in a single UPDATE.

        Only succeeds if the stored value still equals expected_hash, so two
        concurrent refreshes with the same token cannot both rotate.
        """
        result = self.db.execute(
            update(User)
            .where(User.id == user_id, User.refresh_token_hash == expected_hash)
            .values(refresh_token_hash=new_hash, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        rotated = result.rowcount == 1
        if not rotated:
            logger.warning(
                "Refresh rotation lost compare-and-swap",
                extra={"user_id": user_id},
            )
        return rotated
