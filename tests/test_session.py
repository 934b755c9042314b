"""Unit tests for the session lifecycle (app.services.session) and its credential store."""

import tempfile
import threading
import unittest
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import bcrypt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import Settings
from app.core.security import fingerprint_token, hash_password
from app.core.tokens import TokenIssuer
from app.models import Base, User
from app.services.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from app.services.session import SessionManager, _dummy_hash, normalize_role
from app.services.user_store import UserStore


def _settings() -> Settings:
    return Settings(
        ACCESS_TOKEN_SECRET="session-access-secret",
        REFRESH_TOKEN_SECRET="session-refresh-secret",
        BCRYPT_ROUNDS=4,
        DATABASE_URL="sqlite://",
    )


def _memory_session() -> Session:
    """Fresh in-memory SQLite database with the users table."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False)()


class SessionTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _memory_session()
        self.store = UserStore(self.db)
        self.issuer = TokenIssuer(_settings())
        self.sessions = SessionManager(self.store, self.issuer, bcrypt_rounds=4)

    def tearDown(self) -> None:
        self.db.close()

    def stored_hash(self, user_id: str) -> str | None:
        self.db.expire_all()
        return self.db.get(User, user_id).refresh_token_hash


class TestNormalizeRole(unittest.TestCase):
    def test_only_exact_admin_is_admin(self) -> None:
        self.assertEqual(normalize_role("admin"), "admin")
        for value in (None, "user", "superadmin", "Admin", " admin", "", 1, ["admin"]):
            with self.subTest(value=value):
                self.assertEqual(normalize_role(value), "user")


class TestRegister(SessionTestCase):
    def test_register_defaults_to_user(self) -> None:
        summary = self.sessions.register("alice", "Secret123!")
        self.assertEqual(summary.username, "alice")
        self.assertEqual(summary.role, "user")
        uuid.UUID(summary.id)
        user = self.db.get(User, summary.id)
        self.assertIsNone(user.refresh_token_hash)
        self.assertNotEqual(user.password_hash, "Secret123!")
        self.assertIsNotNone(user.created_at)

    def test_register_admin(self) -> None:
        self.assertEqual(self.sessions.register("root", "pw", "admin").role, "admin")

    def test_unknown_role_falls_back_to_user(self) -> None:
        self.assertEqual(self.sessions.register("mallory", "pw", "superadmin").role, "user")

    def test_missing_fields(self) -> None:
        for username, password in (
            (None, "pw"),
            ("alice", None),
            ("", "pw"),
            ("alice", ""),
            ("   ", "pw"),
            ("alice", "   "),
            ("   ", "   "),
            ("\t\n", "pw"),
        ):
            with self.subTest(username=username, password=password):
                with self.assertRaises(ValidationError):
                    self.sessions.register(username, password)
        self.assertEqual(self.store.list_users(), [])

    def test_too_long(self) -> None:
        with self.assertRaises(ValidationError):
            self.sessions.register("a" * 256, "pw")
        with self.assertRaises(ValidationError):
            self.sessions.register("alice", "p" * 129)

    def test_duplicate_username_leaves_existing_user(self) -> None:
        first = self.sessions.register("alice", "Secret123!")
        with self.assertRaises(ConflictError):
            self.sessions.register("alice", "Other456!", "admin")
        users = self.store.list_users()
        self.assertEqual(len(users), 1)
        self.assertEqual(users[0].id, first.id)
        self.assertEqual(users[0].role, "user")
        self.sessions.login("alice", "Secret123!")

    def test_usernames_are_case_sensitive(self) -> None:
        self.sessions.register("alice", "pw")
        self.assertEqual(self.sessions.register("Alice", "pw").username, "Alice")

    def test_unique_index_conflict(self) -> None:
        self.sessions.register("alice", "pw")
        # Simulates a concurrent insert that passed the pre-check.
        self.store.get_by_username = MagicMock(return_value=None)  # type: ignore[method-assign]
        with self.assertRaises(ConflictError):
            self.store.create("alice", hash_password("pw", rounds=4), "user")


class TestLogin(SessionTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.user = self.sessions.register("alice", "Secret123!")

    def test_login_returns_pair_and_stores_fingerprint(self) -> None:
        result = self.sessions.login("alice", "Secret123!")
        self.assertTrue(result.access_token)
        self.assertTrue(result.refresh_token)
        self.assertEqual(result.user.id, self.user.id)
        self.assertEqual(self.stored_hash(self.user.id), fingerprint_token(result.refresh_token))
        claims = self.issuer.verify_access(result.access_token)
        self.assertEqual((claims.subject_id, claims.username, claims.role), (self.user.id, "alice", "user"))

    def test_wrong_password_and_unknown_user_are_indistinguishable(self) -> None:
        with self.assertRaises(AuthenticationError) as wrong_pw:
            self.sessions.login("alice", "nope")
        with self.assertRaises(AuthenticationError) as unknown:
            self.sessions.login("bob", "Secret123!")
        self.assertEqual(wrong_pw.exception.message, unknown.exception.message)
        self.assertEqual(wrong_pw.exception.status_code, unknown.exception.status_code)
        self.assertEqual(wrong_pw.exception.message, "invalid credentials")

    def test_failed_login_keeps_existing_session(self) -> None:
        result = self.sessions.login("alice", "Secret123!")
        with self.assertRaises(AuthenticationError):
            self.sessions.login("alice", "nope")
        self.assertEqual(self.stored_hash(self.user.id), fingerprint_token(result.refresh_token))

    def test_missing_fields(self) -> None:
        with self.assertRaises(ValidationError):
            self.sessions.login("alice", None)
        with self.assertRaises(ValidationError):
            self.sessions.login("   ", "Secret123!")
        with self.assertRaises(ValidationError):
            self.sessions.login("alice", "   ")

    def test_new_login_invalidates_previous_refresh_token(self) -> None:
        first = self.sessions.login("alice", "Secret123!")
        second = self.sessions.login("alice", "Secret123!")
        with self.assertRaises(AuthenticationError):
            self.sessions.refresh(first.refresh_token)
        self.assertTrue(self.sessions.refresh(second.refresh_token).access_token)


class TestRefresh(SessionTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.user = self.sessions.register("alice", "Secret123!")
        self.login = self.sessions.login("alice", "Secret123!")

    def test_rotation(self) -> None:
        v1 = self.login.refresh_token
        pair = self.sessions.refresh(v1)
        v2 = pair.refresh_token
        self.assertNotEqual(v1, v2)
        self.assertEqual(self.stored_hash(self.user.id), fingerprint_token(v2))
        self.assertEqual(self.issuer.verify_access(pair.access_token).subject_id, self.user.id)

        with self.assertRaises(AuthenticationError) as ctx:
            self.sessions.refresh(v1)
        self.assertEqual(ctx.exception.message, "invalid token")
        # The rejected replay must not disturb the active session.
        self.assertTrue(self.sessions.refresh(v2).refresh_token)

    def test_missing_token(self) -> None:
        with self.assertRaises(ValidationError):
            self.sessions.refresh(None)
        with self.assertRaises(ValidationError):
            self.sessions.refresh("")

    def test_garbage_token(self) -> None:
        with self.assertRaises(AuthenticationError):
            self.sessions.refresh("not-a-token")

    def test_access_token_cannot_refresh(self) -> None:
        with self.assertRaises(AuthenticationError):
            self.sessions.refresh(self.login.access_token)

    def test_expired_refresh_token(self) -> None:
        expired = self.issuer.issue_refresh(
            self.user.id, now=datetime.now(UTC) - timedelta(days=8)
        )
        self.store.set_refresh_hash(self.user.id, fingerprint_token(expired))
        with self.assertRaises(AuthenticationError):
            self.sessions.refresh(expired)

    def test_validly_signed_but_never_issued_token(self) -> None:
        forged = self.issuer.issue_refresh(self.user.id)
        with self.assertRaises(AuthenticationError):
            self.sessions.refresh(forged)
        self.assertEqual(self.stored_hash(self.user.id), fingerprint_token(self.login.refresh_token))

    def test_unknown_subject(self) -> None:
        with self.assertRaises(AuthenticationError):
            self.sessions.refresh(self.issuer.issue_refresh(str(uuid.uuid4())))

    def test_lost_compare_and_swap_fails(self) -> None:
        user = MagicMock(id="user-1", username="alice", role="user")
        token = self.issuer.issue_refresh("user-1")
        user.refresh_token_hash = fingerprint_token(token)
        store = MagicMock()
        store.get_by_id.return_value = user
        store.rotate_refresh_hash.return_value = False
        sessions = SessionManager(store, self.issuer, bcrypt_rounds=4)
        with self.assertRaises(AuthenticationError):
            sessions.refresh(token)
        store.rotate_refresh_hash.assert_called_once()


class TestRotateRefreshHash(SessionTestCase):
    """The store's conditional update lets exactly one of two racing rotations win."""

    def test_second_rotation_with_same_expected_hash_fails(self) -> None:
        user = self.sessions.register("alice", "pw")
        self.store.set_refresh_hash(user.id, "h1")
        self.assertTrue(self.store.rotate_refresh_hash(user.id, "h1", "h2"))
        self.assertFalse(self.store.rotate_refresh_hash(user.id, "h1", "h3"))
        self.assertEqual(self.stored_hash(user.id), "h2")

    def test_no_rotation_after_logout(self) -> None:
        user = self.sessions.register("alice", "pw")
        self.store.set_refresh_hash(user.id, "h1")
        self.store.set_refresh_hash(user.id, None)
        self.assertFalse(self.store.rotate_refresh_hash(user.id, "h1", "h2"))
        self.assertIsNone(self.stored_hash(user.id))


class TestConcurrentRefresh(unittest.TestCase):
    """Two threads refreshing with the same token against a shared file database."""

    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.engine = create_engine(
            f"sqlite:///{Path(tmp.name) / 'users.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        self.addCleanup(self.engine.dispose)
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False)
        self.issuer = TokenIssuer(_settings())

        db = self.session_factory()
        try:
            sessions = SessionManager(UserStore(db), self.issuer, bcrypt_rounds=4)
            self.user_id = sessions.register("alice", "Secret123!").id
            self.refresh_token = sessions.login("alice", "Secret123!").refresh_token
        finally:
            db.close()

    def test_only_one_of_two_racing_refreshes_wins(self) -> None:
        barrier = threading.Barrier(2)
        outcomes: list[str] = []
        new_tokens: list[str] = []
        lock = threading.Lock()

        def worker() -> None:
            db = self.session_factory()
            try:
                sessions = SessionManager(UserStore(db), self.issuer, bcrypt_rounds=4)
                barrier.wait()
                try:
                    pair = sessions.refresh(self.refresh_token)
                except AuthenticationError:
                    with lock:
                        outcomes.append("rejected")
                else:
                    with lock:
                        outcomes.append("rotated")
                        new_tokens.append(pair.refresh_token)
            except Exception as e:
                with lock:
                    outcomes.append(f"error: {e!r}")
            finally:
                db.close()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        self.assertEqual(sorted(outcomes), ["rejected", "rotated"])
        db = self.session_factory()
        try:
            stored = db.get(User, self.user_id).refresh_token_hash
        finally:
            db.close()
        self.assertEqual(stored, fingerprint_token(new_tokens[0]))


class TestDummyHashCache(SessionTestCase):
    """Unknown-username logins reuse one dummy hash per process instead of hashing per request."""

    def test_unknown_user_logins_do_not_hash(self) -> None:
        _dummy_hash(4)
        with patch("bcrypt.hashpw", wraps=bcrypt.hashpw) as hashpw:
            for _ in range(3):
                per_request = SessionManager(UserStore(self.db), self.issuer, bcrypt_rounds=4)
                with self.assertRaises(AuthenticationError):
                    per_request.login("bob", "Secret123!")
        self.assertEqual(hashpw.call_count, 0)

    def test_unknown_user_still_pays_for_a_verify(self) -> None:
        with patch("bcrypt.checkpw", wraps=bcrypt.checkpw) as checkpw:
            with self.assertRaises(AuthenticationError):
                self.sessions.login("bob", "Secret123!")
        self.assertEqual(checkpw.call_count, 1)
        self.assertIn("$04$", _dummy_hash(4))


class TestLogout(SessionTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.user = self.sessions.register("alice", "Secret123!")

    def test_logout_revokes_and_is_idempotent(self) -> None:
        login = self.sessions.login("alice", "Secret123!")
        self.sessions.logout(self.user.id)
        self.assertIsNone(self.stored_hash(self.user.id))
        self.sessions.logout(self.user.id)
        self.assertIsNone(self.stored_hash(self.user.id))
        with self.assertRaises(AuthenticationError):
            self.sessions.refresh(login.refresh_token)

    def test_logout_without_session(self) -> None:
        self.sessions.logout(self.user.id)
        self.assertIsNone(self.stored_hash(self.user.id))

    def test_logout_unknown_user(self) -> None:
        self.sessions.logout(str(uuid.uuid4()))


class TestProfile(SessionTestCase):
    def test_profile(self) -> None:
        user = self.sessions.register("alice", "Secret123!", "admin")
        profile = self.sessions.get_profile(user.id)
        self.assertEqual((profile.id, profile.username, profile.role), (user.id, "alice", "admin"))
        self.assertIsNotNone(profile.created_at)
        dumped = profile.model_dump(by_alias=True)
        self.assertEqual(set(dumped), {"id", "username", "role", "createdAt"})

    def test_profile_missing_user(self) -> None:
        with self.assertRaises(NotFoundError):
            self.sessions.get_profile(str(uuid.uuid4()))

    def test_list_users(self) -> None:
        self.sessions.register("alice", "pw")
        self.sessions.register("bob", "pw", "admin")
        users = self.sessions.list_users()
        self.assertEqual({u.username for u in users}, {"alice", "bob"})
        self.assertNotIn("password_hash", users[0].model_dump())


if __name__ == "__main__":
    unittest.main()
