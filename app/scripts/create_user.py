"""
Create a user (e.g. the first admin) without going through the HTTP API. Run from project root:
  python -m app.scripts.create_user USERNAME PASSWORD [role]
Example:
  python -m app.scripts.create_user admin your-secure-password admin
"""
import argparse
import sys

from app.core.config import get_settings
from app.core.database import SessionLocal
from app.core.tokens import TokenIssuer
from app.services.errors import AuthServiceError
from app.services.session import SessionManager
from app.services.user_store import UserStore


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create a MicroStore user.")
    parser.add_argument("username", help="Username (1-255 chars)")
    parser.add_argument("password", help="Password (1-128 chars)")
    parser.add_argument("role", nargs="?", default="user", choices=["user", "admin"])
    args = parser.parse_args(argv)

    settings = get_settings()
    db = SessionLocal()
    try:
        sessions = SessionManager(
            UserStore(db), TokenIssuer(settings), bcrypt_rounds=settings.BCRYPT_ROUNDS
        )
        try:
            user = sessions.register(args.username.strip(), args.password, args.role)
        except AuthServiceError as e:
            print(f"Could not create user '{args.username}': {e.message}", file=sys.stderr)
            return 1
        print(f"Created user '{user.username}' ({user.id}) with role '{user.role}'.")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
