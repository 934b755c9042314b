"""Password hashing and refresh-token fingerprints."""

import hashlib
import hmac

import bcrypt

# Default bcrypt cost (rounds); overridden by settings.BCRYPT_ROUNDS at the service layer.
BCRYPT_ROUNDS = 10

# Min/max lengths for username and password validation (column limits).
USERNAME_MIN_LEN = 1
USERNAME_MAX_LEN = 255
PASSWORD_MIN_LEN = 1
PASSWORD_MAX_LEN = 128


def hash_password(plain_password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """Hash a plain-text password for storage. Do not store plain passwords."""
    # bcrypt has a 72-byte limit; truncate to avoid errors (validation already limits length).
    pw_bytes = plain_password.encode("utf-8")[:72]
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain_password: str, hashed: str) -> bool:
    """Verify a plain password against a stored hash."""
    pw_bytes = plain_password.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def fingerprint_token(token: str) -> str:
    """
    SHA-256 hex digest of a refresh token.

    Deterministic (unlike bcrypt) so the store can match it in a conditional UPDATE.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def fingerprints_match(presented: str, stored: str | None) -> bool:
    """Constant-time comparison of two token fingerprints."""
    if stored is None:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), stored.encode("utf-8"))
