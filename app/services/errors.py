"""Error taxonomy for the authentication/session services."""


class AuthServiceError(Exception):
    """Base class for service errors; status_code is the HTTP status the API maps it to."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(AuthServiceError):
    """Malformed or missing input."""

    status_code = 400


class AuthenticationError(AuthServiceError):
    """Bad credentials or an invalid, expired, rotated or revoked token."""

    status_code = 401


class Unauthenticated(AuthServiceError):
    """No usable bearer credential was presented; verification was not attempted."""

    status_code = 401


class NotFoundError(AuthServiceError):
    """The referenced user no longer exists."""

    status_code = 404


class ConflictError(AuthServiceError):
    """Uniqueness violation (username already taken)."""

    status_code = 409


INVALID_CREDENTIALS = "invalid credentials"
INVALID_TOKEN = "invalid token"
