"""
auth/errors.py -- Exception taxonomy for the auth package.

Caller-facing errors (AuthError subclasses) carry an HTTP status_code and a
stable code. api.main registers one handler that turns them into the
{"error": {"code", "message"}} envelope, so services raise them directly.

Token codec errors and refresh store errors are internal. AuthService catches
them and re-raises a generic UnauthorizedError -- callers never learn which
check failed.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for caller-facing auth errors."""

    status_code: int = 400
    code: str = "bad_request"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(AuthError):
    status_code = 400
    code = "validation_error"


class ResetTokenExpiredError(ValidationError):
    code = "token_expired"


class UnauthorizedError(AuthError):
    status_code = 401
    code = "unauthorized"


class ForbiddenError(AuthError):
    status_code = 403
    code = "forbidden"


class NotFoundError(AuthError):
    status_code = 404
    code = "not_found"


class ConflictError(AuthError):
    status_code = 409
    code = "conflict"


# ---------------------------------------------------------------------------
# Token codec
# ---------------------------------------------------------------------------


class TokenError(Exception):
    """Any failure to verify a signed token."""


class InvalidSignatureError(TokenError):
    pass


class TokenExpiredError(TokenError):
    pass


class MalformedTokenError(TokenError):
    pass


# ---------------------------------------------------------------------------
# Refresh token store
# ---------------------------------------------------------------------------


class RefreshTokenError(Exception):
    """Any failure to validate or rotate a stored refresh token."""


class RefreshTokenNotFoundError(RefreshTokenError):
    pass


class RefreshTokenRevokedError(RefreshTokenError):
    pass


class RefreshTokenExpiredError(RefreshTokenError):
    pass


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class DuplicateKeyError(Exception):
    """A unique constraint was violated. field names the conflicting column."""

    def __init__(self, field: str) -> None:
        super().__init__(f"duplicate value for unique field {field!r}")
        self.field = field
