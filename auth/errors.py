"""
auth/errors.py -- Exception taxonomy for the authentication engine.

Every failure the engine reports is an AuthError subclass carrying a stable
error_code and the HTTP status the API layer should use. api/main.py turns
them into the shared {"error": {...}} envelope; nothing in auth/ knows about
HTTP responses beyond the numeric status.

Forbidden and Unauthenticated are never conflated: a missing, malformed or
expired access token is Unauthenticated (401); a valid identity lacking the
declared permissions is Forbidden (403).
"""

from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    """Base class for engine failures mapped to HTTP responses."""

    status_code: int = 400
    error_code: str = "auth_error"

    def __init__(self, message: str, *, detail: Optional[dict] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ValidationError(AuthError):
    """Malformed input. detail["fields"] maps field name -> list of messages."""

    status_code = 422
    error_code = "validation_error"

    def __init__(self, message: str, *, fields: Optional[dict[str, list[str]]] = None) -> None:
        super().__init__(message, detail={"fields": fields or {}})
        self.fields = fields or {}


class InvalidCredentials(AuthError):
    """Wrong email or secret. Generic on purpose: never says which."""

    status_code = 401
    error_code = "invalid_credentials"

    def __init__(self, message: str = "Invalid email or password.") -> None:
        super().__init__(message)


class AccountLocked(AuthError):
    """Temporary lockout after too many failures. retry_after is in seconds."""

    status_code = 423
    error_code = "account_locked"

    def __init__(self, retry_after: int) -> None:
        retry_after = max(1, int(retry_after))
        super().__init__(
            "Account temporarily locked. Try again later.",
            detail={"retry_after": retry_after},
        )
        self.retry_after = retry_after


class Unauthenticated(AuthError):
    """Missing, malformed, or expired access token."""

    status_code = 401
    error_code = "unauthenticated"

    def __init__(self, message: str = "Authentication required.") -> None:
        super().__init__(message)


class Forbidden(AuthError):
    """Valid identity, insufficient permissions or roles.

    The message is fixed so responses never reveal which permission was
    missing.
    """

    status_code = 403
    error_code = "forbidden"

    def __init__(self) -> None:
        super().__init__("Access denied.")


class RefreshInvalid(AuthError):
    """Refresh token absent, expired, revoked, or already rotated."""

    status_code = 401
    error_code = "refresh_invalid"

    def __init__(self, message: str = "Refresh token is invalid or expired.") -> None:
        super().__init__(message)


class Conflict(AuthError):
    status_code = 409
    error_code = "conflict"


class NotFound(AuthError):
    status_code = 404
    error_code = "not_found"
