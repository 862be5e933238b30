"""
client/errors.py -- Failures surfaced by the client session layer.

SessionError is the base class. Callers normally catch
ReauthenticationRequired and send the user back to the login screen.
"""

from __future__ import annotations

from typing import Optional

import httpx


class SessionError(Exception):
    """Base class for client session failures."""


class InvalidTransition(SessionError):
    """A session state change that the state machine does not allow."""


class LoginFailed(SessionError):
    """Login or registration was rejected by the server.

    Carries the server's error envelope: error_code is one of
    invalid_credentials, account_locked, validation_error, forbidden, ...
    retry_after is set for account_locked.
    """

    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        detail: Optional[dict] = None,
        retry_after: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        self.detail = detail or {}
        self.retry_after = retry_after

    @classmethod
    def from_response(cls, response: httpx.Response) -> "LoginFailed":
        try:
            error = response.json().get("error", {})
        except ValueError:
            error = {}
        detail = error.get("detail") if isinstance(error.get("detail"), dict) else {}
        retry_after = response.headers.get("Retry-After")
        return cls(
            status_code=response.status_code,
            error_code=error.get("code", f"http_{response.status_code}"),
            message=error.get("message", "Login failed."),
            detail=detail,
            retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
        )


class ReauthenticationRequired(SessionError):
    """The session is gone (refresh rejected or never logged in). Log in again."""


class RefreshTimeout(ReauthenticationRequired):
    """The shared refresh did not settle within the configured timeout."""


class SessionCleared(SessionError):
    """The session was torn down (logout) while this call waited on a refresh."""


class RequestUnauthorized(SessionError):
    """The call was still rejected with 401 after one refresh and one retry."""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"{response.request.method} {response.request.url.path} unauthorized after refresh")
        self.response = response
