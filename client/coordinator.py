"""
client/coordinator.py -- Bearer attachment and single-flight refresh over httpx.

SessionCoordinator sits between the admin UI and the API:

  request()  -- attach "Authorization: Bearer <access>" and send. On a 401
                with error code "unauthenticated" for a call not yet
                retried, wait for a refresh and retry the call exactly once
                with the new access token. A second 401 is surfaced as
                RequestUnauthorized. Other 401s are returned as-is.
  refresh    -- single-flight. The first 401 starts one refresh task and
                records its outcome future; every 401 seen while it runs
                awaits that same future instead of starting another. A call
                whose 401 was for an access token that has already been
                replaced skips straight to the retry.
  failure    -- a rejected, failed, malformed or timed-out refresh clears
                the session and raises ReauthenticationRequired
                (RefreshTimeout for the timeout) in every waiter. The
                timeout covers the whole exchange, parsing included.
                Nothing refreshes again until the user logs in.
  logout()   -- clear the session, release pending waiters with
                SessionCleared, cancel the refresh task, then tell the server
                to revoke the refresh token (best effort).

All state lives on one event loop; the coordinator is not thread-safe.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

import httpx

from client.errors import (
    LoginFailed,
    ReauthenticationRequired,
    RefreshTimeout,
    RequestUnauthorized,
    SessionCleared,
    SessionError,
)
from client.session import ClientSession, SessionState, UserSnapshot

logger = logging.getLogger("techgadgets.client")

_DEFAULT_REFRESH_TIMEOUT = 10.0


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _access_token_rejected(response: httpx.Response) -> bool:
    """True for a 401 about the access token itself.

    The server marks those with error code "unauthenticated". A 401 without
    a readable envelope is treated the same way; any other code is left to
    the caller.
    """
    if response.status_code != 401:
        return False
    try:
        code = response.json()["error"]["code"]
    except (ValueError, KeyError, TypeError):
        return True
    return code == "unauthenticated"


def _read_pair(body: Any) -> dict:
    """Map a login/refresh envelope onto ClientSession.establish() arguments."""
    try:
        return {
            "access_token": body["access_token"],
            "refresh_token": body["refresh_token"],
            "access_expires_at": datetime.fromisoformat(body["expires_at"]),
            "user": UserSnapshot.from_payload(body["user"]),
        }
    except (KeyError, TypeError, ValueError) as exc:
        raise ReauthenticationRequired(f"Malformed token response: {exc!r}") from exc


class SessionCoordinator:
    """Owns a ClientSession and an httpx.AsyncClient bound to the API."""

    def __init__(
        self,
        base_url: str = "",
        *,
        session: Optional[ClientSession] = None,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        refresh_timeout: float = _DEFAULT_REFRESH_TIMEOUT,
        api_prefix: str = "/api/v1",
    ) -> None:
        self.session = session or ClientSession()
        self._client = client or httpx.AsyncClient(base_url=base_url, transport=transport)
        self.refresh_timeout = refresh_timeout
        self.api_prefix = api_prefix.rstrip("/")
        self._pending: Optional[asyncio.Future] = None
        self._refresh_task: Optional[asyncio.Task] = None

    async def __aenter__(self) -> "SessionCoordinator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self._cancel_refresh(SessionCleared("Coordinator closed."))
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Login / register
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> UserSnapshot:
        """Log in and store the pair. Raises LoginFailed with the server's error code."""
        response = await self._client.post(
            f"{self.api_prefix}/auth/login", json={"email": email, "password": password}
        )
        if response.status_code != 200:
            raise LoginFailed.from_response(response)
        return self._establish(response.json())

    async def register(
        self,
        email: str,
        password: str,
        confirm_password: str,
        first_name: str,
        last_name: str,
        phone: Optional[str] = None,
    ) -> UserSnapshot:
        """Self-register; the server logs the new account in on success."""
        response = await self._client.post(
            f"{self.api_prefix}/auth/register",
            json={
                "email": email,
                "password": password,
                "confirm_password": confirm_password,
                "first_name": first_name,
                "last_name": last_name,
                "phone": phone,
            },
        )
        if response.status_code != 201:
            raise LoginFailed.from_response(response)
        return self._establish(response.json())

    def _establish(self, body: dict) -> UserSnapshot:
        pair = _read_pair(body)
        self._cancel_refresh(SessionCleared("Session replaced by a new login."))
        self.session.establish(**pair)
        return pair["user"]

    # ------------------------------------------------------------------
    # Authenticated calls
    # ------------------------------------------------------------------

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send an authenticated call, refreshing and retrying once on an access-token 401."""
        token = self.session.access_token
        if not self.session.is_authenticated or token is None:
            raise ReauthenticationRequired("Not logged in.")

        response = await self._send(method, url, token, kwargs)
        if not _access_token_rejected(response):
            return response

        await self._await_refresh(token)
        retry = await self._send(method, url, self.session.access_token, kwargs)
        if retry.status_code == 401:
            logger.warning("%s %s still unauthorized after refresh", method, url)
            raise RequestUnauthorized(retry)
        return retry

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def _send(self, method: str, url: str, token: str, kwargs: dict) -> httpx.Response:
        headers = {**(kwargs.get("headers") or {}), **_bearer(token)}
        return await self._client.request(method, url, **{**kwargs, "headers": headers})

    # ------------------------------------------------------------------
    # Single-flight refresh
    # ------------------------------------------------------------------

    async def refresh(self) -> None:
        """Force a refresh now, joining one already in flight."""
        await self._await_refresh(self.session.access_token)

    async def _await_refresh(self, stale_token: Optional[str]) -> None:
        state = self.session.state
        if state is SessionState.ANONYMOUS:
            raise ReauthenticationRequired("Session cleared.")
        if state is SessionState.AUTHENTICATED and self.session.access_token != stale_token:
            # Another caller already refreshed after this call was sent.
            return
        if self._pending is None:
            loop = asyncio.get_running_loop()
            self._pending = loop.create_future()
            self._refresh_task = asyncio.create_task(self._run_refresh(self._pending))
        # shield: one waiter being cancelled must not cancel the shared outcome.
        await asyncio.shield(self._pending)

    async def _exchange(self, refresh_token: str) -> dict:
        """POST the refresh token and return the parsed new pair."""
        try:
            response = await self._client.post(
                f"{self.api_prefix}/auth/refresh", json={"refresh_token": refresh_token}
            )
        except httpx.HTTPError as exc:
            raise ReauthenticationRequired(f"Refresh failed: {exc}") from exc
        if response.status_code != 200:
            raise ReauthenticationRequired("Refresh token rejected.")
        try:
            body = response.json()
        except ValueError as exc:
            raise ReauthenticationRequired("Refresh response is not JSON.") from exc
        return _read_pair(body)

    async def _run_refresh(self, outcome: asyncio.Future) -> None:
        # Every exit except cancellation settles outcome; waiters are shielded on it.
        try:
            refresh_token = self.session.begin_refresh()
            try:
                pair = await asyncio.wait_for(self._exchange(refresh_token), timeout=self.refresh_timeout)
            except asyncio.TimeoutError as exc:
                raise RefreshTimeout(f"Refresh did not complete within {self.refresh_timeout}s.") from exc
            self.session.establish(**pair)
        except Exception as exc:
            error = exc
            if not isinstance(exc, SessionError):
                logger.exception("Unexpected error during refresh")
                error = ReauthenticationRequired(f"Refresh failed: {exc!r}")
            if not outcome.done():
                logger.warning("Refresh failed, clearing session: %s", error)
                self.session.clear()
                outcome.set_exception(error)
        else:
            logger.debug("Refresh succeeded")
            if not outcome.done():
                outcome.set_result(None)
        finally:
            if self._pending is outcome:
                self._pending = None
                self._refresh_task = None

    def _cancel_refresh(self, reason: SessionError) -> None:
        pending, task = self._pending, self._refresh_task
        self._pending = None
        self._refresh_task = None
        if pending is not None and not pending.done():
            pending.set_exception(reason)
        if task is not None and not task.done():
            task.cancel()

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    async def logout(self) -> None:
        """Tear down locally first, then revoke the refresh token on the server."""
        access, refresh = self.session.access_token, self.session.refresh_token
        self._cancel_refresh(SessionCleared("Logged out."))
        self.session.clear()
        if access is None or refresh is None:
            return
        try:
            response = await self._client.post(
                f"{self.api_prefix}/auth/logout", json={"refresh_token": refresh}, headers=_bearer(access)
            )
        except httpx.HTTPError as exc:
            logger.warning("Server-side logout failed: %s", exc)
            return
        if response.status_code != 200:
            logger.info("Server-side logout returned %d", response.status_code)
