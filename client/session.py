"""
client/session.py -- The client's cached session as an explicit state machine.

States and allowed transitions:

    anonymous      -> authenticated              (login / register)
    authenticated  -> authenticated              (login again as someone else)
    authenticated  -> refreshing                 (a 401 started the shared refresh)
    refreshing     -> authenticated              (refresh succeeded)
    any            -> anonymous                  (logout, refresh failure)

Any other change raises InvalidTransition. The single-flight refresh in
client/coordinator.py relies on begin_refresh() only being legal from
authenticated: a second caller cannot start a refresh while one is running.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

from auth.grants import Grants
from client.errors import InvalidTransition

logger = logging.getLogger("techgadgets.client")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"


_ALLOWED = {
    SessionState.ANONYMOUS: {SessionState.AUTHENTICATED, SessionState.ANONYMOUS},
    SessionState.AUTHENTICATED: {SessionState.AUTHENTICATED, SessionState.REFRESHING, SessionState.ANONYMOUS},
    SessionState.REFRESHING: {SessionState.AUTHENTICATED, SessionState.ANONYMOUS},
}


@dataclass(frozen=True)
class UserSnapshot:
    """The profile and grants the server returned with the last token pair."""

    id: int
    email: str
    display_name: str
    roles: frozenset[str] = field(default_factory=frozenset)
    permissions: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_payload(cls, payload: dict) -> "UserSnapshot":
        return cls(
            id=int(payload["id"]),
            email=payload.get("email", ""),
            display_name=payload.get("display_name", ""),
            roles=frozenset(payload.get("roles", [])),
            permissions=frozenset(payload.get("permissions", [])),
        )

    @property
    def grants(self) -> Grants:
        return Grants(roles=self.roles, permissions=self.permissions)


class ClientSession:
    """Access/refresh pair, expiry and user snapshot, guarded by SessionState."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self.clock = clock
        self.state = SessionState.ANONYMOUS
        self.access_token: str | None = None
        self.refresh_token: str | None = None
        self.access_expires_at: datetime | None = None
        self.user: UserSnapshot | None = None
        self.snapshot_at: datetime | None = None

    def __repr__(self) -> str:
        who = self.user.email if self.user else None
        return f"ClientSession(state={self.state.value}, user={who!r})"

    @property
    def is_authenticated(self) -> bool:
        """True while a token pair is held, including during a refresh."""
        return self.state is not SessionState.ANONYMOUS

    def snapshot_age(self) -> timedelta | None:
        if self.snapshot_at is None:
            return None
        return self.clock() - self.snapshot_at

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(self, target: SessionState) -> None:
        if target not in _ALLOWED[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {target.value}")
        logger.debug("Session %s -> %s", self.state.value, target.value)
        self.state = target

    def establish(
        self,
        access_token: str,
        refresh_token: str,
        access_expires_at: datetime,
        user: UserSnapshot,
    ) -> None:
        """Store a new pair from login, registration or a completed refresh."""
        self._transition(SessionState.AUTHENTICATED)
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.access_expires_at = access_expires_at
        self.user = user
        self.snapshot_at = self.clock()

    def begin_refresh(self) -> str:
        """Enter refreshing and return the refresh token to present."""
        self._transition(SessionState.REFRESHING)
        return self.refresh_token

    def clear(self) -> None:
        """Drop every credential and return to anonymous."""
        self._transition(SessionState.ANONYMOUS)
        self.access_token = None
        self.refresh_token = None
        self.access_expires_at = None
        self.user = None
        self.snapshot_at = None

