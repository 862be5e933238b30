"""
auth/audit.py -- Fire-and-forget recording of authentication events.

Every login attempt, lockout, rotation and revocation is handed to an
AuditSink. Durable persistence of these records is owned by an external log
service; this module only defines the seam and two in-process sinks.

AuthAuditLog.emit() never raises: a failing sink is logged and ignored so a
broken log backend cannot mask or override an authentication result.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol

logger = logging.getLogger("techgadgets.auth")


class AuthEventKind(str, Enum):
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"
    LOGIN_BLOCKED = "login_blocked"
    ACCOUNT_LOCKED = "account_locked"
    REGISTERED = "registered"
    REFRESH_ROTATED = "refresh_rotated"
    REFRESH_REJECTED = "refresh_rejected"
    TOKEN_REVOKED = "token_revoked"
    TOKEN_FAMILY_REVOKED = "token_family_revoked"
    PASSWORD_CHANGED = "password_changed"


_WARNING_KINDS = frozenset(
    {
        AuthEventKind.LOGIN_FAILED,
        AuthEventKind.LOGIN_BLOCKED,
        AuthEventKind.ACCOUNT_LOCKED,
        AuthEventKind.REFRESH_REJECTED,
        AuthEventKind.TOKEN_FAMILY_REVOKED,
    }
)


@dataclass
class AuthEvent:
    kind: AuthEventKind
    email: str | None = None
    user_id: int | None = None
    ip: str | None = None
    detail: str = ""
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditSink(Protocol):
    def record(self, event: AuthEvent) -> None: ...


class LoggingAuditSink:
    """Write each event as one line on the techgadgets.audit logger."""

    def __init__(self, logger_name: str = "techgadgets.audit") -> None:
        self._logger = logging.getLogger(logger_name)

    def record(self, event: AuthEvent) -> None:
        level = logging.WARNING if event.kind in _WARNING_KINDS else logging.INFO
        self._logger.log(
            level,
            "auth_event kind=%s user_id=%s email=%s ip=%s detail=%s",
            event.kind.value,
            event.user_id,
            event.email,
            event.ip,
            event.detail,
        )


class MemoryAuditSink:
    """Keep events in a list. Used by tests."""

    def __init__(self) -> None:
        self.events: list[AuthEvent] = []

    def record(self, event: AuthEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[AuthEventKind]:
        return [e.kind for e in self.events]


class AuthAuditLog:
    """Fan an event out to the configured sinks without ever failing the caller."""

    def __init__(self, *sinks: AuditSink) -> None:
        self._sinks: tuple[AuditSink, ...] = sinks or (LoggingAuditSink(),)

    def emit(
        self,
        kind: AuthEventKind,
        *,
        email: str | None = None,
        user_id: int | None = None,
        ip: str | None = None,
        detail: str = "",
    ) -> None:
        event = AuthEvent(kind=kind, email=email, user_id=user_id, ip=ip, detail=detail)
        for sink in self._sinks:
            try:
                sink.record(event)
            except Exception:
                logger.exception("Audit sink %r failed to record %s", sink, kind.value)
