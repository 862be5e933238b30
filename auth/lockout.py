"""
auth/lockout.py -- Credential verification and temporary lockout.

CredentialVerifier.verify() is the only way a password login is checked:

  1. Look up the user by email (case-insensitive). Unknown email -> run a
     dummy bcrypt comparison so timing matches, then InvalidCredentials.
  2. locked_until in the future -> AccountLocked carrying the remaining
     seconds, without touching the password. An elapsed lock is cleared and
     the failure counter reset before continuing.
  3. bcrypt comparison (constant time). Mismatch -> increment the counter;
     reaching the threshold locks the account for the lockout window and
     resets the counter. The caller still only sees InvalidCredentials.
  4. Match on an inactive account -> InvalidCredentials (same message).
  5. Match -> reset counter, clear lock, stamp last_access.

Every outcome is handed to the audit log, which never raises.

Threshold and window come from Settings unless passed explicitly.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from auth.audit import AuthAuditLog, AuthEventKind
from auth.errors import AccountLocked, InvalidCredentials, ValidationError
from auth.models import User
from auth.store import AuthStore
from auth.tokens import burn_password_check, verify_password
from core.config import get_settings

logger = logging.getLogger("techgadgets.auth")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialVerifier:
    """Validate email + secret logins and enforce temporary lockout."""

    def __init__(
        self,
        store: AuthStore,
        audit: AuthAuditLog | None = None,
        *,
        threshold: int | None = None,
        lockout_window: timedelta | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.audit = audit or AuthAuditLog()
        self.threshold = threshold if threshold is not None else settings.lockout_threshold
        self.lockout_window = lockout_window or timedelta(minutes=settings.lockout_minutes)
        self.clock = clock
        if self.threshold <= 0:
            raise ValueError("lockout threshold must be positive")

    def verify(self, email: str, password: str, ip: str | None = None) -> User:
        """Return the verified User or raise InvalidCredentials / AccountLocked."""
        email = (email or "").strip().lower()
        if not email or not password:
            raise ValidationError(
                "Email and password are required.",
                fields={k: ["This field is required."] for k, v in (("email", email), ("password", password)) if not v},
            )

        user = self.store.get_by_email(email)
        if user is None or user.hashed_password is None:
            burn_password_check(password)
            self.audit.emit(AuthEventKind.LOGIN_FAILED, email=email, ip=ip, detail="unknown_email")
            raise InvalidCredentials()

        now = self.clock()
        if user.locked_until is not None:
            if user.locked_until > now:
                remaining = math.ceil((user.locked_until - now).total_seconds())
                self.audit.emit(
                    AuthEventKind.LOGIN_BLOCKED, email=email, user_id=user.id, ip=ip, detail=f"retry_after={remaining}"
                )
                raise AccountLocked(retry_after=remaining)
            self.store.clear_lockout(user.id)
            user = replace(user, failed_attempts=0, locked_until=None)

        if not verify_password(password, user.hashed_password):
            attempts, locked_until = self.store.register_failed_attempt(
                user.id, self.threshold, now + self.lockout_window
            )
            self.audit.emit(
                AuthEventKind.LOGIN_FAILED, email=email, user_id=user.id, ip=ip, detail=f"attempts={attempts}"
            )
            if locked_until is not None:
                logger.warning("Account %s locked until %s after %d failures", user.id, locked_until, attempts)
                self.audit.emit(
                    AuthEventKind.ACCOUNT_LOCKED,
                    email=email,
                    user_id=user.id,
                    ip=ip,
                    detail=f"locked_until={locked_until.isoformat()}",
                )
            raise InvalidCredentials()

        if not user.is_active:
            self.audit.emit(AuthEventKind.LOGIN_FAILED, email=email, user_id=user.id, ip=ip, detail="inactive")
            raise InvalidCredentials()

        self.store.record_successful_login(user.id, now)
        self.audit.emit(AuthEventKind.LOGIN_SUCCEEDED, email=email, user_id=user.id, ip=ip)
        return replace(user, failed_attempts=0, locked_until=None, last_access=now)
