"""
auth/sessions.py -- Token issuance, rotation and revocation.

TokenManager owns the access/refresh pair lifecycle:

  issue(user)     -- resolve grants, mint a signed access token (short fixed
                     lifetime) and an opaque refresh token (longer fixed
                     lifetime), persist the refresh record.
  rotate(token)   -- exchange a live refresh token for a new pair. The
                     presented record is retired (revoked, chained to its
                     successor) and the successor inserted in one store
                     transaction, so of two concurrent rotations of the same
                     token exactly one succeeds.
  revoke(token)   -- retire a token without a successor (logout).

Reuse policy: presenting a record that is absent, expired, revoked or already
chained raises RefreshInvalid. For a known record this is treated as possible
token theft and every live refresh token of the owner is revoked, forcing
re-authentication on all of that user's clients (controlled by
Settings.refresh_reuse_revokes_family). Losing a concurrent rotation race --
the record was live when read but the compare-and-swap matched nothing -- is
a plain RefreshInvalid without family revocation, so the winner's fresh
token survives.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.audit import AuthAuditLog, AuthEventKind
from auth.errors import RefreshInvalid
from auth.grants import Grants
from auth.models import RefreshToken, TokenPair, User
from auth.permissions import PermissionResolver
from auth.store import AuthStore
from auth.tokens import create_access_token, generate_refresh_token
from core.config import get_settings

logger = logging.getLogger("techgadgets.auth")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dead_reason(record: RefreshToken, now: datetime) -> str:
    if record.replaced_by_token is not None:
        return "reused"
    if record.revoked:
        return "revoked"
    if record.is_expired(now):
        return "expired"
    return "live"


class TokenManager:
    """Mint, rotate and revoke access/refresh token pairs."""

    def __init__(
        self,
        store: AuthStore,
        audit: AuthAuditLog | None = None,
        resolver: PermissionResolver | None = None,
        *,
        access_lifetime: timedelta | None = None,
        refresh_lifetime: timedelta | None = None,
        revoke_family_on_reuse: bool | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.audit = audit or AuthAuditLog()
        self.resolver = resolver or PermissionResolver(store)
        self.access_lifetime = access_lifetime or timedelta(minutes=settings.access_token_minutes)
        self.refresh_lifetime = refresh_lifetime or timedelta(days=settings.refresh_token_days)
        self.revoke_family_on_reuse = (
            settings.refresh_reuse_revokes_family if revoke_family_on_reuse is None else revoke_family_on_reuse
        )
        self.clock = clock

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self, user: User, ip: str | None = None) -> TokenPair:
        """Mint a fresh pair for a verified user and persist the refresh record."""
        now = self.clock()
        refresh = self._new_refresh_token(user.id, now, ip)
        self.store.create_refresh_token(refresh)
        return self._pair(user, self.resolver.resolve(user.id), refresh, now)

    # ------------------------------------------------------------------
    # Rotate
    # ------------------------------------------------------------------

    def rotate(self, presented: str, ip: str | None = None) -> TokenPair:
        """Exchange a live refresh token for a new pair, or raise RefreshInvalid."""
        if not presented:
            raise RefreshInvalid()
        now = self.clock()
        record = self.store.get_refresh_token(presented)
        if record is None:
            self.audit.emit(AuthEventKind.REFRESH_REJECTED, ip=ip, detail="unknown")
            raise RefreshInvalid()

        if not record.is_rotatable(now):
            reason = _dead_reason(record, now)
            self.audit.emit(AuthEventKind.REFRESH_REJECTED, user_id=record.user_id, ip=ip, detail=reason)
            if self.revoke_family_on_reuse:
                self.revoke_all(record.user_id, ip=ip, reason=f"dead_token_presented:{reason}")
            raise RefreshInvalid()

        user = self.store.get_by_id(record.user_id)
        if user is None or not user.is_active:
            self.store.revoke_refresh_token(presented, now, ip)
            self.audit.emit(AuthEventKind.REFRESH_REJECTED, user_id=record.user_id, ip=ip, detail="inactive_user")
            raise RefreshInvalid()

        replacement = self._new_refresh_token(user.id, now, ip)
        if not self.store.consume_refresh_token(presented, replacement, now, ip):
            self.audit.emit(
                AuthEventKind.REFRESH_REJECTED, user_id=user.id, ip=ip, detail="concurrent_rotation"
            )
            raise RefreshInvalid()

        self.audit.emit(AuthEventKind.REFRESH_ROTATED, email=user.email, user_id=user.id, ip=ip)
        return self._pair(user, self.resolver.resolve(user.id), replacement, now)

    # ------------------------------------------------------------------
    # Revoke
    # ------------------------------------------------------------------

    def revoke(self, token: str, ip: str | None = None, owner_id: int | None = None) -> bool:
        """Retire a refresh token without a successor.

        When owner_id is given the token must belong to that user; a token
        owned by someone else is reported as not found (IDOR guard). Returns
        False if the token is absent, not owned, or already dead.
        """
        record = self.store.get_refresh_token(token)
        if record is None or (owner_id is not None and record.user_id != owner_id):
            return False
        revoked = self.store.revoke_refresh_token(token, self.clock(), ip)
        if revoked:
            self.audit.emit(AuthEventKind.TOKEN_REVOKED, user_id=record.user_id, ip=ip)
        return revoked

    def revoke_all(self, user_id: int, ip: str | None = None, reason: str = "") -> int:
        """Revoke the user's entire token family. Returns the number revoked."""
        count = self.store.revoke_user_refresh_tokens(user_id, self.clock(), ip)
        logger.warning("Revoked %d refresh tokens of user %s (%s)", count, user_id, reason or "requested")
        self.audit.emit(
            AuthEventKind.TOKEN_FAMILY_REVOKED, user_id=user_id, ip=ip, detail=f"count={count} {reason}".strip()
        )
        return count

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_refresh_token(self, user_id: int, now: datetime, ip: str | None) -> RefreshToken:
        return RefreshToken(
            token=generate_refresh_token(),
            user_id=user_id,
            issued_at=now,
            expires_at=now + self.refresh_lifetime,
            created_by_ip=ip,
        )

    def _pair(self, user: User, grants: Grants, refresh: RefreshToken, now: datetime) -> TokenPair:
        access_expires_at = now + self.access_lifetime
        access = create_access_token(
            user_id=user.id,
            email=user.email,
            display_name=user.display_name,
            roles=grants.roles,
            permissions=grants.permissions,
            expires_at=access_expires_at,
        )
        return TokenPair(
            access_token=access,
            refresh_token=refresh.token,
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh.expires_at,
            user=user,
            roles=sorted(grants.roles),
            permissions=sorted(grants.permissions),
        )
