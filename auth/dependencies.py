"""
auth/dependencies.py -- Authorization Decision Point as FastAPI dependencies.

Every protected operation declares its requirement at the route boundary:

    @router.get("/roles")
    async def list_roles(principal: Principal = requires(catalog.ROLES_LIST)): ...

    @router.post("/user-roles/assign")
    async def assign(principal: Principal = requires(catalog.ROLES_ASSIGN, sensitivity=3)): ...

Authorize(...) holds the Requirement (permissions, roles, match mode,
sensitivity, fresh) and evaluates it on each call:

  1. Extract the bearer token. Missing, malformed, bad signature, wrong
     issuer/audience or expired -> Unauthenticated (401).
  2. Effective grants come from the token claims, unless the requirement is
     fresh or its sensitivity reaches Settings.fresh_grants_sensitivity; then
     they are re-resolved live from the role graph (and a deactivated or
     deleted user becomes Unauthenticated).
  3. Grants do not satisfy the requirement -> Forbidden (403), with a message
     that never names the missing permission.
  4. Otherwise the Principal is returned to the handler and kept on
     request.state for the rest of the request.

Business logic never re-checks permissions by hand.

Layer rule: no imports from api/ or client/. fastapi is allowed because this
module is part of the dependency injection surface.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime, timezone

from fastapi import Depends, Request

from auth.errors import Forbidden, Unauthenticated
from auth.grants import Grants, MatchMode, Requirement
from auth.models import Principal
from auth.permissions import PermissionResolver
from auth.tokens import decode_access_token
from core.config import get_settings

logger = logging.getLogger("techgadgets.auth")


def bearer_token(request: Request) -> str | None:
    """Return the token from "Authorization: Bearer <token>", or None."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_principal(request: Request) -> Principal:
    """Verify the access token and return the caller's identity from its claims.

    Raises Unauthenticated on any failure. The result is memoized on
    request.state so several dependencies on one route verify only once.
    """
    cached = getattr(request.state, "principal", None)
    if cached is not None:
        return cached

    token = bearer_token(request)
    if token is None:
        raise Unauthenticated()
    payload = decode_access_token(token)
    if payload is None:
        raise Unauthenticated("Invalid or expired access token.")

    principal = Principal(
        user_id=payload["user_id"],
        email=payload.get("email", ""),
        display_name=payload.get("name", ""),
        roles=frozenset(payload.get("roles", [])),
        permissions=frozenset(payload.get("permissions", [])),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )
    request.state.principal = principal
    return principal


def live_grants(request: Request, principal: Principal) -> Grants:
    """Re-resolve the principal's grants from the role graph, once per request."""
    cached = getattr(request.state, "live_grants", None)
    if cached is not None:
        return cached
    store = request.app.state.auth_store
    user = store.get_by_id(principal.user_id)
    if user is None or not user.is_active:
        raise Unauthenticated("Account is no longer active.")
    grants = PermissionResolver(store).resolve(principal.user_id)
    request.state.live_grants = grants
    request.state.principal = replace(principal, roles=grants.roles, permissions=grants.permissions)
    return grants


class Authorize:
    """Callable dependency that enforces one Requirement."""

    def __init__(
        self,
        permissions: Iterable[str] = (),
        roles: Iterable[str] = (),
        mode: MatchMode | str = MatchMode.ANY,
        *,
        sensitivity: int = 0,
        fresh: bool = False,
    ) -> None:
        self.requirement = Requirement.of(permissions, roles, mode, sensitivity=sensitivity, fresh=fresh)

    def needs_fresh_grants(self) -> bool:
        return self.requirement.fresh or self.requirement.sensitivity >= get_settings().fresh_grants_sensitivity

    def __call__(self, request: Request) -> Principal:
        principal = get_principal(request)
        if self.needs_fresh_grants():
            grants = live_grants(request, principal)
            principal = request.state.principal
        else:
            grants = Grants(roles=principal.roles, permissions=principal.permissions)

        if not grants.satisfies(self.requirement):
            logger.info(
                "Forbidden: user %s %s %s",
                principal.user_id,
                request.method,
                request.url.path,
            )
            raise Forbidden()
        return principal

    def __repr__(self) -> str:
        r = self.requirement
        return (
            f"Authorize(permissions={sorted(r.permissions)}, roles={sorted(r.roles)}, "
            f"mode={r.mode.value}, sensitivity={r.sensitivity}, fresh={r.fresh})"
        )


def requires(
    *permissions: str,
    roles: Iterable[str] = (),
    mode: MatchMode | str = MatchMode.ANY,
    sensitivity: int = 0,
    fresh: bool = False,
):
    """Shorthand for Depends(Authorize(...)) in a route signature."""
    return Depends(Authorize(permissions, roles, mode, sensitivity=sensitivity, fresh=fresh))


# Authentication only: any verified identity passes.
require_authenticated = Authorize()
