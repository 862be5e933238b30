"""
auth/permissions.py -- Permission Resolution Engine.

Computes a user's effective grants from the role/permission graph:

    active user -> active user_role edge -> active role -> role_permission

Roles and permissions reached through any inactive link contribute nothing,
and the result is de-duplicated. Resolution is read-only and uncached here;
callers that want to avoid repeat queries within one request memoize on the
request (see auth/dependencies.py). Because nothing is cached across
requests, deactivating a role takes effect on the very next resolution.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

from collections.abc import Iterable

from auth.grants import Grants, MatchMode, Requirement
from auth.store import AuthStore


class PermissionResolver:
    """Live queries over the role graph for one store."""

    def __init__(self, store: AuthStore) -> None:
        self.store = store

    def resolve(self, user_id: int) -> Grants:
        """Return the user's effective (roles, permissions)."""
        return self.store.get_grants(user_id)

    def has_permission(self, user_id: int, code: str) -> bool:
        return self.resolve(user_id).has_permission(code)

    def has_role(self, user_id: int, name: str) -> bool:
        return self.resolve(user_id).has_role(name)

    def has_any_permission(self, user_id: int, codes: Iterable[str]) -> bool:
        return self.resolve(user_id).has_any_permission(codes)

    def has_all_permissions(self, user_id: int, codes: Iterable[str]) -> bool:
        return self.resolve(user_id).has_all_permissions(codes)

    def check(
        self,
        user_id: int,
        permissions: Iterable[str] = (),
        roles: Iterable[str] = (),
        mode: MatchMode = MatchMode.ANY,
    ) -> bool:
        """Evaluate an ad-hoc requirement against live grants."""
        return self.resolve(user_id).satisfies(Requirement.of(permissions, roles, mode))
