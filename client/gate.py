"""
client/gate.py -- UI capability gate over the cached permission snapshot.

CapabilityGate answers "should this button / menu entry / page be shown?"
synchronously from the UserSnapshot held by the ClientSession, using the
same ANY/ALL rules as the server (auth.grants). It is advisory only: the
server's Authorization Decision Point is the enforcement boundary.

Hide by default: no session, no snapshot, or a snapshot older than max_age
all answer False.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta

from auth.grants import Grants, MatchMode, Requirement
from client.session import ClientSession


class CapabilityGate:
    def __init__(self, session: ClientSession, max_age: timedelta | None = None) -> None:
        self.session = session
        self.max_age = max_age

    def _grants(self) -> Grants | None:
        if not self.session.is_authenticated or self.session.user is None:
            return None
        if self.max_age is not None:
            age = self.session.snapshot_age()
            if age is None or age > self.max_age:
                return None
        return self.session.user.grants

    def allows(
        self,
        permissions: Iterable[str] = (),
        roles: Iterable[str] = (),
        mode: MatchMode | str = MatchMode.ANY,
    ) -> bool:
        """Evaluate a requirement the way the server would declare it."""
        grants = self._grants()
        if grants is None:
            return False
        return grants.satisfies(Requirement.of(permissions, roles, mode))

    def can(self, permission: str) -> bool:
        grants = self._grants()
        return grants is not None and grants.has_permission(permission)

    def has_any_permission(self, codes: Iterable[str]) -> bool:
        grants = self._grants()
        return grants is not None and grants.has_any_permission(codes)

    def has_all_permissions(self, codes: Iterable[str]) -> bool:
        grants = self._grants()
        return grants is not None and grants.has_all_permissions(codes)

    def has_role(self, name: str) -> bool:
        grants = self._grants()
        return grants is not None and grants.has_role(name)

    def has_any_role(self, names: Iterable[str]) -> bool:
        grants = self._grants()
        return grants is not None and grants.has_any_role(names)
