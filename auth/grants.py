"""
auth/grants.py -- Set-based evaluation of permission and role requirements.

Shared by the server-side Authorization Decision Point (auth/dependencies.py)
and the client-side capability gate (client/gate.py) so both sides apply the
same ANY/ALL semantics. Permission codes and role names are opaque strings
here: only membership, union and intersection are performed on them.

Rules:
  ANY  -- at least one required item is present in the granted set.
  ALL  -- every required item is present in the granted set.
  A requirement naming both permissions and roles passes only when both
  parts pass, each under the requirement's match mode.
  An empty requirement is satisfied by any identity; an empty grant set
  never satisfies a non-empty requirement part.

Layer rule: pure module -- stdlib only, importable from client/.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum


class MatchMode(str, Enum):
    ANY = "any"
    ALL = "all"


def _match(granted: frozenset[str], required: frozenset[str], mode: MatchMode) -> bool:
    if not required:
        return True
    if mode is MatchMode.ALL:
        return required <= granted
    return not granted.isdisjoint(required)


@dataclass(frozen=True)
class Requirement:
    """A required-capability descriptor attached to one operation.

    sensitivity ranks the operation; at or above the configured bar (see
    Settings.fresh_grants_sensitivity) the decision point re-resolves grants
    live. fresh=True forces that regardless of sensitivity.
    """

    permissions: frozenset[str] = field(default_factory=frozenset)
    roles: frozenset[str] = field(default_factory=frozenset)
    mode: MatchMode = MatchMode.ANY
    sensitivity: int = 0
    fresh: bool = False

    @classmethod
    def of(
        cls,
        permissions: Iterable[str] = (),
        roles: Iterable[str] = (),
        mode: MatchMode | str = MatchMode.ANY,
        sensitivity: int = 0,
        fresh: bool = False,
    ) -> "Requirement":
        return cls(
            permissions=frozenset(permissions),
            roles=frozenset(roles),
            mode=MatchMode(mode),
            sensitivity=sensitivity,
            fresh=fresh,
        )

    @property
    def is_empty(self) -> bool:
        return not self.permissions and not self.roles


@dataclass(frozen=True)
class Grants:
    """A user's effective role names and permission codes."""

    roles: frozenset[str] = field(default_factory=frozenset)
    permissions: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, roles: Iterable[str] = (), permissions: Iterable[str] = ()) -> "Grants":
        return cls(roles=frozenset(roles), permissions=frozenset(permissions))

    def has_permission(self, code: str) -> bool:
        return code in self.permissions

    def has_any_permission(self, codes: Iterable[str]) -> bool:
        required = frozenset(codes)
        return bool(required) and _match(self.permissions, required, MatchMode.ANY)

    def has_all_permissions(self, codes: Iterable[str]) -> bool:
        required = frozenset(codes)
        return bool(required) and bool(self.permissions) and _match(self.permissions, required, MatchMode.ALL)

    def has_role(self, name: str) -> bool:
        return name in self.roles

    def has_any_role(self, names: Iterable[str]) -> bool:
        required = frozenset(names)
        return bool(required) and _match(self.roles, required, MatchMode.ANY)

    def has_all_roles(self, names: Iterable[str]) -> bool:
        required = frozenset(names)
        return bool(required) and bool(self.roles) and _match(self.roles, required, MatchMode.ALL)

    def satisfies(self, requirement: Requirement) -> bool:
        return _match(self.permissions, requirement.permissions, requirement.mode) and _match(
            self.roles, requirement.roles, requirement.mode
        )
