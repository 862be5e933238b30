"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services
do the work; these only own the shape.

Timestamps are timezone-aware UTC datetimes in memory. auth/store.py owns
the conversion to and from the fixed-width ISO strings it persists.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class User:
    """A back-office or storefront identity.

    email is stored lower-cased; lookups are case-insensitive.
    failed_attempts / locked_until are owned by the lockout controller
    (auth/lockout.py) and mutated on every login attempt.
    """

    email: str
    first_name: str
    last_name: str
    id: int | None = None
    hashed_password: str | None = None
    phone: str | None = None
    is_active: bool = True
    email_verified: bool = False
    failed_attempts: int = 0
    locked_until: datetime | None = None
    last_access: datetime | None = None
    created_at: datetime | None = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class Role:
    name: str
    description: str = ""
    id: int | None = None
    is_active: bool = True
    created_at: datetime | None = None


@dataclass
class Permission:
    """An entry of the immutable permission catalog (see auth/catalog.py)."""

    code: str  # "module.action", e.g. "products.edit"
    module: str
    name: str = ""
    description: str = ""


@dataclass
class UserRole:
    """A user -> role edge. Inactive edges contribute nothing to grants."""

    user_id: int
    role_id: int
    role_name: str = ""
    assigned_at: datetime | None = None
    is_active: bool = True


@dataclass
class RefreshToken:
    """An opaque, single-use refresh credential.

    A record with revoked=True or replaced_by_token set is dead: presenting
    it again is treated as reuse (see auth/sessions.py). replaced_by_token
    links each rotated record to its successor, forming the rotation chain.
    """

    token: str
    user_id: int
    issued_at: datetime
    expires_at: datetime
    id: int | None = None
    created_by_ip: str | None = None
    revoked: bool = False
    revoked_at: datetime | None = None
    revoked_by_ip: str | None = None
    replaced_by_token: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_rotatable(self, now: datetime) -> bool:
        return not self.revoked and self.replaced_by_token is None and not self.is_expired(now)


@dataclass
class Principal:
    """The authenticated caller, as established from a verified access token.

    roles / permissions start out as the token's embedded claims. The
    Authorization Decision Point replaces them with live grants when an
    operation demands freshness.
    """

    user_id: int
    email: str
    display_name: str
    roles: frozenset[str] = field(default_factory=frozenset)
    permissions: frozenset[str] = field(default_factory=frozenset)
    expires_at: datetime | None = None


@dataclass
class TokenPair:
    """What login, registration and refresh hand back to the caller."""

    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    user: User
    roles: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)
