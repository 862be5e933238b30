"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
AuthStore is the repository for users, the role/permission graph and refresh
tokens; the _row_to_* functions are the mappers. Services and routes never
touch SQL directly, and no business rule lives here beyond the atomic units
the services need:

  register_failed_attempt  -- increment, and at the threshold lock + reset,
                              in one transaction.
  consume_refresh_token    -- compare-and-swap on (revoked, replaced_by_token)
                              plus insertion of the successor, in one
                              transaction. Two concurrent rotations of the
                              same token cannot both see rowcount == 1.
  revoke_user_refresh_tokens -- family revocation.

Security:
  All queries use bound parameters. No f-strings in SQL.

Timestamps are persisted as fixed-width ISO 8601 UTC strings (microsecond
precision always present) so lexical comparison in SQL matches chronological
order.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine

from auth.catalog import PermissionDef
from auth.grants import Grants
from auth.models import Permission, RefreshToken, Role, User, UserRole
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # always lower-cased
    Column("hashed_password", Text),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("phone", String(30)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("failed_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_until", String(32)),
    Column("last_access", String(32)),
    Column("created_at", String(32), nullable=False),
)

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("description", Text, nullable=False, server_default=""),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)

_permissions = Table(
    "permissions",
    _metadata,
    Column("code", String(100), primary_key=True),
    Column("module", String(50), nullable=False),
    Column("name", String(100), nullable=False, server_default=""),
    Column("description", Text, nullable=False, server_default=""),
)

_role_permissions = Table(
    "role_permissions",
    _metadata,
    Column("role_id", Integer, nullable=False),
    Column("permission_code", String(100), nullable=False),
    PrimaryKeyConstraint("role_id", "permission_code"),
)

_user_roles = Table(
    "user_roles",
    _metadata,
    Column("user_id", Integer, nullable=False),
    Column("role_id", Integer, nullable=False),
    Column("assigned_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    PrimaryKeyConstraint("user_id", "role_id"),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(128), nullable=False, unique=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("issued_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("created_by_ip", String(64)),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("revoked_at", String(32)),
    Column("revoked_by_ip", String(64)),
    Column("replaced_by_token", String(128)),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for users, roles, permissions and refresh tokens.

    Usage:
        store = AuthStore("sqlite:///:memory:")
        uid = store.create_user(User(email="a@b.com", first_name="Ada", last_name="L", hashed_password=...))
        grants = store.get_grants(uid)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists (first-run detection)."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email.strip().lower(),
                    hashed_password=user.hashed_password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    phone=user.phone,
                    is_active=1 if user.is_active else 0,
                    email_verified=1 if user.email_verified else 0,
                    failed_attempts=0,
                    created_at=_iso(_utcnow()),
                )
            )
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(func.lower(_users.c.email) == email.strip().lower())
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by email."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: first_name, last_name, phone, is_active,
        email_verified, hashed_password. Booleans are converted to int for
        SQLite. Returns True if a row was updated.
        """
        for flag in ("is_active", "email_verified"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Lockout counters
    # ------------------------------------------------------------------

    def register_failed_attempt(
        self, user_id: int, threshold: int, lock_until: datetime
    ) -> tuple[int, datetime | None]:
        """Count one failed login; lock the account when the threshold is reached.

        Returns (attempts_after_increment, locked_until). When the threshold
        is crossed the counter is reset to 0 and locked_until is set, both in
        the same transaction as the increment.
        """
        with self.engine.begin() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(failed_attempts=_users.c.failed_attempts + 1)
            )
            attempts = conn.execute(
                select(_users.c.failed_attempts).where(_users.c.id == user_id)
            ).scalar() or 0
            if attempts >= threshold:
                conn.execute(
                    _users.update()
                    .where(_users.c.id == user_id)
                    .values(failed_attempts=0, locked_until=_iso(lock_until))
                )
                return attempts, lock_until
        return attempts, None

    def clear_lockout(self, user_id: int) -> None:
        """Reset failed_attempts and locked_until (elapsed lock)."""
        with self.engine.begin() as conn:
            conn.execute(
                _users.update().where(_users.c.id == user_id).values(failed_attempts=0, locked_until=None)
            )

    def record_successful_login(self, user_id: int, when: datetime) -> None:
        """Reset lockout state and stamp last_access after a verified login."""
        with self.engine.begin() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(failed_attempts=0, locked_until=None, last_access=_iso(when))
            )

    # ------------------------------------------------------------------
    # Permission catalog
    # ------------------------------------------------------------------

    def ensure_permissions(self, definitions: Iterable[PermissionDef]) -> int:
        """Insert catalog entries that are not yet present. Returns the count inserted."""
        inserted = 0
        with self.engine.begin() as conn:
            existing = {r[0] for r in conn.execute(select(_permissions.c.code)).fetchall()}
            for d in definitions:
                if d.code in existing:
                    continue
                conn.execute(
                    _permissions.insert().values(
                        code=d.code, module=d.module, name=d.name, description=d.description
                    )
                )
                existing.add(d.code)
                inserted += 1
        return inserted

    def list_permissions(self) -> list[Permission]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _permissions.select().order_by(_permissions.c.module, _permissions.c.code)
            ).fetchall()
        return [Permission(code=r.code, module=r.module, name=r.name, description=r.description) for r in rows]

    def permission_codes(self) -> set[str]:
        with self.engine.connect() as conn:
            return {r[0] for r in conn.execute(select(_permissions.c.code)).fetchall()}

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, role: Role) -> int:
        """Insert a role. Raises IntegrityError if the name is taken."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _roles.insert().values(
                    name=role.name,
                    description=role.description,
                    is_active=1 if role.is_active else 0,
                    created_at=_iso(_utcnow()),
                )
            )
            return result.inserted_primary_key[0]

    def get_role(self, role_id: int) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.name)).fetchall()
        return [_row_to_role(r) for r in rows]

    def update_role(self, role_id: int, **fields) -> bool:
        """Update description and/or is_active. Returns True if a row changed."""
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        with self.engine.begin() as conn:
            result = conn.execute(_roles.update().where(_roles.c.id == role_id).values(**fields))
        return result.rowcount > 0

    def get_role_permissions(self, role_id: int) -> list[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_role_permissions.c.permission_code)
                .where(_role_permissions.c.role_id == role_id)
                .order_by(_role_permissions.c.permission_code)
            ).fetchall()
        return [r[0] for r in rows]

    def set_role_permissions(self, role_id: int, codes: Iterable[str]) -> None:
        """Replace a role's permission edges in one transaction."""
        codes = sorted(set(codes))
        with self.engine.begin() as conn:
            conn.execute(_role_permissions.delete().where(_role_permissions.c.role_id == role_id))
            for code in codes:
                conn.execute(_role_permissions.insert().values(role_id=role_id, permission_code=code))

    # ------------------------------------------------------------------
    # User -> role edges
    # ------------------------------------------------------------------

    def assign_roles(self, user_id: int, role_ids: Iterable[int]) -> int:
        """Activate user->role edges, creating missing ones. Returns edges touched."""
        now = _iso(_utcnow())
        touched = 0
        with self.engine.begin() as conn:
            for role_id in set(role_ids):
                result = conn.execute(
                    _user_roles.update()
                    .where((_user_roles.c.user_id == user_id) & (_user_roles.c.role_id == role_id))
                    .values(is_active=1, assigned_at=now)
                )
                if result.rowcount == 0:
                    conn.execute(
                        _user_roles.insert().values(user_id=user_id, role_id=role_id, assigned_at=now, is_active=1)
                    )
                touched += 1
        return touched

    def remove_role(self, user_id: int, role_id: int) -> bool:
        """Deactivate a user->role edge. Returns False if no active edge existed."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _user_roles.update()
                .where(
                    (_user_roles.c.user_id == user_id)
                    & (_user_roles.c.role_id == role_id)
                    & (_user_roles.c.is_active == 1)
                )
                .values(is_active=0)
            )
        return result.rowcount > 0

    def get_user_roles(self, user_id: int, include_inactive: bool = False) -> list[UserRole]:
        query = (
            select(_user_roles, _roles.c.name.label("role_name"))
            .select_from(_user_roles.join(_roles, _roles.c.id == _user_roles.c.role_id))
            .where(_user_roles.c.user_id == user_id)
            .order_by(_roles.c.name)
        )
        if not include_inactive:
            query = query.where(_user_roles.c.is_active == 1)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [
            UserRole(
                user_id=r.user_id,
                role_id=r.role_id,
                role_name=r.role_name,
                assigned_at=_parse(r.assigned_at),
                is_active=bool(r.is_active),
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Grants (read side of the role graph)
    # ------------------------------------------------------------------

    def get_grants(self, user_id: int) -> Grants:
        """Return the role names and permission codes reachable from active edges.

        Traverses active user -> active user_role -> active role ->
        role_permission -> catalog permission. An inactive user yields empty
        grants.
        """
        active_roles = (
            _users.join(_user_roles, _user_roles.c.user_id == _users.c.id)
            .join(_roles, _roles.c.id == _user_roles.c.role_id)
        )
        role_filter = (
            (_users.c.id == user_id)
            & (_users.c.is_active == 1)
            & (_user_roles.c.is_active == 1)
            & (_roles.c.is_active == 1)
        )
        with self.engine.connect() as conn:
            roles = conn.execute(select(_roles.c.name).select_from(active_roles).where(role_filter)).fetchall()
            permissions = conn.execute(
                select(_permissions.c.code)
                .distinct()
                .select_from(
                    active_roles.join(_role_permissions, _role_permissions.c.role_id == _roles.c.id).join(
                        _permissions, _permissions.c.code == _role_permissions.c.permission_code
                    )
                )
                .where(role_filter)
            ).fetchall()
        return Grants.of(roles=(r[0] for r in roles), permissions=(p[0] for p in permissions))

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def create_refresh_token(self, token: RefreshToken) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.insert().values(**_refresh_token_values(token)))
            return result.inserted_primary_key[0]

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def list_refresh_tokens(self, user_id: int) -> list[RefreshToken]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where(_refresh_tokens.c.user_id == user_id)
                .order_by(_refresh_tokens.c.id)
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    def consume_refresh_token(
        self, token: str, replacement: RefreshToken, now: datetime, ip: str | None = None
    ) -> bool:
        """Atomically retire `token` and insert `replacement` as its successor.

        The UPDATE only matches a live record (not revoked, not chained, not
        expired). If it matches nothing the transaction inserts nothing and
        False is returned; the caller lost a race or presented a dead token.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where(
                    (_refresh_tokens.c.token == token)
                    & (_refresh_tokens.c.revoked == 0)
                    & (_refresh_tokens.c.replaced_by_token.is_(None))
                    & (_refresh_tokens.c.expires_at > _iso(now))
                )
                .values(
                    revoked=1,
                    revoked_at=_iso(now),
                    revoked_by_ip=ip,
                    replaced_by_token=replacement.token,
                )
            )
            if result.rowcount != 1:
                return False
            conn.execute(_refresh_tokens.insert().values(**_refresh_token_values(replacement)))
        return True

    def revoke_refresh_token(self, token: str, now: datetime, ip: str | None = None) -> bool:
        """Mark a token revoked without a replacement. False if already dead or absent."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.token == token) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1, revoked_at=_iso(now), revoked_by_ip=ip)
            )
        return result.rowcount > 0

    def revoke_user_refresh_tokens(self, user_id: int, now: datetime, ip: str | None = None) -> int:
        """Revoke every live refresh token of a user. Returns the number revoked."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1, revoked_at=_iso(now), revoked_by_ip=ip)
            )
        return result.rowcount

    def purge_refresh_tokens(self, before: datetime) -> int:
        """Delete refresh tokens that expired before `before`. Returns rows deleted."""
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at < _iso(before)))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        phone=row.phone,
        is_active=bool(row.is_active),
        email_verified=bool(row.email_verified),
        failed_attempts=row.failed_attempts or 0,
        locked_until=_parse(row.locked_until),
        last_access=_parse(row.last_access),
        created_at=_parse(row.created_at),
    )


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description or "",
        is_active=bool(row.is_active),
        created_at=_parse(row.created_at),
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        issued_at=_parse(row.issued_at),
        expires_at=_parse(row.expires_at),
        created_by_ip=row.created_by_ip,
        revoked=bool(row.revoked),
        revoked_at=_parse(row.revoked_at),
        revoked_by_ip=row.revoked_by_ip,
        replaced_by_token=row.replaced_by_token,
    )


def _refresh_token_values(token: RefreshToken) -> dict:
    return {
        "token": token.token,
        "user_id": token.user_id,
        "issued_at": _iso(token.issued_at),
        "expires_at": _iso(token.expires_at),
        "created_by_ip": token.created_by_ip,
        "revoked": 1 if token.revoked else 0,
        "revoked_at": _iso(token.revoked_at),
        "revoked_by_ip": token.revoked_by_ip,
        "replaced_by_token": token.replaced_by_token,
    }
