"""
tests/conftest.py -- Shared test fixtures for TechGadgets integration tests.

This module provides:
  - make_store(): isolated named in-memory AuthStore with the catalog seeded
  - make_user: fixture inserting a user holding the given roles
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - store / clock / audit fixtures for unit tests of the engine classes
  - app_client, login, admin_token: TestClient against the real app

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, install_services
from auth.audit import AuthAuditLog, MemoryAuditSink
from auth.catalog import ROLE_SUPERADMIN
from auth.models import User
from auth.seed import seed_catalog
from auth.store import AuthStore
from auth.tokens import hash_password

# Per-IP login limits would trip across the suite: every TestClient request
# comes from the same address.
limiter.enabled = False

DEFAULT_PASSWORD = "correct-horse-42"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_store(name: str | None = None) -> AuthStore:
    """Create an isolated named shared-memory store with the catalog seeded.

    Args:
        name: Unique DB name so test modules don't share state. A random one
              is generated when omitted.
    """
    name = name or f"test_auth_{uuid.uuid4().hex}"
    store = AuthStore(db_url=f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")
    seed_catalog(store)
    return store


def _create_user(
    store: AuthStore,
    email: str,
    roles: tuple[str, ...] = (),
    password: str = DEFAULT_PASSWORD,
    first_name: str = "Test",
    last_name: str = "User",
    is_active: bool = True,
) -> int:
    """Insert a user and activate the named roles. Returns the user id."""
    uid = store.create_user(
        User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            hashed_password=hash_password(password),
            is_active=is_active,
        )
    )
    role_ids = [store.get_role_by_name(name).id for name in roles]
    if role_ids:
        store.assign_roles(uid, role_ids)
    return uid


class FakeClock:
    """Callable clock for engine classes; advance() moves time forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _patch_lifespan(store: AuthStore, audit: AuthAuditLog):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-created test store into app.state through the same
    install_services() the real lifespan uses. The purge_task is a
    long-sleeping coroutine so shutdown has a real asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        install_services(app, store, audit)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def make_user(store: AuthStore):
    """Return a helper that inserts a user into the per-test store."""

    def _make(email: str, roles: tuple[str, ...] = (), **kwargs) -> int:
        return _create_user(store, email, roles, **kwargs)

    return _make


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def audit(audit_sink: MemoryAuditSink) -> AuthAuditLog:
    return AuthAuditLog(audit_sink)


# ---------------------------------------------------------------------------
# Integration fixtures -- fresh app state per test
# ---------------------------------------------------------------------------


@pytest.fixture
def app_client(store: AuthStore, audit: AuthAuditLog) -> Generator[TestClient, None, None]:
    """TestClient on the real app, wired to the per-test store and audit sink."""
    app.router.lifespan_context = _patch_lifespan(store, audit)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def login(app_client: TestClient):
    """Return a helper that logs in and returns the response JSON."""

    def _login(email: str, password: str = DEFAULT_PASSWORD) -> dict:
        resp = app_client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _login


@pytest.fixture
def admin_token(make_user, login) -> str:
    """Access token of a superadmin created in the per-test store."""
    make_user("root@techgadgets.test", roles=(ROLE_SUPERADMIN,), first_name="Root", last_name="Admin")
    return login("root@techgadgets.test")["access_token"]
