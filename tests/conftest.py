"""
tests/conftest.py -- Shared test fixtures for Keyward.

This module provides:
  - FrozenClock: an injectable clock tests can move forward without sleeping
  - store / hasher / clock: isolated per-test components
  - _patch_lifespan(): wires test components into app.state, bypassing real startup
  - client: TestClient over the real app with the patched lifespan
  - make_user / login / auth_headers: factory fixtures for authenticated requests

Design: every test gets its own SQLite file under tmp_path. TestClient runs
sync route handlers in a thread pool, and a file database is visible to
every worker thread's connection without shared-cache tricks.

Environment variables must be set before any api/auth/core import:
  DEBUG=true              -- get_settings() auto-generates signing keys
  BCRYPT_ROUNDS=4         -- minimum cost keeps the suite fast
  RATE_LIMIT_ENABLED=false -- lockout scenarios must not be throttled first
  ALLOWED_HOSTS           -- TestClient sends Host: testserver
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

# CRITICAL: set before any auth/core import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_components
from auth.models import Role, User, UserStatus
from auth.passwords import PasswordHasher
from auth.store import AuthStore
from core.clock import utc_now
from core.config import Settings, get_settings

PASSWORD = "Str0ng!Pass"


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or utc_now()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store(tmp_path) -> Generator[AuthStore, None, None]:
    auth_store = AuthStore(f"sqlite:///{tmp_path / 'auth.db'}")
    yield auth_store
    auth_store.close()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


# ---------------------------------------------------------------------------
# App fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AuthStore, settings: Settings, clock: FrozenClock):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown can cancel a real
    asyncio.Task the same way the production lifespan does.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_components(app, settings, store, clock=clock)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def client(store: AuthStore, settings: Settings, clock: FrozenClock) -> Generator[TestClient, None, None]:
    """TestClient over the real FastAPI app backed by this test's store and clock."""
    app.router.lifespan_context = _patch_lifespan(store, settings, clock)
    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# Helper fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_user(store: AuthStore, hasher: PasswordHasher):
    """Factory that inserts a user straight into the store, bypassing HTTP."""

    def _make(
        email: str,
        password: str = PASSWORD,
        role: Role = Role.USER,
        status: UserStatus = UserStatus.ACTIVE,
        **profile,
    ) -> User:
        user_id = store.create_user(
            User(email=email, password_hash=hasher.hash(password), role=role, status=status, **profile)
        )
        return store.find_user_by_id(user_id)

    return _make


@pytest.fixture
def login(client: TestClient):
    """Log in over HTTP and return the token dict from the response."""

    def _login(email: str, password: str = PASSWORD) -> dict:
        resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()["data"]["tokens"]

    return _login


@pytest.fixture
def auth_headers(make_user, login):
    """Factory: create a user with `role` and return (user, Authorization headers)."""

    def _headers(email: str, role: Role = Role.USER) -> tuple[User, dict[str, str]]:
        user = make_user(email, role=role)
        tokens = login(email)
        return user, {"Authorization": f"Bearer {tokens['access_token']}"}

    return _headers
