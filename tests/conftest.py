"""
tests/conftest.py -- Shared test fixtures for the coin server test suite.

This module provides:
  - store / session_cache / registry / service: isolated unit-level objects
  - _patch_lifespan(): wires test collaborators into app.state, bypassing
    real startup (no Redis, no on-disk SQLite)
  - api_client: TestClient over the real app with the patched lifespan
  - alice: a registered user for route tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the API client because TestClient runs sync route handlers in a thread
pool. Plain :memory: DBs are per-connection and would present a blank schema
to each worker thread. Each api_client gets a unique name, so tests never
see each other's users.

Environment must be set before any api/auth/core import:
  DEBUG=true            -- get_settings() auto-generates both signing secrets
  BCRYPT_ROUNDS=4       -- bcrypt's minimum cost; keeps the suite fast
  REDIS_URL=memory://   -- limiter and session cache stay in-process
  LOGIN_RATE_LIMIT      -- high enough that repeated logins are never throttled
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("REDIS_URL", "memory://")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.service import AuthService
from auth.sessions import SessionRegistry
from auth.store import UserStore
from cache.store import MemorySessionCache

ALICE_EMAIL = "alice@example.com"
ALICE_PASSWORD = "secret123"


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def session_cache() -> MemorySessionCache:
    return MemorySessionCache()


@pytest.fixture
def registry(session_cache: MemorySessionCache) -> SessionRegistry:
    return SessionRegistry(session_cache)


@pytest.fixture
def service(store: UserStore, registry: SessionRegistry) -> AuthService:
    return AuthService(store, registry)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, session_cache: MemorySessionCache):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.session_cache = session_cache
        app.state.session_registry = SessionRegistry(session_cache)
        app.state.auth_service = AuthService(user_store, app.state.session_registry)
        yield

    return test_lifespan


@pytest.fixture
def api_client(session_cache: MemorySessionCache) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with isolated in-memory backends.

    The session cache is the same instance the session_cache fixture hands
    out, so a test can inspect or sabotage it.
    """
    db_url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    user_store = UserStore(db_url)
    app.router.lifespan_context = _patch_lifespan(user_store, session_cache)

    with TestClient(app, raise_server_exceptions=False) as client:
        yield client

    user_store.close()


@pytest.fixture
def alice(api_client: TestClient) -> dict:
    """Register alice@example.com through the API and return her credentials."""
    resp = api_client.post(
        "/register",
        json={"email": ALICE_EMAIL, "name": "Alice", "password": ALICE_PASSWORD},
    )
    assert resp.status_code == 201, resp.text
    return {"email": ALICE_EMAIL, "password": ALICE_PASSWORD}


def login(client: TestClient, email: str = ALICE_EMAIL, password: str = ALICE_PASSWORD):
    return client.post("/login", auth=(email, password))


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
