"""
tests/conftest.py -- Shared test fixtures for Taskforge.

This module provides:
  - user_store / credentials / tokens / resolver: isolated service components
  - verifier: a FakeGoogleVerifier that maps test tokens to OAuth profiles
  - limiter_clock: a controllable wall clock (time.time) for the rate-limit storage
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync dependencies in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Each fixture instance gets a uuid-suffixed name so tests never share
rows.

JWT_SECRET must be set before api.main is imported: Settings refuses to load
without it, and api/main.py reads settings at import to configure middleware.
BCRYPT_ROUNDS=4 keeps hashing fast; cost is not what these tests measure.
"""

from __future__ import annotations

import os
import time
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

from tests.helpers import TEST_SECRET, FakeClock, FakeGoogleVerifier

# CRITICAL: set before api.main is imported.
os.environ["JWT_SECRET"] = TEST_SECRET
os.environ["BCRYPT_ROUNDS"] = "4"

import pytest
from fastapi.testclient import TestClient

from api.limiter import RateLimits
from api.main import app
from auth.credentials import CredentialStore
from auth.oauth import OAuthResolver
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import get_settings

# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


def _memory_url() -> str:
    return f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(db_url=_memory_url())
    yield store
    store.close()


@pytest.fixture
def credentials(user_store: UserStore) -> CredentialStore:
    return CredentialStore(user_store, bcrypt_rounds=4)


@pytest.fixture
def tokens() -> TokenService:
    return TokenService(secret_key=TEST_SECRET)


@pytest.fixture
def verifier() -> FakeGoogleVerifier:
    return FakeGoogleVerifier()


@pytest.fixture
def resolver(user_store: UserStore, verifier: FakeGoogleVerifier) -> OAuthResolver:
    return OAuthResolver(user_store, verifier)


@pytest.fixture
def limiter_clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Freeze time.time, which the limits memory storage reads, and hand back the knob.

    Starts at a whole second of the real clock so window arithmetic stays exact.
    """
    clock = FakeClock(start=float(int(time.time())))
    monkeypatch.setattr(time, "time", clock)
    return clock


# ---------------------------------------------------------------------------
# App fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(components: dict):
    """Return a lifespan that wires pre-built test components into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        for name, component in components.items():
            setattr(app.state, name, component)
        yield

    return test_lifespan


@pytest.fixture
def api_client(
    user_store: UserStore,
    credentials: CredentialStore,
    tokens: TokenService,
    resolver: OAuthResolver,
    limiter_clock: FakeClock,
) -> Generator[TestClient, None, None]:
    """TestClient over the real app with isolated stores and a fake Google verifier.

    Function-scoped so rate-limit counters and users never leak between tests.
    """
    app.router.lifespan_context = _patch_lifespan(
        {
            "user_store": user_store,
            "credentials": credentials,
            "tokens": tokens,
            "oauth": resolver,
            "rate_limits": RateLimits.from_settings(get_settings()),
        }
    )
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
