"""
tests/conftest.py -- Shared test fixtures for idgate.

This module provides:
  - RecordingNotifier: captures passcodes instead of logging them
  - store / tokens / service: unit-level fixtures over a private in-memory DB
  - api_client: TestClient over the real app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

The clock handed to AuthService is frozen so a test that registers and then
confirms a passcode can never straddle an hour boundary.

The DEBUG env var must be set before any idgate import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import TokenBucketLimiter
from api.main import app
from auth.models import Identity
from auth.service import AuthService
from auth.store import IdentityStore
from auth.tokens import TokenService

TEST_SECRET = "test-signing-key-0123456789abcdef0123456789"
FIXED_NOW = datetime(2026, 10, 17, 14, 30, tzinfo=timezone.utc)


class RecordingNotifier:
    """Notifier double that keeps every code it is asked to deliver."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send_code(self, identity: Identity, channel: str, code: str) -> None:
        self.sent.append((identity.id, channel, code))

    def last_code(self, identity_id: str, channel: str) -> str:
        for sent_id, sent_channel, code in reversed(self.sent):
            if sent_id == identity_id and sent_channel == channel:
                return code
        raise AssertionError(f"no {channel} code sent to {identity_id}")


# ---------------------------------------------------------------------------
# Unit-level fixtures -- fresh DB per test
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[IdentityStore, None, None]:
    s = IdentityStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def tokens() -> TokenService:
    return TokenService(TEST_SECRET)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(store: IdentityStore, tokens: TokenService, notifier: RecordingNotifier) -> AuthService:
    return AuthService(store, tokens, notifier=notifier, clock=lambda: FIXED_NOW)


# ---------------------------------------------------------------------------
# API fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _patch_lifespan(store: IdentityStore, service: AuthService, limiter: TokenBucketLimiter):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test objects into app.state so TestClient routes see an
    isolated database and a recording notifier.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.auth_service = service
        app.state.limiter = limiter
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, RecordingNotifier], None, None]:
    """Yield (client, notifier) for API integration tests.

    The limiter is generous so ordinary tests never trip it; rate-limit tests
    swap in a strict limiter on app.state for their own duration.
    """
    db_name = request.module.__name__.rsplit(".", 1)[-1]
    store = IdentityStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    recorder = RecordingNotifier()
    service = AuthService(store, TokenService(TEST_SECRET), notifier=recorder, clock=lambda: FIXED_NOW)
    limiter = TokenBucketLimiter(rate=1000.0, burst=1000)

    app.router.lifespan_context = _patch_lifespan(store, service, limiter)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, recorder

    store.close()
