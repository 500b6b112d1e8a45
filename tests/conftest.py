"""
tests/conftest.py -- Shared test fixtures for Authgate unit and integration tests.

This module provides:
  - FakeClock: a controllable wall clock (datetime) with a matching monotonic view
  - _make_test_store(): an isolated named shared-memory SQLite credential store
  - _patch_lifespan(): wires test collaborators into app.state, bypassing real startup
  - unit fixtures: store, cache, tokens, sessions, guard, service, mailer
  - api_client: TestClient over the real app with a fake clock and a mock mailer

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

Environment variables must be set before any api/auth/core import so
get_settings() (lru_cached) sees the test configuration: memory cache,
cheap bcrypt rounds, rate limiting off.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_services
from auth.guard import AccessGuard
from auth.mail import Mailer
from auth.models import User
from auth.passwords import PasswordPolicy, hash_password
from auth.service import AuthService
from auth.session_cache import SessionCache
from auth.store import CredentialStore
from auth.tokens import TokenManager
from cache.store import MemoryCache
from core.config import get_settings

SESSION_TTL = 3600
CONFIRMATION_TTL = 86400
HASH_ROUNDS = 4
STRONG_PASSWORD = "Sup3rSecret"

_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock for TokenManager; monotonic() feeds MemoryCache."""

    def __init__(self, start: datetime = _EPOCH) -> None:
        self.start = start
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)

    def monotonic(self) -> float:
        return 1000.0 + (self.current - self.start).total_seconds()


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_store() -> CredentialStore:
    name = uuid.uuid4().hex
    return CredentialStore(db_url=f"sqlite:///file:test_auth_{name}?mode=memory&cache=shared&uri=true")


def make_user(store: CredentialStore, email: str = "ada@example.com", verified: bool = False, **fields) -> User:
    """Insert a user with STRONG_PASSWORD and return it with its id set."""
    user = User(
        email=email,
        hashed_password=hash_password(fields.pop("password", STRONG_PASSWORD), rounds=HASH_ROUNDS),
        first_name=fields.pop("first_name", "Ada"),
        last_name=fields.pop("last_name", "Lovelace"),
        is_verified=verified,
        **fields,
    )
    user.id = store.create_user(user)
    return user


def _mock_mailer() -> MagicMock:
    mailer = MagicMock(spec=Mailer)
    mailer.send_account_confirmation.return_value = True
    return mailer


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    s = _make_test_store()
    yield s
    s.close()


@pytest.fixture
def cache(clock: FakeClock) -> MemoryCache:
    return MemoryCache(clock=clock.monotonic)


@pytest.fixture
def tokens(store: CredentialStore, clock: FakeClock) -> TokenManager:
    return TokenManager(store, session_ttl=SESSION_TTL, confirmation_ttl=CONFIRMATION_TTL, clock=clock)


@pytest.fixture
def sessions(cache: MemoryCache, tokens: TokenManager, store: CredentialStore) -> SessionCache:
    return SessionCache(cache, tokens, store, session_ttl=SESSION_TTL)


@pytest.fixture
def guard(sessions: SessionCache, tokens: TokenManager) -> AccessGuard:
    return AccessGuard(sessions, tokens)


@pytest.fixture
def mailer() -> MagicMock:
    return _mock_mailer()


@pytest.fixture
def service(store, tokens, sessions, mailer) -> AuthService:
    return AuthService(store, tokens, sessions, PasswordPolicy(min_length=8), mailer, hash_rounds=HASH_ROUNDS)


# ---------------------------------------------------------------------------
# Integration fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    store: CredentialStore
    clock: FakeClock
    mailer: MagicMock


def _patch_lifespan(store: CredentialStore, clock: FakeClock, mailer: MagicMock):
    """Return an async context manager that replaces the real lifespan.

    Builds the same object graph as production through wire_services(), but
    over the test store, an in-process cache on the fake clock, and a mock
    mailer so no SMTP connection is ever attempted.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        cache = MemoryCache(clock=clock.monotonic)
        wire_services(app, get_settings(), store, cache, clock=clock, mailer=mailer)
        yield
        cache.close()

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness around a TestClient with isolated collaborators.

    Function-scoped: every test starts with an empty store and cache. Session
    cookies are passed explicitly per request, so the client's own cookie jar
    is never relied on.
    """
    store = _make_test_store()
    clock = FakeClock()
    mailer = _mock_mailer()
    app.router.lifespan_context = _patch_lifespan(store, clock, mailer)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, store=store, clock=clock, mailer=mailer)

    store.close()
