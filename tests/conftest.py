"""
tests/conftest.py -- Shared test fixtures for AuthModule.

This module provides:
  - store / issuer / service: isolated unit-level collaborators on a private
    in-memory SQLite database
  - alice: a registered, active end user on that database
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient because it runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import Registration, User, UserType
from auth.service import AuthenticationService
from auth.store import UserStore
from auth.tokens import TokenIssuer

TEST_SECRET = "unit-test-signing-key-0123456789abcdef"
STRONG_PASSWORD = "Passw0rd!"
ADMIN_PASSWORD = "Adm1n-Passw0rd!"


# ---------------------------------------------------------------------------
# Unit-level fixtures -- fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(TEST_SECRET, issuer="test-issuer", audience="test-audience", expire_minutes=60)


@pytest.fixture
def service(store: UserStore, issuer: TokenIssuer) -> AuthenticationService:
    return AuthenticationService(store, issuer)


@pytest.fixture
def alice(service: AuthenticationService) -> User:
    """A registered, active end user: alice / alice@example.com / STRONG_PASSWORD."""
    result = service.register(
        Registration(
            email="alice@example.com",
            username="alice",
            password=STRONG_PASSWORD,
            first_name="Alice",
            last_name="Liddell",
        )
    )
    assert result.is_success, result.error_message
    return result.user


# ---------------------------------------------------------------------------
# API fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, token_issuer: TokenIssuer):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test collaborators into app.state so TestClient routes
    see an isolated test DB rather than the on-disk database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.token_issuer = token_issuer
        app.state.auth_service = AuthenticationService(user_store, token_issuer)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, UserStore, User], None, None]:
    """Yield (client, user_store, admin) for API integration tests.

    The admin account (username "root", password ADMIN_PASSWORD) is created
    directly in the store before the client starts. Rate limiting is
    switched off so tests can log in as often as they need.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    user_store = UserStore(f"sqlite:///file:test_auth_{suffix}?mode=memory&cache=shared&uri=true")
    token_issuer = TokenIssuer(TEST_SECRET, issuer="test-issuer", audience="test-audience", expire_minutes=60)

    admin = User(
        username="root",
        email="root@example.com",
        first_name="Root",
        last_name="Admin",
        user_type=UserType.ADMIN,
    )
    admin.id = user_store.create_user(admin, ADMIN_PASSWORD)

    app.router.lifespan_context = _patch_lifespan(user_store, token_issuer)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, user_store, admin

    limiter.enabled = True
    user_store.close()
