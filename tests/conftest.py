"""
tests/conftest.py -- Shared test fixtures for Credvault.

This module provides:
  - store / hasher / tokens / service: unit-level fixtures over an isolated
    in-memory SQLite store, bcrypt at cost 4 (the minimum) for speed
  - delivered: list capturing reset tokens passed to the on_reset_token hook
  - _patch_lifespan(): wires test collaborators into app.state
  - api_client: TestClient over the real FastAPI app with isolated stores

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

DEBUG must be set before any api/core import so get_settings() generates
signing secrets in dev mode instead of raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate signing secrets in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.hasher import PasswordHasher
from auth.models import ROLE_ADMIN, GeneratedResetToken, TokenPayload, UserRecord
from auth.reset_tokens import ResetTokenManager
from auth.service import CredentialService
from auth.store import UserStore
from auth.tokens import TokenService
from core.duration import parse_duration

ACCESS_SECRET = "a" * 16 + "access-secret-for-tests-only"
REFRESH_SECRET = "r" * 16 + "refresh-secret-for-tests-only"

# Rate limits are exercised by slowapi itself; keep them out of the way of
# tests that log in many times from the same client address.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def tokens() -> TokenService:
    return TokenService(
        access_secret=ACCESS_SECRET,
        refresh_secret=REFRESH_SECRET,
        access_expires_seconds=parse_duration("15m", 900),
        refresh_expires_seconds=parse_duration("7d", 604800),
    )


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def delivered() -> list[tuple[UserRecord, GeneratedResetToken]]:
    return []


@pytest.fixture
def service(store, hasher, tokens, delivered) -> CredentialService:
    return CredentialService(
        store=store,
        hasher=hasher,
        tokens=tokens,
        reset_tokens=ResetTokenManager(expires_seconds=3600),
        on_reset_token=lambda user, generated: delivered.append((user, generated)),
    )


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    service: CredentialService
    store: UserStore
    delivered: list
    admin_token: str


def _patch_lifespan(store: UserStore, service: CredentialService):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test collaborators into app.state so TestClient routes
    see isolated test DBs rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = store
        app.state.credential_service = service
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request, hasher) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    One TestClient per test module for speed. The DB name is derived from the
    module name so modules never share state. An ADMIN account is created up
    front and its access token exposed for admin-only routes.
    """
    db_name = request.module.__name__.replace(".", "_")
    user_store = UserStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    delivered: list = []
    service = CredentialService(
        store=user_store,
        hasher=hasher,
        tokens=TokenService(
            access_secret=ACCESS_SECRET,
            refresh_secret=REFRESH_SECRET,
            access_expires_seconds=900,
            refresh_expires_seconds=604800,
        ),
        reset_tokens=ResetTokenManager(expires_seconds=3600),
        on_reset_token=lambda user, generated: delivered.append((user, generated)),
    )

    admin = user_store.create(
        email="admin@example.com",
        name="Admin",
        password_hash=hasher.hash("Admin@12345"),
        role=ROLE_ADMIN,
    )
    admin_token = service.tokens.generate_tokens(TokenPayload.from_record(admin)).access_token

    app.router.lifespan_context = _patch_lifespan(user_store, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(
            client=client,
            service=service,
            store=user_store,
            delivered=delivered,
            admin_token=admin_token,
        )

    user_store.close()
