"""
tests/conftest.py -- Shared test fixtures for PimpMyPack.

This module provides:
  - make_db_url(): a unique named shared-memory SQLite URI
  - account_store / refresh_store: isolated stores for unit tests
  - make_account: factory fixture inserting an account with a known password
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any api/core import:
  DEBUG=true              -- get_settings() auto-generates SECRET_KEY
  BCRYPT_ROUNDS=4         -- keep hashing fast
  ROLE_CACHE_TTL_SECONDS=0 -- role changes are visible to the next request
  LOGIN_RATE_LIMIT and REFRESH_RATE_LIMIT_REQUESTS -- high enough that the
                          suite only hits a limit where a test installs one
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager, suppress
from typing import NamedTuple

# CRITICAL: Set before any api/core import so get_settings() picks them up.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ROLE_CACHE_TTL_SECONDS", "0")
os.environ.setdefault("REFRESH_RATE_LIMIT_REQUESTS", "1000")

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_state
from auth.models import ROLE_ADMIN, ROLE_STANDARD, STATUS_ACTIVE, STATUS_PENDING, Account
from auth.passwords import hash_password
from auth.refresh_tokens import RefreshTokenStore
from auth.store import AccountStore
from core.config import get_settings

TEST_ROUNDS = 4
USER_PASSWORD = "userpass123"
ADMIN_PASSWORD = "adminpass123"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_db_url(prefix: str = "test_auth") -> str:
    """Return a named shared-memory SQLite URI unique to this call."""
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def create_account(
    store: AccountStore,
    username: str,
    password: str = USER_PASSWORD,
    role: str = ROLE_STANDARD,
    status: str = STATUS_ACTIVE,
) -> int:
    """Insert an account with a cheap bcrypt hash and return its ID."""
    account = Account(username=username, email=f"{username}@example.com", role=role, status=status)
    return store.create_account(account, hash_password(password, rounds=TEST_ROUNDS))


@pytest.fixture
def make_account():
    """Factory fixture: make_account(store, username, password=..., role=..., status=...) -> id."""
    return create_account


@pytest.fixture
def account_store() -> Generator[AccountStore, None, None]:
    store = AccountStore(make_db_url())
    yield store
    store.close()


@pytest.fixture
def refresh_store(account_store: AccountStore) -> RefreshTokenStore:
    return RefreshTokenStore(account_store.engine, default_days=1, extended_days=30)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


class ApiContext(NamedTuple):
    client: TestClient
    account_store: AccountStore
    user_id: int
    admin_id: int
    pending_id: int


def _patch_lifespan(account_store: AccountStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store through the same init_state() the real lifespan
    uses. The sweep task is a long-sleeping coroutine (a real asyncio.Task is
    required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_state(app, get_settings(), account_store)
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await app.state.sweep_task

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext with one active user, one admin and one pending account.

    Module-scoped: one TestClient (and one fresh rate limiter) per test module.
    """
    account_store = AccountStore(make_db_url("test_api"))
    user_id = create_account(account_store, "alice", USER_PASSWORD)
    admin_id = create_account(account_store, "root", ADMIN_PASSWORD, role=ROLE_ADMIN)
    pending_id = create_account(account_store, "pending", USER_PASSWORD, status=STATUS_PENDING)

    app.router.lifespan_context = _patch_lifespan(account_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client, account_store, user_id, admin_id, pending_id)

    account_store.close()

