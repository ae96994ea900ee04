"""
tests/conftest.py -- Shared test fixtures for DevHub unit and integration tests.

This module provides:
  - stores / credentials / issuer: isolated auth components for unit tests
  - _make_test_stores(): file-backed SQLite stores for one test module
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient with an admin JWT for API integration tests

Design: every store lives in a file-backed SQLite database under a pytest
temp directory. Store calls run on worker threads (run_blocking), and plain
':memory:' databases are per-connection, so each worker thread would see a
blank schema. A temp file gives every connection the same database, and WAL
mode lets readers and the writer proceed concurrently.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from pathlib import Path

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

from api.limiter import limiter
from api.main import app, attach_services
from auth.credentials import CredentialStore
from auth.models import Role, User
from auth.passwords import hash_password
from auth.sessions import SessionStore, hash_refresh_token
from auth.store import UserStore
from auth.tokens import TokenIssuer, create_access_token
from core.config import get_settings

# Register is limited to a handful of calls per minute; the suites register
# far more accounts than that from the same client address.
limiter.enabled = False

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"

ADMIN_PASSWORD = "adminpass123"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_dir: Path, secret_key: str) -> tuple[UserStore, SessionStore]:
    """Create a UserStore and SessionStore sharing one file-backed engine."""
    user_store = UserStore(db_url=f"sqlite:///{db_dir / 'devhub_test.db'}")
    session_store = SessionStore(user_store.engine, secret_key=secret_key)
    return user_store, session_store


def _patch_lifespan(user_store: UserStore, session_store: SessionStore):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state through the same
    attach_services() the real lifespan uses, so routes see isolated test
    databases rather than the production one.

    The sweep_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        attach_services(app, user_store, session_store, get_settings())
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


def run(coro):
    """Drive one core coroutine to completion from a synchronous test."""
    return asyncio.run(coro)


def live_session_count(session_store: SessionStore, user_id: int) -> int:
    """Number of refresh-token rows currently stored for user_id."""
    with session_store.engine.connect() as conn:
        return conn.execute(
            text("SELECT COUNT(*) FROM refresh_tokens WHERE user_id = :uid"), {"uid": user_id}
        ).scalar()


def stored_session(session_store: SessionStore, raw_token: str, secret_key: str = TEST_SECRET):
    """The refresh_tokens row for raw_token, or None once it has been consumed."""
    with session_store.engine.connect() as conn:
        return conn.execute(
            text("SELECT * FROM refresh_tokens WHERE token_hash = :h"),
            {"h": hash_refresh_token(secret_key, raw_token)},
        ).fetchone()


# ---------------------------------------------------------------------------
# Unit-test fixtures -- fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def stores(tmp_path) -> Generator[tuple[UserStore, SessionStore], None, None]:
    user_store, session_store = _make_test_stores(tmp_path, TEST_SECRET)
    yield user_store, session_store
    user_store.close()


@pytest.fixture
def credentials(stores) -> CredentialStore:
    user_store, session_store = stores
    return CredentialStore(user_store, session_store, timeout=5.0)


@pytest.fixture
def issuer(stores) -> TokenIssuer:
    user_store, session_store = stores
    return TokenIssuer(
        session_store,
        user_store,
        secret_key=TEST_SECRET,
        access_expire_seconds=900,
        refresh_expire_seconds=3600,
        timeout=5.0,
    )


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated stores. The admin user
    is created before the client starts and its JWT is signed with the
    same settings the patched lifespan hands to the TokenIssuer.
    """
    settings = get_settings()
    user_store, session_store = _make_test_stores(tmp_path_factory.mktemp("api"), settings.secret_key)

    admin = User(
        username="testadmin",
        email="admin@devhub.io",
        hashed_password=hash_password(ADMIN_PASSWORD),
        role=Role.ADMIN,
    )
    uid = user_store.create_user(admin)

    token = create_access_token(uid, settings.secret_key, expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(user_store, session_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, uid

    user_store.close()


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def register(client: TestClient, username: str, email: str, password: str = "secret12", **extra) -> dict:
    """POST /auth/register and return the response envelope's data (asserts 201)."""
    resp = client.post(
        "/api/v1/auth/register",
        json={"username": username, "email": email, "password": password, **extra},
    )
    assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
    return resp.json()["data"]
