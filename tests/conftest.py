"""
tests/conftest.py -- Shared test fixtures for AccessLedger tests.

This module provides:
  - _make_test_stores(): creates isolated in-memory DBs for accounts + history
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - web_client: TestClient with follow_redirects=False for browser-flow tests
  - api_client: TestClient for the JSON endpoints
  - FakeRequest: minimal stand-in for a Starlette request carrying a session
  - extract_csrf(): pulls the hidden csrf_token out of a rendered form

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync handlers and run_in_threadpool calls in worker
threads. Plain :memory: DBs are per-connection and would present a blank
schema to each worker thread.

DEBUG and ALLOWED_HOSTS must be set before any core/auth import so
get_settings() auto-generates SECRET_KEY and accepts TestClient's
"testserver" Host header.
"""

from __future__ import annotations

import os
import re
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

# CRITICAL: set before any core/auth import -- get_settings() is cached.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.main import build_orchestrator
from asgi import app
from auth.store import UserStore
from core.config import get_settings
from core.limiter import limiter
from history.store import HistoryStore

# Rate limiting has its own in-memory counters shared by every test client.
limiter.enabled = False

_CSRF_RE = re.compile(r'name="csrf_token" value="([^"]+)"')


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, HistoryStore]:
    """Create isolated named shared-memory SQLite stores.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    auth_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    history_url = f"sqlite:///file:test_history_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=auth_url), HistoryStore(db_url=history_url)


def _patch_lifespan(user_store: UserStore, history_store: HistoryStore):
    """Return an async context manager that replaces the real lifespan.

    The orchestrator is built by the production build_orchestrator() so the
    routes exercise the real strategies and recorder. The OAuth registry is a
    MagicMock to prevent network calls.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.history_store = history_store
        app.state.oauth = MagicMock()
        app.state.orchestrator = build_orchestrator(get_settings(), user_store, history_store, app.state.oauth)
        yield
        await app.state.orchestrator.history.drain()

    return test_lifespan


def extract_csrf(html: str) -> str:
    match = _CSRF_RE.search(html)
    assert match is not None, "no csrf_token field in page"
    return match.group(1)


class FakeRequest:
    """Just enough of a Starlette Request for the session helpers."""

    def __init__(self, session: dict | None = None, with_session: bool = True) -> None:
        self.scope: dict = {}
        if with_session:
            self.scope["session"] = {} if session is None else session

    @property
    def session(self) -> dict:
        assert "session" in self.scope, "SessionMiddleware must be installed to access request.session"
        return self.scope["session"]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[tuple[UserStore, HistoryStore], None, None]:
    """Fresh account + history stores for one test."""
    user_store, history_store = _make_test_stores(uuid.uuid4().hex[:12])
    yield user_store, history_store
    user_store.close()
    history_store.close()


@pytest.fixture
def web_client(stores) -> Generator[tuple[TestClient, UserStore, HistoryStore], None, None]:
    """Yield (client, user_store, history_store) for browser-flow tests.

    follow_redirects=False is essential: tests assert on redirect locations,
    which are invisible once the client follows the redirect.
    """
    user_store, history_store = stores
    app.router.lifespan_context = _patch_lifespan(user_store, history_store)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, user_store, history_store


@pytest.fixture
def api_client(web_client) -> TestClient:
    client, _, _ = web_client
    return client


@pytest.fixture
def signup(web_client):
    """Return a helper that signs up an account through the web form."""
    client, _, _ = web_client

    def _signup(email="ada@example.com", password="analytical1", first_name="Ada", last_name="Lovelace"):
        token = extract_csrf(client.get("/signup").text)
        return client.post(
            "/signup",
            data={
                "firstName": first_name,
                "lastName": last_name,
                "email": email,
                "password": password,
                "csrf_token": token,
            },
        )

    return _signup


@pytest.fixture
def login(web_client):
    """Return a helper that logs in through the web form."""
    client, _, _ = web_client

    def _login(email="ada@example.com", password="analytical1"):
        token = extract_csrf(client.get("/login").text)
        return client.post("/login", data={"email": email, "password": password, "csrf_token": token})

    return _login
