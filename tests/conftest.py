"""
tests/conftest.py -- Shared test fixtures for NextGate.

This module provides:
  - FakeClock / clock: a controllable UTC clock injected into every store
  - accounts, sessions, audit, alerts, authenticator: unit-level services over
    one in-memory SQLite engine
  - make_account(): helper to create accounts in a given state
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Environment variables must be set before any project import: get_settings()
is cached on first call and auth/tokens.py reads it at module load.
  DEBUG=true            -> auto-generated SECRET_KEY
  BCRYPT_ROUNDS=4       -> fast hashing in tests
  *_RATE_LIMIT          -> high enough that tests never hit 429
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("MFA_RATE_LIMIT", "1000/minute")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_services
from audit.store import AuditLog
from auth.models import ROLE_ADMIN, ROLE_USER, SUBSCRIPTION_ACTIVE, Account
from auth.service import Authenticator
from auth.sessions import SessionStore
from auth.store import AccountStore
from auth.tokens import create_access_token
from core.config import get_settings
from tests.support import STRONG_PASSWORD, FakeClock, RecordingAlerts


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def accounts(clock: FakeClock) -> Generator[AccountStore, None, None]:
    store = AccountStore("sqlite:///:memory:", clock=clock)
    yield store
    store.close()


@pytest.fixture
def sessions(accounts: AccountStore, clock: FakeClock) -> SessionStore:
    return SessionStore(engine=accounts.engine, clock=clock)


@pytest.fixture
def audit(accounts: AccountStore, clock: FakeClock) -> AuditLog:
    return AuditLog(engine=accounts.engine, clock=clock)


@pytest.fixture
def alerts() -> RecordingAlerts:
    return RecordingAlerts()


@pytest.fixture
def authenticator(
    accounts: AccountStore, sessions: SessionStore, audit: AuditLog, alerts: RecordingAlerts
) -> Authenticator:
    return Authenticator(accounts=accounts, sessions=sessions, audit=audit, alerts=alerts, settings=get_settings())


@pytest.fixture
def make_account(accounts: AccountStore):
    """Factory: create an account, optionally active / admin / locked."""

    def _make(
        email: str = "seller@example.com",
        password: str = STRONG_PASSWORD,
        subscription: str | None = SUBSCRIPTION_ACTIVE,
        role: str = ROLE_USER,
    ) -> Account:
        account = accounts.create_account(email, password, role=role)
        if subscription is not None:
            account = accounts.update_subscription(account.id, status=subscription)
        return account

    return _make


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(db_url: str):
    """Return a lifespan that wires fresh services over db_url, skipping the purge task."""

    @asynccontextmanager
    async def test_lifespan(app):
        init_services(app, get_settings(), db_url=db_url)
        app.state.alerts = RecordingAlerts()
        app.state.authenticator.alerts = app.state.alerts
        yield
        app.state.account_store.close()

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, admin_token, admin_id) over an isolated in-memory database.

    Named shared-memory URIs give each test its own database while letting
    the TestClient's worker threads share it.
    """
    db_url = f"sqlite:///file:test_api_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    app.router.lifespan_context = _patch_lifespan(db_url)

    with TestClient(app, raise_server_exceptions=True) as client:
        store: AccountStore = app.state.account_store
        admin = store.create_account("admin@nextgate.com", STRONG_PASSWORD, name="NextGate Admin", role=ROLE_ADMIN)
        admin = store.update_subscription(admin.id, status=SUBSCRIPTION_ACTIVE, plan="enterprise")
        token = create_access_token(admin.id, admin.email, admin.role, expire_seconds=3600)
        yield client, token, admin.id
