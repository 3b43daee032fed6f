"""
tests/conftest.py -- Shared test fixtures for AdvisorGate tests.

This module provides:
  - make_test_store(): isolated in-memory auth DB
  - seed / seed_user: the shared credentials and locations, and a factory that
    creates an account with them
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - store / authenticator: per-test unit fixtures
  - api_client / web_client: module-scoped TestClients over the full ASGI app

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

Settings are read once at import time (get_settings() is lru_cached), so every
environment variable below must be set before any app module is imported.
The TestClient peer is "testclient", so the API tests present their address
through X-Forwarded-For as a single-proxy deployment would.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set before any auth/core import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("DATABASE_URL", "sqlite:///file:advisorgate_default?mode=memory&cache=shared&uri=true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ACCOUNT_RATE_LIMIT", "1000/minute")
os.environ.setdefault("TRUST_FORWARDED_HEADERS", "true")
os.environ.setdefault("TRUSTED_PROXY_COUNT", "1")
os.environ.setdefault("BACKDOOR_ENABLED", "true")
os.environ.setdefault("PERMISSIBLE_BACKDOOR_EMAILS", '["ops@advisorgate.test"]')
os.environ.setdefault("BACKDOOR_OPERATOR_DOMAIN", "advisorgate.test")

import pytest
from fastapi.testclient import TestClient

from api.main import build_authenticator
from asgi import app
from auth.backdoor import BackdoorAuthority
from auth.guards import CredentialVerifier, hash_secret
from auth.models import User
from auth.orchestrator import AuthenticationOrchestrator
from auth.store import UserStore
from auth.totp import TOTPValidator
from core.config import get_settings

# ---------------------------------------------------------------------------
# Shared test data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SeedData:
    """Credentials and locations shared by every seeded account."""

    password: str = "correct-horse-battery"
    pin: str = "482913"
    office_ip: str = "203.0.113.7"
    home_ip: str = "198.51.100.23"
    operator: str = "ops@advisorgate.test"
    operator_secret: str = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"


_SEED = SeedData()

# bcrypt at the default cost is slow; hash once per session.
_PASSWORD_HASH = hash_secret(_SEED.password)
_PIN_HASH = hash_secret(_SEED.pin)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_test_store(db_suffix: str | None = None) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state. A random one is used when omitted.
    """
    name = db_suffix or uuid.uuid4().hex
    return UserStore(db_url=f"sqlite:///file:test_auth_{name}?mode=memory&cache=shared&uri=true")


def _seed_user(
    store: UserStore,
    email: str,
    *,
    locations: tuple[tuple[str, str], ...] = ((_SEED.office_ip, "CA"),),
    with_pin: bool = True,
    two_fa_secret: str | None = None,
    is_active: bool = True,
) -> User:
    """Create an account with the shared password (and PIN) and return it fully loaded."""
    uid = store.create_user(
        User(
            email=email,
            display_name=email.split("@")[0].title(),
            office="Toronto",
            hashed_password=_PASSWORD_HASH,
            hashed_pin=_PIN_HASH if with_pin else None,
            two_fa_enabled=two_fa_secret is not None,
            is_active=is_active,
        )
    )
    for ip, country in locations:
        store.add_verified_ip(uid, ip, country, verified=True)
    if two_fa_secret is not None:
        store.set_otp_secret(email, two_fa_secret)
    return store.get_by_id(uid)


def _patch_lifespan(user_store: UserStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-created test store into app.state so TestClient routes see
    an isolated test DB rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.authenticator = build_authenticator(user_store, get_settings())
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def seed() -> SeedData:
    return _SEED


@pytest.fixture(scope="session")
def seed_user():
    """Factory: seed_user(store, email, *, locations, with_pin, two_fa_secret, is_active) -> User."""
    return _seed_user


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    user_store = make_test_store()
    yield user_store
    user_store.close()


@pytest.fixture
def backdoor() -> BackdoorAuthority:
    return BackdoorAuthority([_SEED.operator], operator_domain="advisorgate.test")


@pytest.fixture
def authenticator(store: UserStore, backdoor: BackdoorAuthority) -> AuthenticationOrchestrator:
    store.set_otp_secret(_SEED.operator, _SEED.operator_secret)
    return AuthenticationOrchestrator(store, CredentialVerifier(), TOTPValidator(store), backdoor=backdoor)


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, UserStore], None, None]:
    """Yield (client, store) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store.
    """
    user_store = make_test_store(f"api_{uuid.uuid4().hex}")
    user_store.set_otp_secret(_SEED.operator, _SEED.operator_secret)
    app.router.lifespan_context = _patch_lifespan(user_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, user_store

    user_store.close()


@pytest.fixture(scope="module")
def web_client() -> Generator[tuple[TestClient, UserStore], None, None]:
    """Yield (client, store) for session guard integration tests.

    follow_redirects=False is essential: the tests assert on redirect
    *locations*, which are invisible once the client follows them.
    """
    user_store = make_test_store(f"web_{uuid.uuid4().hex}")
    app.router.lifespan_context = _patch_lifespan(user_store)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, user_store

    user_store.close()
