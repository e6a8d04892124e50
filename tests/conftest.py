"""
tests/conftest.py -- Shared test fixtures for tenantgate tests.

This module provides:
  - store / hasher / signer / service: the auth core wired against a
    throwaway SQLite file, for unit tests that skip HTTP entirely
  - registered: one user registered through AuthService.register()
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - api_client: TestClient over the real app with an isolated store

Design: each test gets its own SQLite *file* under tmp_path rather than an
in-memory URI. TestClient runs sync route handlers in a thread pool and the
store uses a regular connection pool, so every connection must see the same
database. Files also give each test a clean slate.

The DEBUG and BCRYPT_ROUNDS env vars must be set before any api/core import
so get_settings() auto-generates SECRET_KEY and bcrypt stays fast.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import RegistrationResult
from auth.passwords import PasswordHasher
from auth.service import AuthService, build_auth_service
from auth.store import CredentialStore
from auth.tokens import TokenSigner
from core.config import get_settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"
TEST_EMAIL = "alice@example.com"
TEST_PASSWORD = "correct-horse-9"


# ---------------------------------------------------------------------------
# Auth core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store(tmp_path) -> Generator[CredentialStore, None, None]:
    s = CredentialStore(f"sqlite:///{tmp_path / 'auth.db'}")
    yield s
    s.close()


@pytest.fixture
def hasher() -> PasswordHasher:
    # Minimum work factor; the hash format is identical at any cost.
    return PasswordHasher(rounds=4)


@pytest.fixture
def signer() -> TokenSigner:
    return TokenSigner(TEST_SECRET)


@pytest.fixture
def service(store: CredentialStore, hasher: PasswordHasher, signer: TokenSigner) -> AuthService:
    return AuthService(store=store, hasher=hasher, signer=signer)


@pytest.fixture
def registered(service: AuthService) -> RegistrationResult:
    """Alice, owner of "Acme Corp", registered through the real service path."""
    return service.register(
        email=TEST_EMAIL,
        password=TEST_PASSWORD,
        name="Alice",
        org_name="Acme Corp",
    )


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CredentialStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store into app.state so TestClient routes see an
    isolated database rather than the configured one.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        app.state.settings = settings
        app.state.store = store
        app.state.auth_service = build_auth_service(settings, store)
        yield

    return test_lifespan


@pytest.fixture
def api_client(tmp_path) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app backed by a fresh database.

    Function-scoped: login and register set the auth cookie on the client,
    so a shared client would leak authentication between tests.
    """
    test_store = CredentialStore(f"sqlite:///{tmp_path / 'api.db'}")
    app.router.lifespan_context = _patch_lifespan(test_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    test_store.close()


def register_via_api(client: TestClient, email: str = TEST_EMAIL, org_name: str = "Acme Corp") -> dict:
    """POST /auth/register and return the data payload. Asserts 201."""
    resp = client.post(
        "/api/v1/auth/register",
        json={"email": email, "password": TEST_PASSWORD, "name": "Alice", "orgName": org_name},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


@pytest.fixture
def registered_client(api_client: TestClient) -> tuple[TestClient, dict]:
    """Yield (client, register payload). The client now holds Alice's auth cookie."""
    return api_client, register_via_api(api_client)
