"""
tests/conftest.py -- Shared fixtures for tokengate tests.

This module provides:
  - config / client_config: AuthConfig for cookie and client storage modes
  - user_store / revoked_store: isolated in-memory stores
  - capabilities: JwtCapabilities over the in-memory revoked store
  - app_client(): TestClient over create_app() with isolated stores

Design: the app fixtures use named shared-memory SQLite URIs (not plain
:memory:) because TestClient runs sync route handlers and the auth pipeline's
blocking work in a thread pool. Plain :memory: DBs are per-connection and
would present a blank schema to each worker thread. Each fixture gets a
unique name so tests never share rows.

DEBUG must be set before any core/api import so get_settings() auto-generates
SECRET_KEY in dev mode instead of raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator

# CRITICAL: set before any core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SIGNUP_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from auth.store import RevokedTokenStore, UserStore
from auth.tokens import JwtCapabilities
from core.config import AuthConfig, StorageMode
from tests.helpers import TEST_SECRET, SentMail


def _shared_memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@pytest.fixture
def config() -> AuthConfig:
    """Cookie-mode config. pbkdf2 keeps the suite fast compared to bcrypt."""
    return AuthConfig(secret_key=TEST_SECRET, crypto_mod="pbkdf2")


@pytest.fixture
def client_config() -> AuthConfig:
    return AuthConfig(secret_key=TEST_SECRET, crypto_mod="pbkdf2", storage=StorageMode.client)


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def revoked_store() -> Generator[RevokedTokenStore, None, None]:
    store = RevokedTokenStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def capabilities(config: AuthConfig, revoked_store: RevokedTokenStore) -> JwtCapabilities:
    return JwtCapabilities(config, revoked_store)


# ---------------------------------------------------------------------------
# App clients
# ---------------------------------------------------------------------------


@pytest.fixture
def app_client():
    """Factory fixture: app_client(config) -> (TestClient, UserStore, SentMail).

    follow_redirects=False so tests can assert on redirect Location headers.
    """
    clients: list[TestClient] = []

    def _make(config: AuthConfig):
        user_store = UserStore(_shared_memory_url("users"))
        revoked_store = RevokedTokenStore(_shared_memory_url("revoked"))
        mail = SentMail()
        app = create_app(config=config, user_store=user_store, revoked_store=revoked_store, mailer=mail)
        client = TestClient(app, follow_redirects=False)
        client.__enter__()
        clients.append(client)
        return client, user_store, mail

    yield _make

    for client in clients:
        client.__exit__(None, None, None)
