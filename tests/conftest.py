"""
tests/conftest.py -- Shared test fixtures for EduMate tests.

This module provides:
  - make_settings(): Settings with a fixed key and the cheapest bcrypt cost
  - make_store():    isolated named shared-memory SQLite UserStore
  - api_client:      TestClient over a factory-built app, with an admin and a
                     regular user already created and tokens issued for both

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers and the gatekeeper's store lookup
in a thread pool. Plain :memory: DBs are per-connection and would present a
blank schema to each worker thread.

Tests never import asgi.py: the app is built per module by create_app() with
explicit Settings, so no test depends on the process environment.
"""

from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from auth.credentials import PasswordEncoder
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token
from core.config import Settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-chars-long"
TEST_ORIGIN = "http://localhost:5173"


def make_settings(**overrides) -> Settings:
    values = {
        "secret_key": TEST_SECRET,
        "cors_allowed_origins": TEST_ORIGIN,
        "bcrypt_rounds": 4,
        "token_expire_seconds": 3600,
    }
    values.update(overrides)
    return Settings(**values)


def make_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return UserStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


@dataclass
class ApiContext:
    client: TestClient
    settings: Settings
    store: UserStore
    encoder: PasswordEncoder
    admin_id: int
    admin_token: str
    user_id: int
    user_token: str

    def auth(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture(scope="module")
def api_client(request) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for integration tests.

    The TestClient runs the real app (real middleware stack, real gatekeeper,
    real routes) against an isolated in-memory store. One admin ("testadmin")
    and one regular user ("student") exist before the first request.
    """
    settings = make_settings()
    store = make_store(request.module.__name__.replace(".", "_"))
    encoder = PasswordEncoder(rounds=settings.bcrypt_rounds)

    admin_id = store.create_user(User(username="testadmin", role="admin", hashed_password=encoder.hash("adminpass123")))
    user_id = store.create_user(User(username="student", role="user", hashed_password=encoder.hash("studentpass1")))

    app = create_app(settings=settings, user_store=store)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(
            client=client,
            settings=settings,
            store=store,
            encoder=encoder,
            admin_id=admin_id,
            admin_token=create_access_token(settings, admin_id, "testadmin", "admin"),
            user_id=user_id,
            user_token=create_access_token(settings, user_id, "student", "user"),
        )

    store.close()
