"""Shared fixtures: a fresh SQLite file per test, services wired like create_app."""

from datetime import datetime, timezone

import pytest

from pressroom import create_app
from pressroom.config import Settings
from pressroom.content import CategoryCatalog, PostService, TagCatalog
from pressroom.datastore import DataStore
from pressroom.identity import IdentityService
from pressroom.passwords import PasswordHasher
from pressroom.tokens import TokenService


# Cheap hashing keeps the suite fast; production uses werkzeug's default.
FAST_HASH = "pbkdf2:sha256:1000"


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings(tmp_path):
    return Settings(
        secret_key="test-secret-key",
        jwt_secret="test-jwt-secret",
        database_path=tmp_path / "pressroom.sqlite3",
        password_hash_method=FAST_HASH,
        log_level="DEBUG",
    )


@pytest.fixture
def datastore(settings):
    store = DataStore(settings.database_path, busy_timeout_ms=settings.busy_timeout_ms)
    yield store
    store.close()


@pytest.fixture
def tokens(settings):
    return TokenService(settings.jwt_secret)


@pytest.fixture
def hasher():
    return PasswordHasher(FAST_HASH)


@pytest.fixture
def identity(datastore, hasher, tokens):
    return IdentityService(datastore, hasher, tokens)


@pytest.fixture
def categories(datastore):
    return CategoryCatalog(datastore)


@pytest.fixture
def tags(datastore):
    return TagCatalog(datastore)


@pytest.fixture
def posts(datastore):
    return PostService(datastore)


@pytest.fixture
def author(identity):
    return identity.sign_up("alice", "secret123")


@pytest.fixture
def app(settings):
    app = create_app(settings)
    app.config["TESTING"] = True
    yield app
    app.extensions["datastore"].close()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(client):
    client.post("/api/v1/signup", json={"username": "alice", "password": "secret123"})
    resp = client.post("/api/v1/login", json={"username": "alice", "password": "secret123"})
    token = resp.get_json()["data"]["token"]
    return {"Authorization": f"Bearer {token}"}
