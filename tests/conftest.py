"""
tests/conftest.py -- Shared fixtures for authgate unit and integration tests.

This module provides:
  - FrozenClock: an advanceable clock injected into every time-dependent component
  - component fixtures (engine, stores, hasher, codec, services) over a fresh
    in-memory SQLite database per test, with bcrypt at its minimum cost
  - RecordingMailer: a mail sink that keeps messages instead of sending them
  - api_client: TestClient over create_app(settings) with an isolated database

Design: the HTTP fixtures use named shared-memory SQLite URIs (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: databases are per-connection and would present a blank schema to
each worker thread. The named URI format shares one in-memory instance
across all connections in the process; a uuid in the name isolates tests.
"""

from __future__ import annotations

import uuid
from collections.abc import Generator
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.limiter import limiter
from api.main import create_app
from auth.password_reset import PasswordResetService
from auth.rbac import Authorizer, RoleStore
from auth.refresh_tokens import RefreshTokenStore
from auth.seed import seed_roles_and_permissions
from auth.service import AuthService
from auth.store import UserStore, create_db_engine
from auth.tokens import PasswordHasher, TokenCodec
from core.config import Settings

ACCESS_SECRET = "access-secret-for-tests-0123456789abcdef"
REFRESH_SECRET = "refresh-secret-for-tests-0123456789abcdef"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


@dataclass
class SentResetEmail:
    to_email: str
    token: str
    username: str


@dataclass
class RecordingMailer:
    """Stands in for MailService. Set fail=True to simulate an SMTP outage."""

    sent: list[SentResetEmail] = field(default_factory=list)
    fail: bool = False

    def send_password_reset_email(self, to_email: str, token: str, username: str) -> None:
        if self.fail:
            raise ConnectionRefusedError("SMTP server unavailable")
        self.sent.append(SentResetEmail(to_email, token, username))


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = create_db_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def codec(clock: FrozenClock) -> TokenCodec:
    return TokenCodec(ACCESS_SECRET, REFRESH_SECRET, access_ttl="15m", refresh_ttl="7d", clock=clock)


@pytest.fixture
def user_store(engine: Engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def refresh_store(engine: Engine, clock: FrozenClock) -> RefreshTokenStore:
    return RefreshTokenStore(engine, clock=clock)


@pytest.fixture
def role_store(engine: Engine) -> RoleStore:
    store = RoleStore(engine)
    seed_roles_and_permissions(store)
    return store


@pytest.fixture
def authorizer(role_store: RoleStore) -> Authorizer:
    return Authorizer(role_store)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def auth_service(
    user_store: UserStore,
    refresh_store: RefreshTokenStore,
    codec: TokenCodec,
    hasher: PasswordHasher,
    role_store: RoleStore,
) -> AuthService:
    return AuthService(user_store, refresh_store, codec, hasher, roles=role_store)


@pytest.fixture
def reset_service(
    engine: Engine,
    user_store: UserStore,
    hasher: PasswordHasher,
    mailer: RecordingMailer,
    clock: FrozenClock,
) -> PasswordResetService:
    return PasswordResetService(engine, user_store, hasher, mailer, expires_in_hours=1, clock=clock)


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


def make_test_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "database_url": f"sqlite:///file:authgate_test_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true",
        "bcrypt_rounds": 4,
        "jwt_access_secret": ACCESS_SECRET,
        "jwt_refresh_secret": REFRESH_SECRET,
        "session_secret": "session-secret-for-tests-0123456789abcdef",
        "mail_host": "",
        "google_client_id": "",
        "google_client_secret": "",
        "github_client_id": "",
        "github_client_secret": "",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings_factory():
    """make_test_settings, for modules that override api_settings."""
    return make_test_settings


@pytest.fixture
def api_settings() -> Settings:
    return make_test_settings()


@pytest.fixture
def api_client(api_settings: Settings) -> Generator[TestClient, None, None]:
    """TestClient over a fresh app and database. The rate limiter is off."""
    limiter.enabled = False
    app = create_app(api_settings)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
    limiter.enabled = True


@pytest.fixture
def sent_emails(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> RecordingMailer:
    """Capture reset emails sent by the app under test."""
    recorder = RecordingMailer()
    monkeypatch.setattr(api_client.app.state.mailer, "send_password_reset_email", recorder.send_password_reset_email)
    return recorder


@pytest.fixture
def register(api_client: TestClient):
    """Return a helper that registers a user over HTTP and returns the JSON body."""

    def _register(email: str = "alice@example.com", username: str = "alice", password: str = "Passw0rd!") -> dict:
        resp = api_client.post("/auth/register", json={"email": email, "username": username, "password": password})
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _register


@pytest.fixture
def admin_headers(api_client: TestClient, register) -> dict[str, str]:
    """Authorization headers for a registered user holding the admin role."""
    body = register(email="root@example.com", username="root", password="RootPassw0rd")
    role_store: RoleStore = api_client.app.state.role_store
    role_store.assign_role(body["user"]["id"], role_store.get_role_by_name("admin").id)
    return {"Authorization": f"Bearer {body['accessToken']}"}
