import sys
from pathlib import Path as _Path
sys.path.insert(0, str(_Path(__file__).resolve().parents[1] / "src"))

import pytest
from fastapi.testclient import TestClient

from secretshare.app import create_app
from secretshare.auth.service import AuthService
from secretshare.auth.session import SessionManager
from secretshare.config import AppConfig
from secretshare.infra.secrets_repo import InMemorySecretRepository
from secretshare.infra.session_store import InMemorySessionStore, SessionStoreError
from secretshare.infra.users_repo import InMemoryUserRepository

APP_SECRET = "test-app-secret-for-pytest-only"


class FlakySessionStore(InMemorySessionStore):
    """In-memory store whose individual operations can be switched to fail."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail = set()

    def _maybe_fail(self, op: str) -> None:
        if op in self.fail:
            raise SessionStoreError(f"{op} unavailable")

    def regenerate(self, old_token):
        self._maybe_fail("regenerate")
        return super().regenerate(old_token)

    def bind_principal(self, token, user_id):
        self._maybe_fail("bind_principal")
        return super().bind_principal(token, user_id)

    def destroy(self, token):
        self._maybe_fail("destroy")
        return super().destroy(token)

    def set_flash(self, token, severity, message):
        self._maybe_fail("set_flash")
        return super().set_flash(token, severity, message)


@pytest.fixture()
def secret() -> str:
    return APP_SECRET


@pytest.fixture()
def users() -> InMemoryUserRepository:
    return InMemoryUserRepository()


@pytest.fixture()
def store() -> FlakySessionStore:
    return FlakySessionStore()


@pytest.fixture()
def manager(store) -> SessionManager:
    return SessionManager(store)


@pytest.fixture()
def auth(users, manager, secret) -> AuthService:
    return AuthService(users, manager, secret=secret)


@pytest.fixture()
def app_config() -> AppConfig:
    return AppConfig(secret_key=APP_SECRET, random_secret_url="")


@pytest.fixture()
def secret_repo() -> InMemorySecretRepository:
    return InMemorySecretRepository()


@pytest.fixture()
def make_client(users, store, secret_repo, monkeypatch):
    """Build a TestClient around in-memory collaborators for a given config."""
    monkeypatch.setattr(
        "secretshare.app.fetch_random_secret",
        lambda url, timeout=5.0: "I secretly enjoy pineapple pizza.",
    )

    def _make(cfg: AppConfig) -> TestClient:
        app = create_app(cfg, users=users, session_store=store, secret_repo=secret_repo)
        return TestClient(app)

    return _make


@pytest.fixture()
def client(make_client, app_config) -> TestClient:
    return make_client(app_config)
