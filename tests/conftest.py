from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from starlette.testclient import TestClient
from typer.testing import CliRunner

from stash_adduser.api.deps import get_settings
from stash_adduser.client import StashClient
from stash_adduser.config import Settings
from stash_adduser.main import app
from stash_adduser.storage import Storage, initialize_store

ADMIN_USERNAME = "root"
ADMIN_PASSWORD = "s3cret"


def seed_user(directory: Path, username: str, *, password: str | None = None, is_admin: bool = False) -> int:
    with Storage.open(directory, lock_timeout=1.0) as storage:
        user = storage.create_username(username, is_admin=is_admin)
        if password is not None:
            storage.set_password(user.id, password)
    return user.id


def read_users(directory: Path) -> dict:
    with Storage.open(directory, lock_timeout=1.0) as storage:
        return {user.username: user for user in storage.list_users()}


@pytest.fixture
def store_dir(tmp_path) -> Path:
    directory = tmp_path / "stash"
    initialize_store(directory, lock_timeout=1.0)
    return directory


@pytest.fixture
def settings(store_dir) -> Settings:
    return Settings(connect_timeout=2.0, lock_timeout=1.0, store_directory=store_dir)


@pytest.fixture
def admin(store_dir) -> tuple[str, str]:
    seed_user(store_dir, ADMIN_USERNAME, password=ADMIN_PASSWORD, is_admin=True)
    return ADMIN_USERNAME, ADMIN_PASSWORD


@pytest.fixture
def api_client(settings):
    app.dependency_overrides[get_settings] = lambda: settings

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def client_builder(settings):
    """Builds StashClients whose HTTP traffic goes to the in-process app."""
    app.dependency_overrides[get_settings] = lambda: settings
    opened: list[httpx.Client] = []

    def factory(base_url: str, timeout: httpx.Timeout, auth: httpx.BasicAuth | None) -> httpx.Client:
        client = TestClient(app, base_url=base_url)
        client.auth = auth
        opened.append(client)
        return client

    def build(active: Settings) -> StashClient:
        return StashClient(connect_timeout=active.connect_timeout, client_factory=factory)

    build.opened = opened
    yield build

    app.dependency_overrides.clear()


def mock_client_builder(handler, opened: list | None = None):
    """Builds StashClients served by an httpx.MockTransport handler."""

    def factory(base_url: str, timeout: httpx.Timeout, auth: httpx.BasicAuth | None) -> httpx.Client:
        client = httpx.Client(
            base_url=base_url, timeout=timeout, auth=auth, transport=httpx.MockTransport(handler)
        )
        if opened is not None:
            opened.append(client)
        return client

    def build(active: Settings) -> StashClient:
        return StashClient(connect_timeout=active.connect_timeout, client_factory=factory)

    return build


@pytest.fixture()
def cli_runner(monkeypatch):
    monkeypatch.delenv("STASH_VERBOSE", raising=False)
    monkeypatch.setenv("STASH_LOCK_TIMEOUT", "1")

    import stash_adduser.cli as cli

    return CliRunner(), cli.app
