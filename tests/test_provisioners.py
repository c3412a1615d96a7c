from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import httpx
import pytest
from argon2.exceptions import HashingError
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from stash_adduser.client import StashClient
from stash_adduser.config import Settings
from stash_adduser.models import UserRead
from stash_adduser.outcome import Conflict, Created, ErrorKind, Failed, InternalConsistencyError
from stash_adduser.protocol import ResultCode
from stash_adduser.provisioners import LocalProvisioner, RemoteProvisioner
from stash_adduser.services import users as user_service
from stash_adduser.services.errors import PasswordSetException
from stash_adduser.storage import MasterLock, Storage
from tests.conftest import ADMIN_PASSWORD, ADMIN_USERNAME, mock_client_builder, read_users, seed_user


def _lock_is_free(directory) -> bool:
    lock = MasterLock(directory, timeout=0)
    lock.acquire()
    lock.release()
    return True


# --------------------
# local
# --------------------

def test_local_creates_user_with_password(store_dir, settings):
    outcome = LocalProvisioner(store_dir, settings=settings).provision("alice", "pw")

    assert isinstance(outcome, Created)
    assert outcome.user_id > 0
    users = read_users(store_dir)
    assert users["alice"].id == outcome.user_id
    assert users["alice"].password_set is True
    assert _lock_is_free(store_dir)


def test_local_without_password_leaves_password_unset(store_dir, settings):
    outcome = LocalProvisioner(store_dir, settings=settings).provision("bob")

    assert isinstance(outcome, Created)
    assert read_users(store_dir)["bob"].password_set is False


def test_local_existing_username_is_conflict_every_time(store_dir, settings):
    provisioner = LocalProvisioner(store_dir, settings=settings)
    assert isinstance(provisioner.provision("carol", "pw"), Created)

    for _ in range(3):
        assert provisioner.provision("carol", "other") == Conflict(username="carol")
    assert len(read_users(store_dir)) == 1
    assert _lock_is_free(store_dir)


def test_local_concurrent_invocations_create_exactly_once(store_dir):
    settings = Settings(lock_timeout=30.0)

    def attempt(_):
        return LocalProvisioner(store_dir, settings=settings).provision("dave")

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, range(8)))

    assert sum(isinstance(o, Created) for o in outcomes) == 1
    assert sum(isinstance(o, Conflict) for o in outcomes) == 7
    assert list(read_users(store_dir)) == ["dave"]


def test_local_lock_held_elsewhere_is_lock_unavailable(store_dir):
    with MasterLock(store_dir, timeout=0):
        outcome = LocalProvisioner(store_dir, settings=Settings(lock_timeout=0)).provision("erin")

    assert isinstance(outcome, Failed)
    assert outcome.kind is ErrorKind.LOCK_UNAVAILABLE
    assert "erin" not in read_users(store_dir)


def test_local_missing_directory_is_lock_unavailable(tmp_path, settings):
    outcome = LocalProvisioner(tmp_path / "nowhere", settings=settings).provision("frank")

    assert isinstance(outcome, Failed)
    assert outcome.kind is ErrorKind.LOCK_UNAVAILABLE


def test_local_unreadable_store_releases_lock(tmp_path, settings):
    (tmp_path / "stash.db").write_text("garbage " * 100)

    outcome = LocalProvisioner(tmp_path, settings=settings).provision("gina")

    assert isinstance(outcome, Failed)
    assert outcome.kind is ErrorKind.STORE_UNREADABLE
    assert _lock_is_free(tmp_path)


def test_local_store_write_failure_releases_lock(store_dir, settings, monkeypatch):
    def failing_commit(self):
        raise OperationalError("INSERT INTO user", {}, Exception("attempt to write a readonly database"))

    monkeypatch.setattr(Session, "commit", failing_commit)

    outcome = LocalProvisioner(store_dir, settings=settings).provision("gail", "pw")

    assert isinstance(outcome, Failed)
    assert outcome.kind is ErrorKind.STORE_UNWRITABLE
    assert outcome.partial is False
    assert "readonly database" in outcome.message
    monkeypatch.undo()
    assert "gail" not in read_users(store_dir)
    assert _lock_is_free(store_dir)


def test_local_hashing_failure_reports_partial_success(store_dir, settings, monkeypatch):
    def failing_hash(password):
        raise HashingError("out of memory")

    monkeypatch.setattr(user_service, "hash_password", failing_hash)

    outcome = LocalProvisioner(store_dir, settings=settings).provision("gwen", "pw")

    assert isinstance(outcome, Failed)
    assert outcome.kind is ErrorKind.PASSWORD_SET_FAILED
    assert "hashing failed" in outcome.message
    users = read_users(store_dir)
    assert outcome.user_id == users["gwen"].id
    assert users["gwen"].password_set is False
    assert _lock_is_free(store_dir)


def test_local_password_failure_reports_partial_success(store_dir, settings, monkeypatch):
    def failing_set_password(session, *, user_id, password):
        raise PasswordSetException(user_id, "disk full")

    monkeypatch.setattr(user_service, "set_password", failing_set_password)

    outcome = LocalProvisioner(store_dir, settings=settings).provision("hank", "pw")

    assert isinstance(outcome, Failed)
    assert outcome.kind is ErrorKind.PASSWORD_SET_FAILED
    assert outcome.partial is True
    assert "disk full" in outcome.message
    users = read_users(store_dir)
    assert outcome.user_id == users["hank"].id
    assert users["hank"].password_set is False
    assert _lock_is_free(store_dir)


def test_local_non_positive_user_id_is_fatal_and_releases_lock(store_dir, settings, monkeypatch):
    def bogus_create(self, username, *, is_admin=False):
        return UserRead(id=0, username=username, is_admin=False, password_set=False, created_at=datetime.now(timezone.utc))

    monkeypatch.setattr(Storage, "create_username", bogus_create)

    with pytest.raises(InternalConsistencyError):
        LocalProvisioner(store_dir, settings=settings).provision("ivan")
    assert _lock_is_free(store_dir)


# --------------------
# remote, against the in-process service
# --------------------

def _remote(settings, builder, *, username=ADMIN_USERNAME, password=ADMIN_PASSWORD, host="127.0.0.1:8001"):
    return RemoteProvisioner(host, username, password, settings=settings, client_builder=builder)


def test_remote_creates_user_and_sets_password(store_dir, settings, admin, client_builder):
    outcome = _remote(settings, client_builder).provision("jane", "pw")

    assert isinstance(outcome, Created)
    users = read_users(store_dir)
    assert users["jane"].id == outcome.user_id
    assert users["jane"].password_set is True
    assert all(client.is_closed for client in client_builder.opened)


def test_remote_existing_username_is_conflict(store_dir, settings, admin, client_builder):
    seed_user(store_dir, "kate")

    outcome = _remote(settings, client_builder).provision("kate", "pw")

    assert outcome == Conflict(username="kate")


def test_remote_bad_admin_password_is_connection_failure(settings, admin, client_builder):
    outcome = _remote(settings, client_builder, password="wrong").provision("liam")

    assert isinstance(outcome, Failed)
    assert outcome.kind is ErrorKind.CONNECTION_FAILED
    assert outcome.code == ResultCode.AUTH_FAILED
    assert all(client.is_closed for client in client_builder.opened)


def test_remote_non_admin_authority_is_rejected(store_dir, settings, client_builder):
    seed_user(store_dir, "mere", password="mortal")

    outcome = _remote(settings, client_builder, username="mere", password="mortal").provision("nina")

    assert isinstance(outcome, Failed)
    assert outcome.code == ResultCode.NOT_ADMIN
    assert "nina" not in read_users(store_dir)


# --------------------
# remote, against scripted responses
# --------------------

def test_remote_unreachable_host_is_connection_failure(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    opened: list[httpx.Client] = []
    outcome = _remote(settings, mock_client_builder(handler, opened)).provision("omar")

    assert isinstance(outcome, Failed)
    assert outcome.kind is ErrorKind.CONNECTION_FAILED
    assert outcome.code == ResultCode.CONNECT_FAILED
    assert all(client.is_closed for client in opened)


def test_remote_malformed_host_is_connection_failure(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"username": "root", "is_admin": True})

    opened: list[httpx.Client] = []
    outcome = _remote(settings, mock_client_builder(handler, opened), host="h:abc").provision("tess")

    assert isinstance(outcome, Failed)
    assert outcome.kind is ErrorKind.CONNECTION_FAILED
    assert outcome.code == ResultCode.CONNECT_FAILED
    assert all(client.is_closed for client in opened)


def test_remote_client_closed_when_connect_raises(settings):
    closed: list[bool] = []

    class TrackingClient(StashClient):
        def connect(self):
            raise RuntimeError("connect exploded")

        def close(self):
            closed.append(True)
            super().close()

    provisioner = _remote(settings, lambda active: TrackingClient())

    with pytest.raises(RuntimeError, match="connect exploded"):
        provisioner.provision("tina")
    assert closed == [True]


def test_remote_transport_errors_after_connect_are_outcomes(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/session":
            return httpx.Response(200, json={"username": "root", "is_admin": True})
        raise httpx.ReadTimeout("stalled", request=request)

    opened: list[httpx.Client] = []
    outcome = _remote(settings, mock_client_builder(handler, opened)).provision("ursa", "pw")

    assert isinstance(outcome, Failed)
    assert outcome.kind is ErrorKind.REMOTE_ERROR
    assert outcome.code == ResultCode.TIMEOUT
    assert all(client.is_closed for client in opened)


@pytest.mark.parametrize(
    "status_code, body, expected",
    [
        (503, {"code": int(ResultCode.STORE_UNAVAILABLE), "detail": "locked"}, ResultCode.STORE_UNAVAILABLE),
        (500, None, ResultCode.SERVER_ERROR),
        (400, {"detail": "bad"}, ResultCode.INVALID_REQUEST),
    ],
)
def test_remote_other_create_errors_are_remote_errors(settings, status_code, body, expected):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/session":
            return httpx.Response(200, json={"username": "root", "is_admin": True})
        if body is None:
            return httpx.Response(status_code, text="boom")
        return httpx.Response(status_code, json=body)

    outcome = _remote(settings, mock_client_builder(handler)).provision("pete")

    assert isinstance(outcome, Failed)
    assert outcome.kind is ErrorKind.REMOTE_ERROR
    assert outcome.code == expected


def test_remote_user_exists_code_maps_to_conflict(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/session":
            return httpx.Response(200, json={"username": "root", "is_admin": True})
        return httpx.Response(409, json={"code": int(ResultCode.USER_EXISTS), "detail": "exists"})

    assert _remote(settings, mock_client_builder(handler)).provision("quin") == Conflict(username="quin")


def test_remote_password_failure_keeps_user_id(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/session":
            return httpx.Response(200, json={"username": "root", "is_admin": True})
        if request.method == "POST":
            return httpx.Response(201, json={"id": 42, "username": "rita"})
        return httpx.Response(500, json={"code": int(ResultCode.SERVER_ERROR), "detail": "oops"})

    opened: list[httpx.Client] = []
    outcome = _remote(settings, mock_client_builder(handler, opened)).provision("rita", "pw")

    assert isinstance(outcome, Failed)
    assert outcome.kind is ErrorKind.PASSWORD_SET_FAILED
    assert outcome.user_id == 42
    assert all(client.is_closed for client in opened)


def test_remote_zero_user_id_is_fatal(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/session":
            return httpx.Response(200, json={"username": "root", "is_admin": True})
        return httpx.Response(201, json={"id": 0, "username": "sam"})

    opened: list[httpx.Client] = []
    with pytest.raises(InternalConsistencyError):
        _remote(settings, mock_client_builder(handler, opened)).provision("sam")
    assert all(client.is_closed for client in opened)
