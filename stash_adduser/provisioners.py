from __future__ import annotations

from abc import ABC, abstractmethod
import logging
from pathlib import Path
from typing import Callable

from stash_adduser.client import StashClient
from stash_adduser.config import Settings
from stash_adduser.outcome import Conflict, Created, ErrorKind, Failed, Outcome, require_user_id
from stash_adduser.protocol import ResultCode, format_code
from stash_adduser.services.errors import (
    LockUnavailableException,
    PasswordSetException,
    StoreUnreadableException,
    StoreUnwritableException,
    UserExistsException,
)
from stash_adduser.storage import Storage

logger = logging.getLogger(__name__)

ClientBuilder = Callable[[Settings], StashClient]


class Provisioner(ABC):
    """Creates one user and, optionally, sets its password.

    Subclasses implement the two backend steps; the outcome mapping lives here
    so both backends report created, conflict and partial success the same way.
    """

    def provision(self, username: str, password: str | None = None, *, is_admin: bool = False) -> Outcome:
        try:
            failure = self._open()
            if failure is not None:
                return failure
            return self._provision(username, password, is_admin=is_admin)
        finally:
            self._close()

    def _provision(self, username: str, password: str | None, *, is_admin: bool) -> Outcome:
        outcome = self._create(username, is_admin=is_admin)
        if isinstance(outcome, (Created, Conflict, Failed)):
            return outcome
        user_id = require_user_id(outcome, username=username)

        if password is not None:
            failure = self._set_password(user_id, password)
            if failure is not None:
                logger.warning("User '%s' (id %s) created without a password: %s", username, user_id, failure)
                return Failed(
                    kind=ErrorKind.PASSWORD_SET_FAILED,
                    message=failure,
                    user_id=user_id,
                )
        return Created(user_id=user_id, username=username)

    @abstractmethod
    def _open(self) -> Failed | None:
        """Take the backend's lock or session. Returns a failure instead of raising."""

    @abstractmethod
    def _create(self, username: str, *, is_admin: bool) -> int | None | Outcome:
        """Create the user, returning its id, or a Conflict/Failed outcome."""

    @abstractmethod
    def _set_password(self, user_id: int, password: str) -> str | None:
        """Set the password; returns an error message on failure."""

    @abstractmethod
    def _close(self) -> None:
        ...


class LocalProvisioner(Provisioner):
    def __init__(self, directory: str | Path, *, settings: Settings | None = None) -> None:
        self.directory = Path(directory)
        self.settings = settings or Settings()
        self._storage: Storage | None = None

    def _open(self) -> Failed | None:
        self._storage = Storage(lock_timeout=self.settings.lock_timeout)
        try:
            self._storage.lock_master(self.directory)
        except LockUnavailableException as exc:
            self._close()
            return Failed(kind=ErrorKind.LOCK_UNAVAILABLE, message=str(exc))
        try:
            self._storage.process(self.directory)
        except StoreUnreadableException as exc:
            self._close()
            return Failed(kind=ErrorKind.STORE_UNREADABLE, message=str(exc))
        return None

    def _create(self, username: str, *, is_admin: bool) -> int | Outcome:
        assert self._storage is not None
        if not self._storage.username_available(username):
            return Conflict(username=username)
        try:
            user = self._storage.create_username(username, is_admin=is_admin)
        except UserExistsException:
            return Conflict(username=username)
        except StoreUnwritableException as exc:
            return Failed(kind=ErrorKind.STORE_UNWRITABLE, message=str(exc))
        return user.id

    def _set_password(self, user_id: int, password: str) -> str | None:
        assert self._storage is not None
        try:
            self._storage.set_password(user_id, password)
        except PasswordSetException as exc:
            return str(exc)
        return None

    def _close(self) -> None:
        if self._storage is None:
            return
        storage, self._storage = self._storage, None
        try:
            storage.unlock_master(self.directory)
        finally:
            storage.close()


class RemoteProvisioner(Provisioner):
    def __init__(
        self,
        host: str,
        admin_username: str,
        admin_password: str,
        *,
        settings: Settings | None = None,
        client_builder: ClientBuilder | None = None,
    ) -> None:
        self.host = host
        self.admin_username = admin_username
        self.admin_password = admin_password
        self.settings = settings or Settings()
        self._client_builder = client_builder or _default_client_builder
        self._client: StashClient | None = None

    def _open(self) -> Failed | None:
        client = self._client_builder(self.settings)
        client.authority(self.admin_username, self.admin_password)
        client.add_server(self.host)
        self._client = client

        # Connecting here rather than on first use reports bad hosts and
        # credentials before anything is attempted.
        code = client.connect()
        if code is not ResultCode.OK:
            self._close()
            return Failed(
                kind=ErrorKind.CONNECTION_FAILED,
                message=f"Unable to connect: {format_code(code)}",
                code=int(code),
            )
        return None

    def _create(self, username: str, *, is_admin: bool) -> int | Outcome:
        assert self._client is not None
        code, user_id = self._client.create_username(username, is_admin=is_admin)
        if code is ResultCode.USER_EXISTS:
            return Conflict(username=username)
        if code is not ResultCode.OK:
            return Failed(
                kind=ErrorKind.REMOTE_ERROR,
                message=f"Unexpected error: {format_code(code)}",
                code=int(code),
            )
        return user_id

    def _set_password(self, user_id: int, password: str) -> str | None:
        assert self._client is not None
        code = self._client.set_password(user_id, password)
        if code is not ResultCode.OK:
            return format_code(code)
        return None

    def _close(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            client.close()


def _default_client_builder(settings: Settings) -> StashClient:
    return StashClient(connect_timeout=settings.connect_timeout)
