from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class Backend(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class ErrorKind(str, Enum):
    INVALID_REQUEST = "invalid-request"
    LOCK_UNAVAILABLE = "lock-unavailable"
    STORE_UNREADABLE = "store-unreadable"
    STORE_UNWRITABLE = "store-unwritable"
    CONNECTION_FAILED = "connection-failed"
    REMOTE_ERROR = "remote-error"
    PASSWORD_SET_FAILED = "password-set-failed"


class InternalConsistencyError(RuntimeError):
    """A backend reported success but handed back data that cannot be valid."""


@dataclass(frozen=True)
class ProvisionRequest:
    username: str
    password: str | None = None
    backend: Backend | None = None
    directory: str | None = None
    host: str | None = None
    admin_username: str | None = None
    admin_password: str | None = None
    is_admin: bool = False

    @classmethod
    def from_parameters(
        cls,
        *,
        username: str,
        password: str | None = None,
        directory: str | None = None,
        host: str | None = None,
        admin_username: str | None = None,
        admin_password: str | None = None,
        is_admin: bool = False,
    ) -> ProvisionRequest:
        """Build a request, picking the backend from whichever location was given.

        When both or neither of directory/host are present the backend is left
        unset and the coordinator rejects the request.
        """
        backend = None
        if directory and not host:
            backend = Backend.LOCAL
        elif host and not directory:
            backend = Backend.REMOTE
        return cls(
            username=username,
            password=password,
            backend=backend,
            directory=directory,
            host=host,
            admin_username=admin_username,
            admin_password=admin_password,
            is_admin=is_admin,
        )


@dataclass(frozen=True)
class Created:
    user_id: int
    username: str


@dataclass(frozen=True)
class Conflict:
    username: str


@dataclass(frozen=True)
class Failed:
    kind: ErrorKind
    message: str
    code: int | None = None
    user_id: int | None = None

    @property
    def partial(self) -> bool:
        # the account exists even though provisioning did not finish
        return self.kind is ErrorKind.PASSWORD_SET_FAILED


Outcome = Union[Created, Conflict, Failed]


def require_user_id(user_id: int | None, *, username: str) -> int:
    if user_id is None or user_id <= 0:
        raise InternalConsistencyError(
            f"Backend reported creating '{username}' but returned user id {user_id!r}"
        )
    return user_id
