"""Direct access to an on-disk stash store.

A store is a directory holding the SQLite metadata file and a lock file. Every
reader and writer of the user namespace takes the directory's master lock
first; the lock is an ``fcntl.flock`` on the lock file, so it excludes other
processes as well as other open handles inside the same process.
"""

from __future__ import annotations

import fcntl
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from stash_adduser import db
from stash_adduser.config import DEFAULT_LOCK_TIMEOUT
from stash_adduser.models import UserCreate, UserRead
from stash_adduser.services import users as user_service
from stash_adduser.services.errors import (
    LockUnavailableException,
    NotFoundException,
    PasswordSetException,
    StashException,
    StoreUnreadableException,
    StoreUnwritableException,
    UserExistsException,
)

logger = logging.getLogger(__name__)

_LOCK_POLL_INTERVAL = 0.05


class MasterLock:
    """Exclusive lock over one store directory."""

    def __init__(self, directory: str | Path, *, timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.directory = Path(directory)
        self.timeout = timeout
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        if self._fd is not None:
            raise LockUnavailableException(f"Master lock for {self.directory} is already held by this handle")
        path = db.lock_file(self.directory)
        try:
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as exc:
            raise LockUnavailableException(f"Cannot open lock file {path}: {exc.strerror}") from exc

        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    os.close(fd)
                    raise LockUnavailableException(
                        f"Store {self.directory} is locked by another process"
                    ) from None
                time.sleep(_LOCK_POLL_INTERVAL)
            except OSError as exc:
                os.close(fd)
                raise LockUnavailableException(f"Cannot lock {path}: {exc.strerror}") from exc

        self._fd = fd
        logger.debug("Acquired master lock: %s", path)

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug("Released master lock: %s", db.lock_file(self.directory))

    def __enter__(self) -> MasterLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class Storage:
    """Handle over a store's user namespace.

    The handle is created unbound; ``lock_master`` binds it to a directory and
    ``process`` loads the username index from that directory's metadata while
    keeping the database open for the mutations that follow.
    """

    def __init__(self, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.lock_timeout = lock_timeout
        self.directory: Path | None = None
        self._lock: MasterLock | None = None
        self._engine: Engine | None = None
        self._session: Session | None = None
        self._usernames: set[str] = set()

    @classmethod
    @contextmanager
    def open(cls, directory: str | Path, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> Iterator[Storage]:
        storage = cls(lock_timeout=lock_timeout)
        storage.lock_master(directory)
        try:
            storage.process(directory)
            yield storage
        finally:
            storage.unlock_master(directory)
            storage.close()

    def lock_master(self, directory: str | Path) -> None:
        lock = MasterLock(directory, timeout=self.lock_timeout)
        lock.acquire()
        self._lock = lock
        self.directory = Path(directory)

    def unlock_master(self, directory: str | Path) -> None:
        if self._lock is None or self._lock.directory != Path(directory):
            return
        self._close_session()
        self._lock.release()
        self._lock = None

    def process(self, directory: str | Path) -> None:
        self._require_lock(directory)
        path = db.store_file(directory)
        if not path.is_file():
            raise StoreUnreadableException(f"No store metadata found at {path}")

        self._close_session()
        engine = db.create_store_engine(directory)
        session = Session(engine)
        try:
            if not db.has_user_table(engine):
                raise StoreUnreadableException(f"Store metadata at {path} has no user table")
            self._usernames = user_service.load_usernames(session)
        except (SQLAlchemyError, StashException) as exc:
            session.close()
            engine.dispose()
            if isinstance(exc, StashException):
                raise
            raise StoreUnreadableException(f"Unable to read store metadata at {path}: {exc}") from exc
        self._engine = engine
        self._session = session
        logger.debug("Loaded %d usernames from %s", len(self._usernames), path)

    def username_available(self, username: str) -> bool:
        self._require_session()
        return username not in self._usernames

    def create_username(self, username: str, *, is_admin: bool = False) -> UserRead:
        session = self._require_session()
        if username in self._usernames:
            raise UserExistsException(username)
        try:
            user = user_service.create_user(session, UserCreate(username=username, is_admin=is_admin))
        except SQLAlchemyError as exc:
            raise StoreUnwritableException(f"Unable to write user '{username}': {exc}") from exc
        self._usernames.add(username)
        return user

    def set_password(self, user_id: int, password: str) -> UserRead:
        session = self._require_session()
        try:
            return user_service.set_password(session, user_id=user_id, password=password)
        except (NotFoundException, SQLAlchemyError) as exc:
            raise PasswordSetException(user_id, str(exc)) from exc

    def list_users(self) -> list[UserRead]:
        return user_service.list_users(self._require_session())

    def authenticate_admin(self, username: str, password: str) -> UserRead:
        return user_service.authenticate_admin(self._require_session(), username=username, password=password)

    def get_user(self, user_id: int) -> UserRead:
        return user_service.get_user(self._require_session(), user_id=user_id)

    def close(self) -> None:
        self._close_session()
        if self._lock is not None:
            self._lock.release()
            self._lock = None
        self.directory = None

    def _close_session(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
        self._usernames = set()

    def _require_lock(self, directory: str | Path) -> None:
        if self._lock is None or not self._lock.held or self._lock.directory != Path(directory):
            raise LockUnavailableException(f"Master lock for {directory} is not held")

    def _require_session(self) -> Session:
        if self._session is None:
            raise StoreUnreadableException("Store has not been processed")
        return self._session


def initialize_store(directory: str | Path, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> Path:
    """Create an empty store in ``directory``; existing users are left alone."""
    directory = Path(directory)
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise LockUnavailableException(f"Cannot create store directory {directory}: {exc.strerror}") from exc

    with MasterLock(directory, timeout=lock_timeout):
        engine = db.create_store_engine(directory)
        try:
            db.init_db(engine)
        except SQLAlchemyError as exc:
            raise StoreUnreadableException(f"Unable to initialize store at {directory}: {exc}") from exc
        finally:
            engine.dispose()
    logger.info("Initialized store at %s", directory)
    return db.store_file(directory)
