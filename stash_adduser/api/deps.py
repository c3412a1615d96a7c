from __future__ import annotations

from functools import lru_cache
from typing import Iterator

from fastapi import Depends
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from stash_adduser.config import Settings
from stash_adduser.models import UserRead
from stash_adduser.services.errors import ConfigurationException, StoreUnreadableException
from stash_adduser.storage import Storage

basic_auth = HTTPBasic()


@lru_cache
def get_settings() -> Settings:
    """Environment settings, read once per process."""
    try:
        return Settings.from_env()
    except ValueError as exc:
        raise ConfigurationException(f"Invalid configuration: {exc}") from exc


def get_storage(settings: Settings = Depends(get_settings)) -> Iterator[Storage]:
    """Hold the served store's master lock for the whole request."""
    if settings.store_directory is None:
        raise StoreUnreadableException("STASH_DIRECTORY is not configured")
    with Storage.open(settings.store_directory, lock_timeout=settings.lock_timeout) as storage:
        yield storage


def require_admin(
    credentials: HTTPBasicCredentials = Depends(basic_auth),
    storage: Storage = Depends(get_storage),
) -> UserRead:
    return storage.authenticate_admin(credentials.username, credentials.password)
