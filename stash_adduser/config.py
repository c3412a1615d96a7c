from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_LOCK_TIMEOUT = 5.0

_TRUTHY = {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class Settings:
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    store_directory: Path | None = None
    verbose: bool = False

    @classmethod
    def from_env(cls) -> Settings:
        directory = os.getenv("STASH_DIRECTORY")
        return cls(
            connect_timeout=_env_float("STASH_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT),
            lock_timeout=_env_float("STASH_LOCK_TIMEOUT", DEFAULT_LOCK_TIMEOUT),
            store_directory=Path(directory) if directory else None,
            verbose=_env_bool("STASH_VERBOSE", False),
        )

    def with_overrides(self, **changes) -> Settings:
        return replace(self, **{k: v for k, v in changes.items() if v is not None})
