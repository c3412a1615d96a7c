from __future__ import annotations

from pathlib import Path

from sqlalchemy import Engine, inspect
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel, create_engine

STORE_FILENAME = "stash.db"
LOCK_FILENAME = ".master.lock"


def store_file(directory: str | Path) -> Path:
    return Path(directory) / STORE_FILENAME


def lock_file(directory: str | Path) -> Path:
    return Path(directory) / LOCK_FILENAME


def create_store_engine(directory: str | Path) -> Engine:
    # One engine per opened store; NullPool so dispose() really closes the file.
    return create_engine(
        f"sqlite:///{store_file(directory)}",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=NullPool,
    )


def init_db(engine: Engine) -> None:
    # Ensure models are imported before creating tables.
    import stash_adduser.models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def has_user_table(engine: Engine) -> bool:
    return inspect(engine).has_table("user")
