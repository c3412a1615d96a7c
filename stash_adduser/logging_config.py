from __future__ import annotations

import logging
import os
import sys

# The tool is silent unless something goes wrong or -v is given.
_DEFAULT_LOG_LEVEL = "WARNING"
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_RESET = "\x1b[0m"
_LEVEL_COLORS = {
    "DEBUG": "\x1b[36m",
    "INFO": "\x1b[32m",
    "WARNING": "\x1b[33m",
    "ERROR": "\x1b[31m",
    "CRITICAL": "\x1b[1;31m",
}
# httpx logs every request at INFO; keep that out of verbose provisioning output.
_CHATTY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


class _LevelColorFormatter(logging.Formatter):
    def __init__(self, *, use_color: bool) -> None:
        super().__init__(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT)
        self._use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        color = _LEVEL_COLORS.get(levelname) if self._use_color else None
        if color:
            record.levelname = f"{color}{levelname}{_RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def _stderr_supports_color() -> bool:
    return not os.getenv("NO_COLOR") and sys.stderr.isatty()


def resolve_level(level: str | int | None, *, verbose: bool = False) -> int:
    """Turn a level name, number or nothing into a logging level.

    ``verbose`` wins over everything else and means DEBUG. Without an explicit
    level, ``STASH_LOG_LEVEL`` is consulted; unknown names resolve to INFO.
    """
    if verbose:
        return logging.DEBUG
    if isinstance(level, int):
        return level
    name = (level or os.getenv("STASH_LOG_LEVEL", _DEFAULT_LOG_LEVEL)).upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(
    *, level: str | int | None = None, verbose: bool = False, force: bool = False
) -> None:
    root = logging.getLogger()
    resolved = resolve_level(level, verbose=verbose)
    root.setLevel(resolved)

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))

    if root.handlers and not force:
        for handler in root.handlers:
            handler.setLevel(resolved)
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(resolved)
    handler.setFormatter(_LevelColorFormatter(use_color=_stderr_supports_color()))
    root.handlers.clear()
    root.addHandler(handler)
