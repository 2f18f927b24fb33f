"""Centralized logging configuration for the ``statement_import`` package.

Entrypoints (the CLI, a host web app) call ``configure_logging(...)`` once to
attach a single ``StreamHandler`` to the package root logger
(``"statement_import"``). Library modules only ever call
``get_logger(__name__)``; they never attach handlers of their own.

Parsing is deliberately tolerant (rows with bad dates/amounts are dropped), so
the dropped-row counts logged at INFO are the observable trace of that data
loss. Run with ``STATEMENT_IMPORT_LOG_LEVEL=DEBUG`` to also see per-page
layout decisions.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_PKG_LOGGER_NAME = "statement_import"
_ENV_LEVEL = "STATEMENT_IMPORT_LOG_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_handler: logging.Handler | None = None


def _parse_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    if level is None:
        level = os.getenv(_ENV_LEVEL)
        if not level:
            return logging.INFO
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    numeric = logging.getLevelName(name)
    # getLevelName returns "Level X" for unknown names.
    return numeric if isinstance(numeric, int) else logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Configure the package root logger; repeated calls only adjust the level.

    ``level`` accepts an ``int`` or a level name. When ``None`` the
    ``STATEMENT_IMPORT_LOG_LEVEL`` environment variable is consulted, falling
    back to ``INFO``.
    """

    global _handler
    logger = logging.getLogger(_PKG_LOGGER_NAME)
    resolved = _parse_level(level)

    if _handler is None:
        for h in list(logger.handlers):
            if isinstance(h, logging.NullHandler):
                logger.removeHandler(h)
        _handler = logging.StreamHandler(stream or sys.stderr)
        _handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))
        logger.addHandler(_handler)
        logger.propagate = False

    _handler.setLevel(resolved)
    logger.setLevel(resolved)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger by name, silent until an entrypoint configures output."""

    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if _handler is None and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger"]
