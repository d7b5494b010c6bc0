# chatvault/logging/logger.py
"""
Central logger setup for chatvault.

All modules obtain their logger through ``get_logger(__name__)``. Handlers are
only installed on the package root logger (``chatvault``) and only once, when
``configure_logging`` is called by the embedding application. Library code
never configures logging on import.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

ROOT_LOGGER_NAME = "chatvault"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def get_logger(name: str) -> logging.Logger:
    """Return a logger inside the ``chatvault`` hierarchy."""
    if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def configure_logging(level: int | str = logging.INFO, fmt: Optional[str] = None) -> logging.Logger:
    """
    Install a stderr handler on the package root logger.

    Safe to call more than once: later calls only adjust the level.

    Args:
        level: Logging level (name or number).
        fmt: Optional format string. Defaults to ``DEFAULT_FORMAT``.

    Returns:
        The configured root package logger.
    """
    global _configured

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)

    if not _configured:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
        root.addHandler(handler)
        _configured = True

    return root
