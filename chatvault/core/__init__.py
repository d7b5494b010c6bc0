# chatvault/core/__init__.py
"""Shared building blocks: configuration, paths and exceptions."""

from .exceptions import (
    ChatVaultError,
    ConfigError,
    CorruptIndexError,
    StorageError,
    TransientReadError,
    ValidationError,
)
from .paths import VaultPaths

__all__ = [
    "ChatVaultError",
    "ConfigError",
    "CorruptIndexError",
    "StorageError",
    "TransientReadError",
    "ValidationError",
    "VaultPaths",
]
