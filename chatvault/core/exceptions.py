# chatvault/core/exceptions.py
"""
Exception hierarchy for the index maintenance engine.

Propagation rules:
- TransientReadError: swallowed and logged by the scanner, retried next pass.
- ValidationError: the offending document or index entry is dropped.
- StorageError: always propagated to the caller of save/flush/reconcile.
- CorruptIndexError: caught by IndexStore.load, which falls back to an empty
  index that the next reconcile rebuilds.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class ChatVaultError(Exception):
    """Base error for chatvault."""
    pass


class TransientReadError(ChatVaultError):
    """A document vanished or could not be read during a scan."""

    def __init__(self, path: Path | str, original_error: Optional[Exception] = None):
        self.path = Path(path)
        self.original_error = original_error
        detail = f": {original_error}" if original_error else ""
        super().__init__(f"Could not read {self.path}{detail}")


class ValidationError(ChatVaultError, ValueError):
    """A session document or index entry is structurally invalid."""

    def __init__(self, subject: str, reason: str):
        self.subject = subject
        self.reason = reason
        super().__init__(f"Invalid {subject}: {reason}")


class StorageError(ChatVaultError, OSError):
    """A persisted file could not be written."""

    def __init__(self, operation: str, path: Path | str, original_error: Optional[Exception] = None):
        self.operation = operation
        self.path = Path(path)
        self.original_error = original_error
        detail = f": {original_error}" if original_error else ""
        super().__init__(f"Storage operation '{operation}' failed for {self.path}{detail}")


class CorruptIndexError(ChatVaultError):
    """The persisted index file is unreadable or fails schema validation."""

    def __init__(self, path: Path | str, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Corrupt index file {self.path}: {reason}")


class ConfigError(ChatVaultError):
    """Configuration file is missing or invalid."""
    pass


__all__ = [
    "ChatVaultError",
    "TransientReadError",
    "ValidationError",
    "StorageError",
    "CorruptIndexError",
    "ConfigError",
]
