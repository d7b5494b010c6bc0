# chatvault/__init__.py
"""
chatvault - derived index maintenance for a file-backed chat-history store.

Keeps a compact, queryable metadata index (``index.json``) synchronized with
a directory of individually stored session documents.

Examples:
    >>> from chatvault import SyncOrchestrator, load_config
    >>> orchestrator = SyncOrchestrator.from_config(load_config())
    >>> summary = orchestrator.reconcile()
    >>> print(summary)
    processed 2, added 2, modified 0, deleted 0, errors 0
"""

from chatvault.core.config import SyncConfig, load_config
from chatvault.core.exceptions import (
    ChatVaultError,
    ConfigError,
    CorruptIndexError,
    StorageError,
    TransientReadError,
    ValidationError,
)
from chatvault.index import IndexEntry, IndexFile, IndexStore
from chatvault.sync import (
    BatchScheduler,
    ChangeDetector,
    FileDocumentStore,
    ReconcileSummary,
    SyncOrchestrator,
    SyncStats,
)

__version__ = "0.1.0"

__all__ = [
    "BatchScheduler",
    "ChangeDetector",
    "ChatVaultError",
    "ConfigError",
    "CorruptIndexError",
    "FileDocumentStore",
    "IndexEntry",
    "IndexFile",
    "IndexStore",
    "ReconcileSummary",
    "StorageError",
    "SyncConfig",
    "SyncOrchestrator",
    "SyncStats",
    "TransientReadError",
    "ValidationError",
    "load_config",
]
