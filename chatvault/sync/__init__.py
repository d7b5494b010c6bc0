# chatvault/sync/__init__.py
"""
Keeping the index synchronized with the session store.

Components:
- hashing: content fingerprints of raw document bytes
- documents: read-only access to session documents
- differ: fingerprint-based change detection
- batcher: debounced batching of live notifications
- orchestrator: reconcile + live path facade
"""

from .batcher import BatchScheduler, FlushResult, SchedulerState
from .differ import ChangeDetector, ChangeSet, FingerprintStore
from .documents import (
    DocumentMetadata,
    DocumentSource,
    FileDocumentStore,
    SessionDocument,
    build_index_entry,
    load_index_entry,
    parse_session,
)
from .hashing import ContentFingerprinter, fingerprint
from .orchestrator import ReconcileSummary, SyncOrchestrator, SyncStats

__all__ = [
    "BatchScheduler",
    "ChangeDetector",
    "ChangeSet",
    "ContentFingerprinter",
    "DocumentMetadata",
    "DocumentSource",
    "FileDocumentStore",
    "FingerprintStore",
    "FlushResult",
    "ReconcileSummary",
    "SchedulerState",
    "SessionDocument",
    "SyncOrchestrator",
    "SyncStats",
    "build_index_entry",
    "fingerprint",
    "load_index_entry",
    "parse_session",
]
