# chatvault/sync/orchestrator.py
"""
Sync orchestrator.

Single entry point for keeping the index in step with the session store:

    Slow path (authoritative):  reconcile()
        ChangeDetector → one IndexStore transaction → ReconcileSummary

    Fast path (debounced):      notify_changed(id)
        BatchScheduler → flush on size/time threshold

Both paths write through the same IndexStore instance, so queries always
see one source of truth.

Reconcile also heals the index:
- a tracked document missing from the index is re-indexed (counted as added)
- an entry whose recorded digest differs from the fingerprint table is
  re-indexed (counted as modified); this repairs passes abandoned between
  change detection and the index save
- an index entry with no tracked document is removed (counted as deleted)

Per-document failures never abort a pass. They are collected in
``ReconcileSummary.errors`` and the failed documents are dropped from the
fingerprint table so the next pass retries them.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError as PydanticValidationError

from chatvault.core.config.schema import SyncConfig
from chatvault.core.exceptions import StorageError, ValidationError
from chatvault.core.paths import VaultPaths
from chatvault.index.models import (
    describe_validation_error,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from chatvault.index.store import IndexStore
from chatvault.logging.logger import get_logger
from chatvault.logging.tags import SYNC
from chatvault.sync.batcher import BatchScheduler, FlushResult
from chatvault.sync.differ import ChangeDetector, ChangeSet, FingerprintStore
from chatvault.sync.documents import DocumentSource, FileDocumentStore, load_index_entry
from chatvault.sync.hashing import ContentFingerprinter

logger = get_logger(__name__)


@dataclass
class ReconcileSummary:
    """Summary of one reconcile pass."""

    processed: int = 0
    added: int = 0
    modified: int = 0
    deleted: int = 0
    errors: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def __str__(self) -> str:
        return (
            f"processed {self.processed}, added {self.added}, "
            f"modified {self.modified}, deleted {self.deleted}, "
            f"errors {len(self.errors)}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "added": self.added,
            "modified": self.modified,
            "deleted": self.deleted,
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class SyncStats:
    """Point-in-time view of the sync engine."""

    total_indexed: int
    pending_batch_size: int
    flushing: bool
    last_updated: Optional[datetime]
    error_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalIndexed": self.total_indexed,
            "pendingBatchSize": self.pending_batch_size,
            "flushing": self.flushing,
            "lastUpdated": format_timestamp(self.last_updated) if self.last_updated else None,
            "errorCount": self.error_count,
        }


class SyncOrchestrator:
    """
    Facade over change detection, batching and the index store.

    Usage:
        orchestrator = SyncOrchestrator.from_config(load_config())
        orchestrator.start()

        orchestrator.reconcile()
        orchestrator.notify_changed("session-123")
        orchestrator.by_tag("python")

        orchestrator.shutdown()
    """

    def __init__(
        self,
        *,
        store: IndexStore,
        source: DocumentSource,
        detector: ChangeDetector,
        scheduler: BatchScheduler,
    ) -> None:
        self._store = store
        self._source = source
        self._detector = detector
        self._scheduler = scheduler
        self._reconcile_lock = threading.Lock()
        self._reconcile_errors = 0

    @classmethod
    def from_config(cls, config: SyncConfig) -> "SyncOrchestrator":
        """Wire all components from a validated config."""
        paths = VaultPaths.from_config(config)
        paths.ensure()

        fingerprinter = ContentFingerprinter()
        store = IndexStore(paths.index)
        source = FileDocumentStore(paths.sessions, suffix=config.document_suffix)
        detector = ChangeDetector(source, FingerprintStore(paths.checksums), fingerprinter)
        scheduler = BatchScheduler(
            store,
            source,
            max_batch_size=config.max_batch_size,
            flush_interval=config.flush_interval_seconds,
            fingerprinter=fingerprinter,
        )
        logger.debug(f"{SYNC} Wired orchestrator for {paths.storage}")
        return cls(store=store, source=source, detector=detector, scheduler=scheduler)

    @property
    def store(self) -> IndexStore:
        return self._store

    @property
    def scheduler(self) -> BatchScheduler:
        return self._scheduler

    # -------------------------------------------------------------------------
    # Slow path
    # -------------------------------------------------------------------------

    def reconcile(self) -> ReconcileSummary:
        """
        Bring the index in line with the session store.

        Idempotent: a second run with no intervening changes reports zero
        added, modified and deleted.

        Raises:
            StorageError: If the fingerprint table or the index cannot be written.
        """
        with self._reconcile_lock:
            summary = ReconcileSummary()
            logger.info(f"{SYNC} Reconcile started")

            changes = self._detector.detect_changes()
            failed = self._apply(changes, summary)

            if failed:
                self._detector.forget(failed)

            self._reconcile_errors += len(summary.errors)
            summary.finished_at = utc_now()

        logger.info(f"{SYNC} Reconcile complete: {summary}")
        return summary

    def _apply(self, changes: ChangeSet, summary: ReconcileSummary) -> List[str]:
        to_id = self._source.document_id_for

        added = [to_id(f) for f in changes.added]
        modified = [to_id(f) for f in changes.modified]
        deleted = [to_id(f) for f in changes.deleted]
        skipped = {to_id(f) for f in changes.skipped}
        live: Set[str] = {to_id(f) for f in changes.tracked} | skipped

        failed: List[str] = []
        attempted: List[str] = []

        try:
            with self._store.transaction() as index_file:
                for document_id in deleted:
                    summary.processed += 1
                    if index_file.entries.pop(document_id, None) is not None:
                        summary.deleted += 1

                for document_id in sorted(set(index_file.entries) - live):
                    logger.debug(f"{SYNC} Removing dangling entry {document_id}")
                    del index_file.entries[document_id]
                    summary.processed += 1
                    summary.deleted += 1

                changed = set(added) | set(modified)
                unchanged = live - skipped - changed
                healed = sorted(unchanged - set(index_file.entries))
                if healed:
                    logger.info(f"{SYNC} Re-indexing {len(healed)} documents missing from the index")

                digests = {to_id(f): d for f, d in changes.digests.items()}
                stale = sorted(
                    document_id
                    for document_id in unchanged & set(index_file.entries)
                    if index_file.entries[document_id].digest != digests.get(document_id)
                )
                if stale:
                    logger.info(f"{SYNC} Re-indexing {len(stale)} entries with outdated content")
                refreshed = set(modified) | set(stale)

                for document_id in added + healed + modified + stale:
                    summary.processed += 1
                    attempted.append(document_id)
                    try:
                        entry = load_index_entry(
                            self._source, document_id, self._detector.fingerprinter
                        )
                    except Exception as e:
                        summary.errors.append(f"{document_id}: {e}")
                        failed.append(self._source.filename_for(document_id))
                        logger.warning(f"{SYNC} Failed to index {document_id}: {e}")
                        continue

                    if entry is None:
                        if index_file.entries.pop(document_id, None) is not None:
                            summary.deleted += 1
                        continue

                    index_file.entries[document_id] = entry
                    if document_id in refreshed:
                        summary.modified += 1
                    else:
                        summary.added += 1
        except StorageError:
            # Nothing was saved, so none of this pass's classifications stuck
            self._detector.forget(self._source.filename_for(d) for d in attempted)
            raise

        return failed

    # -------------------------------------------------------------------------
    # Fast path
    # -------------------------------------------------------------------------

    def notify_changed(self, document_id: str) -> Optional[FlushResult]:
        """
        Queue a document for debounced re-indexing.

        Raises:
            ValidationError: If the id is not a plain document name.
        """
        return self._scheduler.notify(document_id)

    def flush_now(self) -> FlushResult:
        """Flush everything pending, waiting for a running flush if needed."""
        return self._scheduler.drain()

    # -------------------------------------------------------------------------
    # Introspection and queries
    # -------------------------------------------------------------------------

    def stats(self) -> SyncStats:
        return SyncStats(
            total_indexed=self._store.count(),
            pending_batch_size=self._scheduler.pending_count,
            flushing=self._scheduler.flushing,
            last_updated=self._store.last_updated(),
            error_count=self._scheduler.error_count + self._reconcile_errors,
        )

    def by_tag(self, tag: str) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self._store.query_by_tag(tag)]

    def by_date_range(self, start: datetime | str, end: datetime | str) -> List[Dict[str, Any]]:
        """
        Entries created within [start, end]. Accepts datetimes or ISO strings.

        Raises:
            ValidationError: If a bound is not a valid timestamp.
        """
        entries = self._store.query_by_date_range(_parse_bound("start", start), _parse_bound("end", end))
        return [entry.to_dict() for entry in entries]

    def all(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self._store.all()]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the background flush timer."""
        self._scheduler.start()
        logger.info(f"{SYNC} Started")

    def shutdown(self, timeout: Optional[float] = 5.0) -> FlushResult:
        """
        Stop the timer and flush whatever is pending.

        Raises:
            StorageError: If the final flush cannot save the index.
        """
        self._scheduler.stop(timeout)
        result = self.flush_now()
        logger.info(f"{SYNC} Shut down ({result})")
        return result

    def __enter__(self) -> "SyncOrchestrator":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()


def _parse_bound(name: str, value: datetime | str) -> datetime:
    try:
        return parse_timestamp(value)
    except PydanticValidationError as e:
        raise ValidationError(f"date range {name} {value!r}", describe_validation_error(e)) from e
