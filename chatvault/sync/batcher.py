# chatvault/sync/batcher.py
"""
Debounced batching of live "document changed" notifications.

State machine:

    IDLE --notify--> ACCUMULATING --(size or time threshold)--> FLUSHING --> IDLE

- Notifications for the same id collapse to one unit of work per batch.
- A flush takes (and removes) at most max_batch_size of the oldest pending
  ids before processing, so notifications that arrive while it runs land in
  a later batch.
- Only one flush runs at a time. A timer tick that finds a flush running is
  a no-op.
- All mutations of one batch are applied in a single IndexStore transaction,
  i.e. one disk write per batch.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from chatvault.core.exceptions import StorageError
from chatvault.index.models import IndexEntry, utc_now
from chatvault.index.store import IndexStore
from chatvault.logging.logger import get_logger
from chatvault.logging.tags import BATCH
from chatvault.sync.documents import DocumentSource, load_index_entry
from chatvault.sync.hashing import ContentFingerprinter

logger = get_logger(__name__)

DEFAULT_MAX_BATCH_SIZE = 50
DEFAULT_FLUSH_INTERVAL = 2.0


class SchedulerState(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"


@dataclass
class FlushResult:
    """Outcome of one flush attempt."""

    batch_size: int = 0
    upserted: int = 0
    removed: int = 0
    errors: List[str] = field(default_factory=list)
    skipped: bool = False  # another flush was already running

    def __str__(self) -> str:
        if self.skipped:
            return "skipped (flush in progress)"
        return (
            f"batch {self.batch_size}, upserted {self.upserted}, "
            f"removed {self.removed}, errors {len(self.errors)}"
        )


class BatchScheduler:
    """
    Accumulates document ids and flushes them into the index in batches.

    Usage:
        scheduler = BatchScheduler(store, source, max_batch_size=50, flush_interval=2.0)
        scheduler.start()

        scheduler.notify("session-123")   # debounced
        scheduler.drain()                 # forced, e.g. at shutdown
        scheduler.stop()
    """

    def __init__(
        self,
        store: IndexStore,
        source: DocumentSource,
        *,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        fingerprinter: Optional[ContentFingerprinter] = None,
    ) -> None:
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be >= 1")
        if flush_interval <= 0:
            raise ValueError("flush_interval must be > 0")

        self._store = store
        self._source = source
        self._fingerprinter = fingerprinter or ContentFingerprinter()
        self._max_batch_size = max_batch_size
        self._flush_interval = flush_interval

        # Insertion-ordered set of pending ids
        self._pending: Dict[str, None] = {}
        self._pending_lock = threading.Lock()

        self._flush_lock = threading.Lock()
        self._flushing = False

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._error_count = 0
        self._last_flush_at: Optional[datetime] = None

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def max_batch_size(self) -> int:
        return self._max_batch_size

    @property
    def flush_interval(self) -> float:
        return self._flush_interval

    @property
    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def pending_ids(self) -> List[str]:
        with self._pending_lock:
            return list(self._pending)

    @property
    def flushing(self) -> bool:
        return self._flushing

    @property
    def state(self) -> SchedulerState:
        if self._flushing:
            return SchedulerState.FLUSHING
        if self.pending_count:
            return SchedulerState.ACCUMULATING
        return SchedulerState.IDLE

    @property
    def error_count(self) -> int:
        """Per-document errors recorded across all flushes."""
        return self._error_count

    @property
    def last_flush_at(self) -> Optional[datetime]:
        return self._last_flush_at

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Notifications and flushing
    # -------------------------------------------------------------------------

    def notify(self, document_id: str) -> Optional[FlushResult]:
        """
        Queue a document for re-indexing.

        Returns:
            The FlushResult if this notification filled the batch and
            triggered an immediate flush, otherwise None.

        Raises:
            ValidationError: If the id is not a plain document name.
            StorageError: If an immediate flush could not save the index.
        """
        self._source.filename_for(document_id)

        with self._pending_lock:
            self._pending[document_id] = None
            full = len(self._pending) >= self._max_batch_size

        if full:
            logger.debug(f"{BATCH} Batch size {self._max_batch_size} reached, flushing now")
            return self.flush()
        return None

    def flush(self, wait: bool = False) -> FlushResult:
        """
        Apply the oldest pending notifications (at most ``max_batch_size``)
        to the index.

        If a full batch is still pending afterwards (notifications piled up
        while this flush ran), further full batches are flushed before
        returning. A remainder smaller than a batch waits for the timer.

        Args:
            wait: Block until a running flush finishes instead of returning
                  a skipped result.

        Returns:
            The result of the first batch.

        Raises:
            StorageError: If the index cannot be saved. The batch is put back
                          into the pending set before the error propagates.
        """
        result = self._flush_batch(wait)
        if not result.skipped:
            while self.pending_count >= self._max_batch_size:
                if self._flush_batch(wait=False).skipped:
                    break
        return result

    def drain(self) -> FlushResult:
        """
        Flush everything pending, batch by batch, waiting for a running flush.

        Returns:
            Combined counts over all batches flushed.

        Raises:
            StorageError: If the index cannot be saved.
        """
        total = FlushResult()
        while True:
            result = self._flush_batch(wait=True)
            if not result.batch_size:
                return total
            total.batch_size += result.batch_size
            total.upserted += result.upserted
            total.removed += result.removed
            total.errors.extend(result.errors)

    def _flush_batch(self, wait: bool) -> FlushResult:
        if not self._flush_lock.acquire(blocking=wait):
            logger.debug(f"{BATCH} Flush already in progress, skipping")
            return FlushResult(skipped=True)

        try:
            self._flushing = True
            with self._pending_lock:
                batch = list(self._pending)[: self._max_batch_size]
                for document_id in batch:
                    del self._pending[document_id]

            if not batch:
                return FlushResult()

            result = self._process(batch)
            self._error_count += len(result.errors)
            self._last_flush_at = utc_now()
            logger.info(f"{BATCH} Flushed {result}")
            return result
        finally:
            self._flushing = False
            self._flush_lock.release()

    def _process(self, batch: List[str]) -> FlushResult:
        result = FlushResult(batch_size=len(batch))
        upserts: Dict[str, IndexEntry] = {}
        removals: List[str] = []

        for document_id in batch:
            try:
                entry = load_index_entry(self._source, document_id, self._fingerprinter)
            except Exception as e:
                result.errors.append(f"{document_id}: {e}")
                logger.warning(f"{BATCH} Failed to index {document_id}: {e}")
                continue

            if entry is None:
                removals.append(document_id)
            else:
                upserts[document_id] = entry

        if not upserts and not removals:
            return result

        try:
            with self._store.transaction() as index_file:
                for document_id in removals:
                    if index_file.entries.pop(document_id, None) is not None:
                        result.removed += 1
                for document_id, entry in upserts.items():
                    index_file.entries[document_id] = entry
                    result.upserted += 1
        except StorageError:
            self._requeue(batch)
            raise

        return result

    def _requeue(self, batch: List[str]) -> None:
        with self._pending_lock:
            merged = dict.fromkeys(batch)
            merged.update(self._pending)
            self._pending = merged
        logger.warning(f"{BATCH} Re-queued {len(batch)} ids after failed save")

    # -------------------------------------------------------------------------
    # Background timer
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the background flush timer (non-blocking)."""
        if self.is_running:
            logger.debug(f"{BATCH} Timer already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="ChatVaultBatchFlush",
            daemon=True,
        )
        self._thread.start()
        logger.debug(f"{BATCH} Timer started (interval={self._flush_interval}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the background timer. Pending ids are kept."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.debug(f"{BATCH} Timer stopped")

    def tick(self) -> Optional[FlushResult]:
        """One timer tick: flush if anything is pending."""
        if not self.pending_count:
            return None
        try:
            return self.flush()
        except StorageError as e:
            logger.error(f"{BATCH} Background flush failed: {e}")
            return None

    def _run(self) -> None:
        while not self._stop_event.wait(self._flush_interval):
            self.tick()
