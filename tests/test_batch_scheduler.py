# tests/test_batch_scheduler.py
"""
Tests for chatvault.sync.batcher module.

Key tests verify that:
1. Notifications are deduplicated within a batch
2. Each flush performs exactly one index save
3. One failing document does not block the rest of the batch
4. A flush attempt during a running flush is a no-op
5. A failed save re-queues the batch
6. A flush takes at most max_batch_size ids, and a backlog is worked off
"""

import threading
import time
from pathlib import Path
from typing import Optional

import pytest

from chatvault.core.exceptions import StorageError, ValidationError
from chatvault.index import IndexStore
from chatvault.sync.batcher import BatchScheduler, SchedulerState
from chatvault.sync.documents import DocumentMetadata, FileDocumentStore


class BlockingDocumentStore(FileDocumentStore):
    """Blocks inside document_metadata for one id until released."""

    def __init__(self, sessions_dir: Path, block_on: str):
        super().__init__(sessions_dir)
        self.block_on = block_on
        self.entered = threading.Event()
        self.release = threading.Event()

    def document_metadata(self, document_id: str, raw: Optional[bytes] = None) -> Optional[DocumentMetadata]:
        if document_id == self.block_on:
            self.entered.set()
            self.release.wait(5)
        return super().document_metadata(document_id, raw)


class FailingDocumentStore(FileDocumentStore):
    """Raises an unexpected error for one id."""

    def __init__(self, sessions_dir: Path, fail_on: str):
        super().__init__(sessions_dir)
        self.fail_on = fail_on

    def document_metadata(self, document_id: str, raw: Optional[bytes] = None) -> Optional[DocumentMetadata]:
        if document_id == self.fail_on:
            raise RuntimeError("disk hiccup")
        return super().document_metadata(document_id, raw)


@pytest.fixture
def store(tmp_path: Path) -> IndexStore:
    return IndexStore(tmp_path / "index.json")


class TestBatchScheduler:
    """Tests for BatchScheduler flushing."""

    def test_rejects_bad_settings(self, store: IndexStore, sessions_dir: Path):
        source = FileDocumentStore(sessions_dir)
        with pytest.raises(ValueError):
            BatchScheduler(store, source, max_batch_size=0)
        with pytest.raises(ValueError):
            BatchScheduler(store, source, flush_interval=0)

    def test_notifications_are_deduplicated(self, store: IndexStore, sessions_dir: Path):
        scheduler = BatchScheduler(store, FileDocumentStore(sessions_dir))

        scheduler.notify("a")
        scheduler.notify("b")
        scheduler.notify("a")

        assert scheduler.pending_ids() == ["a", "b"]
        assert scheduler.state is SchedulerState.ACCUMULATING

    def test_invalid_id_rejected(self, store: IndexStore, sessions_dir: Path):
        scheduler = BatchScheduler(store, FileDocumentStore(sessions_dir))

        with pytest.raises(ValidationError):
            scheduler.notify("../escape")

        assert scheduler.pending_count == 0

    def test_flush_writes_entries_with_one_save(self, store: IndexStore, sessions_dir: Path, write_session):
        """Batch bound: N notifications, one flush, one save."""
        for i in range(10):
            write_session(f"s{i}")
        scheduler = BatchScheduler(store, FileDocumentStore(sessions_dir))

        for i in range(10):
            scheduler.notify(f"s{i}")
        result = scheduler.flush()

        assert result.batch_size == 10
        assert result.upserted == 10
        assert store.save_count == 1
        assert store.count() == 10
        assert scheduler.state is SchedulerState.IDLE

    def test_size_threshold_triggers_flush(self, store: IndexStore, sessions_dir: Path, write_session):
        for name in ("a", "b", "c"):
            write_session(name)
        scheduler = BatchScheduler(store, FileDocumentStore(sessions_dir), max_batch_size=3)

        assert scheduler.notify("a") is None
        assert scheduler.notify("b") is None
        result = scheduler.notify("c")

        assert result is not None
        assert result.upserted == 3
        assert scheduler.pending_count == 0
        assert store.save_count == 1

    def test_absent_document_is_removed(self, store: IndexStore, sessions_dir: Path, write_session):
        path = write_session("a")
        scheduler = BatchScheduler(store, FileDocumentStore(sessions_dir))
        scheduler.notify("a")
        scheduler.flush()

        path.unlink()
        scheduler.notify("a")
        result = scheduler.flush()

        assert result.removed == 1
        assert store.get("a") is None

    def test_empty_flush_does_not_save(self, store: IndexStore, sessions_dir: Path):
        scheduler = BatchScheduler(store, FileDocumentStore(sessions_dir))

        result = scheduler.flush()

        assert result.batch_size == 0
        assert store.save_count == 0

    def test_fault_isolation(self, store: IndexStore, sessions_dir: Path, write_session):
        """K-1 of K documents persisted, one error reported."""
        for name in ("a", "b", "c", "d", "e"):
            write_session(name)
        (sessions_dir / "bad.json").write_text("{not json", encoding="utf-8")
        scheduler = BatchScheduler(store, FailingDocumentStore(sessions_dir, fail_on="c"))

        for name in ("a", "b", "c", "d", "bad"):
            scheduler.notify(name)
        result = scheduler.flush()

        assert result.upserted == 3
        assert len(result.errors) == 2
        assert any(e.startswith("c:") for e in result.errors)
        assert any("session 'bad'" in e for e in result.errors)
        assert store.ids() == ["a", "b", "d"]
        assert scheduler.error_count == 2

    def test_single_failure_counts_one_error(self, store: IndexStore, sessions_dir: Path, write_session):
        for name in ("a", "b", "c"):
            write_session(name)
        scheduler = BatchScheduler(store, FailingDocumentStore(sessions_dir, fail_on="b"))

        for name in ("a", "b", "c"):
            scheduler.notify(name)
        result = scheduler.flush()

        assert result.upserted == 2
        assert len(result.errors) == 1
        assert scheduler.error_count == 1

    def test_storage_error_requeues_batch(self, tmp_path: Path, sessions_dir: Path, write_session):
        write_session("a")
        index_path = tmp_path / "index.json"
        index_path.mkdir()
        scheduler = BatchScheduler(IndexStore(index_path), FileDocumentStore(sessions_dir))
        scheduler.notify("a")

        with pytest.raises(StorageError):
            scheduler.flush()

        assert scheduler.pending_ids() == ["a"]
        assert not scheduler.flushing

    def test_tick_logs_storage_error(self, tmp_path: Path, sessions_dir: Path, write_session):
        write_session("a")
        index_path = tmp_path / "index.json"
        index_path.mkdir()
        scheduler = BatchScheduler(IndexStore(index_path), FileDocumentStore(sessions_dir))
        scheduler.notify("a")

        assert scheduler.tick() is None
        assert scheduler.pending_count == 1

    def test_tick_without_pending_is_noop(self, store: IndexStore, sessions_dir: Path):
        assert BatchScheduler(store, FileDocumentStore(sessions_dir)).tick() is None


class TestFlushConcurrency:
    """Tests for the flush re-entrancy guard."""

    def test_concurrent_flush_is_skipped(self, store: IndexStore, sessions_dir: Path, write_session):
        write_session("slow")
        write_session("late")
        source = BlockingDocumentStore(sessions_dir, block_on="slow")
        scheduler = BatchScheduler(store, source)
        scheduler.notify("slow")

        worker = threading.Thread(target=scheduler.flush)
        worker.start()
        assert source.entered.wait(5)

        assert scheduler.state is SchedulerState.FLUSHING
        assert scheduler.flush().skipped is True

        # Arrives mid-flush, lands in the next batch
        scheduler.notify("late")
        source.release.set()
        worker.join(5)

        assert store.ids() == ["slow"]
        assert scheduler.pending_ids() == ["late"]

        scheduler.flush()
        assert store.ids() == ["late", "slow"]
        assert store.save_count == 2

    def test_flush_wait_blocks_until_running_flush_done(
        self, store: IndexStore, sessions_dir: Path, write_session
    ):
        write_session("slow")
        write_session("late")
        source = BlockingDocumentStore(sessions_dir, block_on="slow")
        scheduler = BatchScheduler(store, source)
        scheduler.notify("slow")

        worker = threading.Thread(target=scheduler.flush)
        worker.start()
        assert source.entered.wait(5)
        scheduler.notify("late")

        threading.Timer(0.1, source.release.set).start()
        result = scheduler.flush(wait=True)
        worker.join(5)

        assert result.skipped is False
        assert result.upserted == 1
        assert store.ids() == ["late", "slow"]

    def test_backlog_is_flushed_in_bounded_batches(
        self, store: IndexStore, sessions_dir: Path, write_session
    ):
        """Ids piled up during a flush are taken max_batch_size at a time."""
        for name in ("slow", "a", "b", "c", "d", "e"):
            write_session(name)
        source = BlockingDocumentStore(sessions_dir, block_on="slow")
        scheduler = BatchScheduler(store, source, max_batch_size=2)
        scheduler.notify("slow")

        worker = threading.Thread(target=scheduler.flush)
        worker.start()
        assert source.entered.wait(5)

        # Each size-triggered flush finds the running one and is skipped
        for name in ("a", "b", "c", "d", "e"):
            result = scheduler.notify(name)
            assert result is None or result.skipped
        source.release.set()
        worker.join(5)

        assert store.ids() == ["a", "b", "c", "d", "slow"]
        assert scheduler.pending_ids() == ["e"]
        assert store.save_count == 3

        result = scheduler.flush()
        assert result.batch_size == 1
        assert store.count() == 6

    def test_drain_flushes_everything(self, store: IndexStore, sessions_dir: Path, write_session):
        for name in ("slow", "a", "b", "c", "d", "e"):
            write_session(name)
        source = BlockingDocumentStore(sessions_dir, block_on="slow")
        scheduler = BatchScheduler(store, source, max_batch_size=2)
        scheduler.notify("slow")

        worker = threading.Thread(target=scheduler.flush)
        worker.start()
        assert source.entered.wait(5)
        for name in ("a", "b", "c", "d", "e"):
            scheduler.notify(name)

        threading.Timer(0.1, source.release.set).start()
        result = scheduler.drain()
        worker.join(5)

        assert result.skipped is False
        assert scheduler.pending_count == 0
        assert store.count() == 6
        # slow, then [a, b], [c, d], [e]
        assert store.save_count == 4

    def test_drain_with_nothing_pending(self, store: IndexStore, sessions_dir: Path):
        result = BatchScheduler(store, FileDocumentStore(sessions_dir)).drain()

        assert result.batch_size == 0
        assert store.save_count == 0


class TestSchedulerTimer:
    """Tests for the background flush timer."""

    def test_timer_flushes_pending(self, store: IndexStore, sessions_dir: Path, write_session):
        write_session("a")
        scheduler = BatchScheduler(store, FileDocumentStore(sessions_dir), flush_interval=0.05)
        scheduler.start()
        try:
            scheduler.notify("a")
            deadline = time.monotonic() + 5
            while store.count() == 0 and time.monotonic() < deadline:
                time.sleep(0.02)
        finally:
            scheduler.stop(timeout=5)

        assert store.count() == 1
        assert not scheduler.is_running
        assert scheduler.last_flush_at is not None

    def test_start_is_idempotent(self, store: IndexStore, sessions_dir: Path):
        scheduler = BatchScheduler(store, FileDocumentStore(sessions_dir), flush_interval=0.05)
        scheduler.start()
        scheduler.start()
        try:
            assert scheduler.is_running
        finally:
            scheduler.stop(timeout=5)

    def test_stop_keeps_pending(self, store: IndexStore, sessions_dir: Path):
        scheduler = BatchScheduler(store, FileDocumentStore(sessions_dir), flush_interval=60)
        scheduler.start()
        scheduler.notify("a")
        scheduler.stop(timeout=5)

        assert scheduler.pending_ids() == ["a"]
