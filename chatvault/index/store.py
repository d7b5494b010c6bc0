# chatvault/index/store.py
"""
Persistent index store.

IndexStore is the single owner of ``index.json``. Every mutation path (live
batch flushes, bulk reconciliation, single upserts) funnels through
``load``/``save`` under one in-process lock.

Failure policy:
- Missing file → empty index (not an error)
- Corrupt file → logged, empty index (rebuilt by the next reconcile)
- Bad entry → dropped, rest of the file kept
- Failed write → StorageError, nothing partially written
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from chatvault.core.exceptions import CorruptIndexError
from chatvault.core.storage import atomic_write_json, read_json
from chatvault.index.models import IndexEntry, IndexFile, ensure_utc, format_timestamp, utc_now
from chatvault.logging.logger import get_logger
from chatvault.logging.tags import INDEX

logger = get_logger(__name__)


class IndexStore:
    """
    Loads, validates, queries and atomically saves the derived index.

    Usage:
        store = IndexStore(Path("~/.chatvault/index.json").expanduser())

        with store.transaction() as index:
            index.entries[entry.id] = entry    # saved once on exit

        store.query_by_tag("python")
    """

    def __init__(self, index_path: Path | str) -> None:
        self._path = Path(index_path)
        self._lock = threading.RLock()
        self._cache: Optional[IndexFile] = None
        self._cache_marker: Optional[Tuple[int, int]] = None
        self._save_count = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def save_count(self) -> int:
        """Number of successful saves performed by this instance."""
        return self._save_count

    # -------------------------------------------------------------------------
    # Load / save
    # -------------------------------------------------------------------------

    def load(self) -> IndexFile:
        """
        Read and validate the persisted index.

        Never raises for a missing or corrupt file; both yield an empty index.
        """
        with self._lock:
            try:
                index_file = self._read()
            except CorruptIndexError as e:
                logger.warning(f"{INDEX} {e}; falling back to an empty index")
                return IndexFile.empty()

            if index_file.dropped:
                logger.warning(
                    f"{INDEX} Loaded {len(index_file)} entries, dropped {index_file.dropped} invalid"
                )
            return index_file

    def save(self, index_file: IndexFile) -> None:
        """
        Atomically overwrite the backing file.

        Raises:
            StorageError: If the write fails. The previous file is left intact.
        """
        with self._lock:
            index_file.last_updated = utc_now()
            atomic_write_json(self._path, index_file.to_payload(), operation="save index")
            self._save_count += 1
            self._cache = None
            self._cache_marker = None
            logger.debug(f"{INDEX} Saved {len(index_file)} entries to {self._path}")

    @contextmanager
    def transaction(self) -> Iterator[IndexFile]:
        """
        Load the index under the store lock and save it once on clean exit.

        If the body raises, nothing is written.
        """
        with self._lock:
            index_file = self.load()
            yield index_file
            self.save(index_file)

    def _read(self) -> IndexFile:
        try:
            payload = read_json(self._path)
        except FileNotFoundError:
            return IndexFile.empty()
        except OSError as e:
            raise CorruptIndexError(self._path, f"unreadable: {e}") from e
        except ValueError as e:
            raise CorruptIndexError(self._path, f"not valid JSON: {e}") from e
        return IndexFile.from_payload(payload, source=self._path)

    def _snapshot(self) -> IndexFile:
        """Read-only view for queries, reused while the file is unchanged."""
        with self._lock:
            try:
                stat = self._path.stat()
                marker: Optional[Tuple[int, int]] = (stat.st_mtime_ns, stat.st_size)
            except OSError:
                marker = None

            if marker is not None and self._cache is not None and self._cache_marker == marker:
                return self._cache

            index_file = self.load()
            self._cache = index_file
            self._cache_marker = marker
            return index_file

    # -------------------------------------------------------------------------
    # Mutators
    # -------------------------------------------------------------------------

    def upsert(self, document_id: str, entry: IndexEntry) -> None:
        """Insert or overwrite one entry and save."""
        if entry.id != document_id:
            entry = entry.model_copy(update={"id": document_id})
        with self.transaction() as index_file:
            index_file.entries[document_id] = entry

    def remove(self, document_id: str) -> bool:
        """Remove one entry and save. Returns False if it was not indexed."""
        with self._lock:
            index_file = self.load()
            if index_file.entries.pop(document_id, None) is None:
                return False
            self.save(index_file)
            return True

    def optimize(self) -> int:
        """
        Rewrite the file in canonical order, discarding invalid entries.

        Returns:
            Number of entries kept.
        """
        with self.transaction() as index_file:
            kept = len(index_file)
        logger.info(f"{INDEX} Optimized index: {kept} entries")
        return kept

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, document_id: str) -> Optional[IndexEntry]:
        return self._snapshot().get(document_id)

    def all(self) -> List[IndexEntry]:
        return self._snapshot().ordered_entries()

    def ids(self) -> List[str]:
        return sorted(self._snapshot().entries)

    def count(self) -> int:
        return len(self._snapshot())

    def last_updated(self) -> Optional[datetime]:
        """Timestamp of the last save, or None if nothing was persisted yet."""
        if not self._path.exists():
            return None
        return self._snapshot().last_updated

    def query_by_tag(self, tag: str) -> List[IndexEntry]:
        return [entry for entry in self.all() if tag in entry.tags]

    def query_by_date_range(self, start: datetime, end: datetime) -> List[IndexEntry]:
        """Entries whose createdAt falls within [start, end]."""
        start = ensure_utc(start)
        end = ensure_utc(end)
        return [entry for entry in self.all() if start <= entry.created_at <= end]

    def summary(self) -> Dict[str, Any]:
        """Aggregate statistics: session count, total size, tag count."""
        entries = self.all()
        tags = {tag for entry in entries for tag in entry.tags}
        last_updated = self.last_updated()
        return {
            "totalSessions": len(entries),
            "totalSize": sum(entry.size for entry in entries),
            "lastUpdated": format_timestamp(last_updated) if last_updated else None,
            "tagCount": len(tags),
        }
