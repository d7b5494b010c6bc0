# chatvault/sync/differ.py
"""
Content-addressed change detection.

Computes the change set by comparing:
1. Documents currently in the sessions directory (fingerprinted on read)
2. The persisted fingerprint table (``checksums.json``: filename -> digest)

Key design decisions:
- The fingerprint table is rewritten BEFORE the change set is returned.
  A crash before the caller applies the diff is harmless: the change set
  carries the full digest table, and reconcile re-indexes every entry whose
  recorded digest differs from it.
- A file that vanishes between listing and reading counts as absent.
- A file that exists but cannot be read is not classified this pass; its
  previous digest is carried forward and it is retried next pass.

This module ONLY computes changes - it does NOT touch the index.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from chatvault.core.exceptions import TransientReadError
from chatvault.core.storage import atomic_write_json, read_json
from chatvault.logging.logger import get_logger
from chatvault.logging.tags import DETECT
from chatvault.sync.documents import DocumentSource
from chatvault.sync.hashing import ContentFingerprinter

logger = get_logger(__name__)


class FingerprintStore:
    """
    Persisted ``filename -> digest`` table.

    A missing or unreadable table loads as empty, which simply makes the
    next detection pass classify every document as added.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Dict[str, str]:
        try:
            payload = read_json(self._path)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning(f"{DETECT} Fingerprint table {self._path} unreadable ({e}); starting empty")
            return {}

        if not isinstance(payload, dict):
            logger.warning(f"{DETECT} Fingerprint table {self._path} is not an object; starting empty")
            return {}

        table = {k: v for k, v in payload.items() if isinstance(k, str) and isinstance(v, str) and v}
        if len(table) != len(payload):
            logger.warning(
                f"{DETECT} Dropped {len(payload) - len(table)} malformed fingerprint entries"
            )
        return table

    def save(self, table: Dict[str, str]) -> None:
        """
        Raises:
            StorageError: If the table cannot be written.
        """
        atomic_write_json(self._path, dict(sorted(table.items())), operation="save fingerprints")


@dataclass
class ChangeSet:
    """
    Result of a detection pass.

    - added / modified / deleted: filenames classified this pass
    - skipped: filenames that could not be read and were not classified
    - tracked: every filename in the table written by this pass
    - digests: the table written by this pass (filename -> digest)
    """

    added: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    tracked: List[str] = field(default_factory=list)
    digests: Dict[str, str] = field(default_factory=dict)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.deleted)

    @property
    def total_count(self) -> int:
        return len(self.added) + len(self.modified) + len(self.deleted)

    @property
    def summary(self) -> str:
        return (
            f"added={len(self.added)}, "
            f"modified={len(self.modified)}, "
            f"deleted={len(self.deleted)}, "
            f"skipped={len(self.skipped)}"
        )

    def to_dict(self) -> Dict[str, List[str]]:
        return {"added": list(self.added), "modified": list(self.modified), "deleted": list(self.deleted)}


class ChangeDetector:
    """
    Classifies session documents as added, modified, deleted or unchanged.

    Usage:
        detector = ChangeDetector(source, FingerprintStore(paths.checksums))
        changes = detector.detect_changes()

        for filename in changes.added:
            ...
    """

    def __init__(
        self,
        source: DocumentSource,
        fingerprints: FingerprintStore,
        fingerprinter: Optional[ContentFingerprinter] = None,
    ) -> None:
        self._source = source
        self._fingerprints = fingerprints
        self._fingerprinter = fingerprinter or ContentFingerprinter()
        self._lock = threading.Lock()

    @property
    def source(self) -> DocumentSource:
        return self._source

    @property
    def fingerprinter(self) -> ContentFingerprinter:
        return self._fingerprinter

    def detect_changes(self) -> ChangeSet:
        """
        Run one detection pass and persist the new fingerprint table.

        Raises:
            StorageError: If the fingerprint table cannot be written.
        """
        with self._lock:
            previous = self._fingerprints.load()
            changes = ChangeSet()

            try:
                document_ids = self._source.list_document_ids()
            except TransientReadError as e:
                logger.warning(f"{DETECT} {e}; skipping this detection pass")
                changes.tracked = sorted(previous)
                changes.digests = dict(previous)
                return changes

            current: Dict[str, str] = {}
            for document_id in document_ids:
                filename = self._source.filename_for(document_id)
                try:
                    raw = self._source.read_document(document_id)
                except TransientReadError as e:
                    logger.warning(f"{DETECT} {e}; will retry next pass")
                    changes.skipped.append(filename)
                    if filename in previous:
                        current[filename] = previous[filename]
                    continue

                if raw is None:
                    logger.debug(f"{DETECT} {filename} vanished during scan")
                    continue

                digest = self._fingerprinter.fingerprint(raw)
                current[filename] = digest

                if filename not in previous:
                    changes.added.append(filename)
                elif previous[filename] != digest:
                    changes.modified.append(filename)

            changes.deleted.extend(sorted(f for f in previous if f not in current))
            changes.tracked = sorted(current)
            changes.digests = dict(current)

            self._fingerprints.save(current)

        logger.info(f"{DETECT} Changes detected: {changes.summary}")
        return changes

    def forget(self, filenames: Iterable[str]) -> None:
        """
        Drop filenames from the fingerprint table so the next pass
        reclassifies them as added.

        Raises:
            StorageError: If the fingerprint table cannot be written.
        """
        filenames = set(filenames)
        if not filenames:
            return
        with self._lock:
            table = self._fingerprints.load()
            if not filenames & table.keys():
                return
            for filename in filenames:
                table.pop(filename, None)
            self._fingerprints.save(table)
        logger.debug(f"{DETECT} Forgot {len(filenames)} fingerprints")
