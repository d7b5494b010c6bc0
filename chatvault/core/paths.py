# chatvault/core/paths.py
"""
Resolved filesystem layout of a chatvault store.

    <storage_path>/
        sessions/<id>.json    session documents (external)
        index.json            derived index
        checksums.json        fingerprint table
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from chatvault.core.config.schema import SyncConfig


def _under(root: Path, path: Path) -> Path:
    return path if path.is_absolute() else root / path


@dataclass(frozen=True)
class VaultPaths:
    """Absolute paths derived from a SyncConfig."""

    storage: Path
    sessions: Path
    index: Path
    checksums: Path

    @classmethod
    def from_config(cls, config: SyncConfig) -> "VaultPaths":
        storage = config.storage_path.expanduser()
        return cls(
            storage=storage,
            sessions=_under(storage, config.sessions_dir),
            index=_under(storage, config.index_file),
            checksums=_under(storage, config.checksum_file),
        )

    def ensure(self) -> None:
        """Create the storage and sessions directories if missing."""
        self.storage.mkdir(parents=True, exist_ok=True)
        self.sessions.mkdir(parents=True, exist_ok=True)
        self.index.parent.mkdir(parents=True, exist_ok=True)
        self.checksums.parent.mkdir(parents=True, exist_ok=True)
