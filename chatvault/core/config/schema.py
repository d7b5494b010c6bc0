# chatvault/core/config/schema.py
"""
Pydantic schema for chatvault configuration.

Rules:
- Strict validation
- No unknown keys
- Thresholds must be positive
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SyncConfig(BaseModel):
    """
    Configuration for the index maintenance engine.

    Examples:
        >>> config = SyncConfig(storage_path="/data/chats", max_batch_size=10)
        >>> config.max_batch_size
        10
    """

    storage_path: Path = Field(..., description="Root directory of the document store")
    sessions_dir: Path = Field(
        default=Path("sessions"), description="Directory holding one JSON file per session"
    )
    index_file: Path = Field(default=Path("index.json"), description="Derived index file")
    checksum_file: Path = Field(
        default=Path("checksums.json"), description="Persisted fingerprint table"
    )
    document_suffix: str = Field(default=".json", description="Suffix of session documents")

    max_batch_size: int = Field(default=50, gt=0, description="Flush once this many ids are pending")
    flush_interval_seconds: float = Field(
        default=2.0, gt=0, description="Background flush tick interval"
    )

    model_config = ConfigDict(extra="forbid")

    @field_validator("document_suffix")
    @classmethod
    def _suffix_has_dot(cls, value: str) -> str:
        if not value.startswith("."):
            raise ValueError("document_suffix must start with '.'")
        return value
