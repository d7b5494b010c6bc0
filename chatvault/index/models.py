# chatvault/index/models.py
"""
Index data model.

IndexEntry is validated per entry: a malformed entry is dropped on load
without invalidating the rest of the file. IndexFile validation is
file-level: a structurally broken file raises CorruptIndexError.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_serializer,
    field_validator,
)
from pydantic import ValidationError as PydanticValidationError

from chatvault.core.exceptions import CorruptIndexError, ValidationError
from chatvault.logging.logger import get_logger
from chatvault.logging.tags import INDEX

logger = get_logger(__name__)

INDEX_SCHEMA_VERSION = "1.0.0"

_DATETIME = TypeAdapter(datetime)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO string (or datetime) into an aware UTC datetime."""
    return ensure_utc(_DATETIME.validate_python(value))


def format_timestamp(value: datetime) -> str:
    return ensure_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def describe_validation_error(error: PydanticValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(x) for x in err.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


class IndexEntry(BaseModel):
    """
    Queryable projection of one session document.

    Examples:
        >>> entry = IndexEntry(
        ...     id="abc",
        ...     title="Refactoring chat",
        ...     tags=["python"],
        ...     created_at="2024-01-01T00:00:00Z",
        ...     updated_at="2024-01-02T00:00:00Z",
        ...     size=512,
        ... )
        >>> entry.to_dict()["createdAt"]
        '2024-01-01T00:00:00.000Z'
    """

    id: str = Field(..., min_length=1, strict=True)
    title: str = ""
    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")
    size: int = Field(..., ge=0, strict=True)
    message_count: int = Field(default=0, ge=0, alias="messageCount")
    # Fingerprint of the document bytes this entry was built from
    digest: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    @field_validator("title", mode="before")
    @classmethod
    def _none_title(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_sequence(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, (str, bytes, dict)):
            raise ValueError("tags must be a sequence, not a scalar")
        return value

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(value))

    @field_validator("created_at", "updated_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_serializer("created_at", "updated_at")
    def _serialize_timestamp(self, value: datetime) -> str:
        return format_timestamp(value)

    @classmethod
    def from_payload(cls, payload: Any) -> "IndexEntry":
        """
        Validate a raw JSON entry.

        Raises:
            ValidationError: If the entry fails any field rule.
        """
        try:
            return cls.model_validate(payload)
        except PydanticValidationError as e:
            subject = "index entry"
            if isinstance(payload, dict) and isinstance(payload.get("id"), str):
                subject = f"index entry '{payload['id']}'"
            raise ValidationError(subject, describe_validation_error(e)) from e

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


@dataclass
class IndexFile:
    """
    Durable container of all index entries.

    ``entries`` is keyed by document id. ``dropped`` counts entries that
    failed validation when this snapshot was loaded.
    """

    version: str = INDEX_SCHEMA_VERSION
    last_updated: datetime = field(default_factory=utc_now)
    entries: Dict[str, IndexEntry] = field(default_factory=dict)
    dropped: int = 0

    @classmethod
    def empty(cls) -> "IndexFile":
        return cls()

    @classmethod
    def from_payload(cls, payload: Any, source: Path | str = "<memory>") -> "IndexFile":
        """
        Build an IndexFile from decoded JSON.

        Raises:
            CorruptIndexError: If the container itself is structurally invalid.
        """
        if not isinstance(payload, dict):
            raise CorruptIndexError(source, "top-level value is not an object")

        version = payload.get("version")
        if not isinstance(version, str) or not version:
            raise CorruptIndexError(source, "missing version")
        if version != INDEX_SCHEMA_VERSION:
            raise CorruptIndexError(
                source, f"unsupported version {version!r} (expected {INDEX_SCHEMA_VERSION!r})"
            )

        if payload.get("lastUpdated") is None:
            raise CorruptIndexError(source, "missing lastUpdated")
        try:
            last_updated = parse_timestamp(payload["lastUpdated"])
        except PydanticValidationError as e:
            raise CorruptIndexError(
                source, f"invalid lastUpdated {payload['lastUpdated']!r}"
            ) from e

        raw_entries = payload.get("entries")
        if not isinstance(raw_entries, list):
            raise CorruptIndexError(source, "entries is not an array")

        entries: Dict[str, IndexEntry] = {}
        dropped = 0
        for position, raw in enumerate(raw_entries):
            try:
                entry = IndexEntry.from_payload(raw)
            except ValidationError as e:
                dropped += 1
                logger.warning(f"{INDEX} Dropping entry #{position} from {source}: {e}")
                continue
            entries[entry.id] = entry

        return cls(version=version, last_updated=last_updated, entries=entries, dropped=dropped)

    def ordered_entries(self) -> List[IndexEntry]:
        """Entries ordered by updatedAt (newest first), then id."""
        by_id = sorted(self.entries.values(), key=lambda e: e.id)
        return sorted(by_id, key=lambda e: e.updated_at, reverse=True)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "lastUpdated": format_timestamp(self.last_updated),
            "entries": [entry.to_dict() for entry in self.ordered_entries()],
        }

    def get(self, document_id: str) -> Optional[IndexEntry]:
        return self.entries.get(document_id)

    def __len__(self) -> int:
        return len(self.entries)
