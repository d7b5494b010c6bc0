# chatvault/sync/documents.py
"""
Read-only access to the session document store.

The store is a directory holding one ``<id>.json`` file per session. This
module lists and reads those files and projects a session into an
IndexEntry. It never writes documents.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from chatvault.core.exceptions import TransientReadError, ValidationError
from chatvault.index.models import IndexEntry, describe_validation_error, ensure_utc
from chatvault.logging.logger import get_logger
from chatvault.logging.tags import DETECT
from chatvault.sync.hashing import ContentFingerprinter

logger = get_logger(__name__)


@dataclass(frozen=True)
class DocumentMetadata:
    """Metadata projected from a session document."""

    title: str
    tags: List[str]
    created_at: datetime
    updated_at: datetime
    message_count: int


class SessionDocument(BaseModel):
    """
    Minimal schema of a session document.

    Only the fields the index needs are validated; everything else in the
    document is ignored.
    """

    id: str = Field(..., min_length=1)
    title: Optional[str] = ""
    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")
    messages: List[Any]

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_sequence(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, (str, bytes, dict)):
            raise ValueError("tags must be a sequence, not a scalar")
        return value

    @model_validator(mode="after")
    def _default_updated_at(self) -> "SessionDocument":
        if self.updated_at is None:
            self.updated_at = self.created_at
        return self

    def metadata(self) -> DocumentMetadata:
        return DocumentMetadata(
            title=self.title or "",
            tags=list(dict.fromkeys(self.tags)),
            created_at=ensure_utc(self.created_at),
            updated_at=ensure_utc(self.updated_at or self.created_at),
            message_count=len(self.messages),
        )


def parse_session(document_id: str, raw: bytes) -> SessionDocument:
    """
    Decode and validate raw session bytes.

    Raises:
        ValidationError: If the bytes are not a valid session document.
    """
    try:
        return SessionDocument.model_validate_json(raw)
    except PydanticValidationError as e:
        raise ValidationError(f"session '{document_id}'", describe_validation_error(e)) from e


def build_index_entry(
    document_id: str,
    raw: bytes,
    metadata: DocumentMetadata,
    digest: Optional[str] = None,
) -> IndexEntry:
    """Project a document's metadata into an IndexEntry keyed by ``document_id``."""
    return IndexEntry(
        id=document_id,
        title=metadata.title,
        tags=metadata.tags,
        created_at=metadata.created_at,
        updated_at=metadata.updated_at,
        size=len(raw),
        message_count=metadata.message_count,
        digest=digest,
    )


@runtime_checkable
class DocumentSource(Protocol):
    """
    Protocol for the external session document store.

    Documents are addressed by id; ``filename_for``/``document_id_for``
    map ids to the keys of the persisted fingerprint table.
    """

    def list_document_ids(self) -> List[str]:
        """Ids of all documents currently stored."""
        ...

    def read_document(self, document_id: str) -> Optional[bytes]:
        """Raw bytes, or None if the document does not exist."""
        ...

    def document_metadata(
        self, document_id: str, raw: Optional[bytes] = None
    ) -> Optional[DocumentMetadata]:
        """Parsed metadata (from ``raw`` when given), or None if the document does not exist."""
        ...

    def filename_for(self, document_id: str) -> str:
        """Fingerprint table key for an id. Raises ValidationError for unusable ids."""
        ...

    def document_id_for(self, filename: str) -> str:
        """Inverse of ``filename_for``."""
        ...


def load_index_entry(
    source: DocumentSource,
    document_id: str,
    fingerprinter: Optional[ContentFingerprinter] = None,
) -> Optional[IndexEntry]:
    """
    Build the IndexEntry for a document.

    Returns:
        The entry, or None if the document no longer exists.

    Raises:
        TransientReadError: If the document cannot be read.
        ValidationError: If the document is not a valid session.
    """
    raw = source.read_document(document_id)
    if raw is None:
        return None
    metadata = source.document_metadata(document_id, raw)
    if metadata is None:
        return None
    digest = (fingerprinter or ContentFingerprinter()).fingerprint(raw)
    return build_index_entry(document_id, raw, metadata, digest)


class FileDocumentStore:
    """
    DocumentSource over a directory of ``<id><suffix>`` files.

    Usage:
        source = FileDocumentStore(Path("~/.chatvault/sessions").expanduser())
        for document_id in source.list_document_ids():
            entry = load_index_entry(source, document_id)
    """

    def __init__(self, sessions_dir: Path | str, suffix: str = ".json") -> None:
        self._dir = Path(sessions_dir)
        self._suffix = suffix

    @property
    def directory(self) -> Path:
        return self._dir

    @property
    def suffix(self) -> str:
        return self._suffix

    def filename_for(self, document_id: str) -> str:
        _check_document_id(document_id)
        return f"{document_id}{self._suffix}"

    def document_id_for(self, filename: str) -> str:
        if filename.endswith(self._suffix):
            return filename[: -len(self._suffix)]
        return filename

    def path_for(self, document_id: str) -> Path:
        return self._dir / self.filename_for(document_id)

    def list_document_ids(self) -> List[str]:
        """
        List ids of documents in the sessions directory.

        A missing directory is an empty store.

        Raises:
            TransientReadError: If the directory exists but cannot be listed.
        """
        try:
            names = [
                child.name
                for child in self._dir.iterdir()
                if child.name.endswith(self._suffix) and child.is_file()
            ]
        except FileNotFoundError:
            logger.debug(f"{DETECT} Sessions directory {self._dir} does not exist")
            return []
        except OSError as e:
            raise TransientReadError(self._dir, e) from e

        ids = [self.document_id_for(name) for name in names]
        return sorted(document_id for document_id in ids if _is_plain_id(document_id))

    def read_document(self, document_id: str) -> Optional[bytes]:
        """
        Read raw document bytes.

        Returns:
            The bytes, or None if the file does not exist (vanished).

        Raises:
            TransientReadError: If the file exists but cannot be read.
        """
        path = self.path_for(document_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise TransientReadError(path, e) from e

    def document_metadata(
        self, document_id: str, raw: Optional[bytes] = None
    ) -> Optional[DocumentMetadata]:
        if raw is None:
            raw = self.read_document(document_id)
            if raw is None:
                return None
        return parse_session(document_id, raw).metadata()


def _check_document_id(document_id: str) -> None:
    if not isinstance(document_id, str) or not document_id.strip():
        raise ValidationError("document id", "must be a non-empty string")
    if document_id in (".", "..") or "/" in document_id or "\\" in document_id:
        raise ValidationError("document id", f"{document_id!r} is not a plain file name")


def _is_plain_id(document_id: str) -> bool:
    try:
        _check_document_id(document_id)
    except ValidationError:
        logger.debug(f"{DETECT} Ignoring file with unusable id {document_id!r}")
        return False
    return True
