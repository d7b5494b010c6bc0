# tests/conftest.py
"""Shared fixtures for chatvault tests."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from chatvault.sync.documents import DocumentMetadata, parse_session


def session_payload(
    session_id: str,
    *,
    title: str = "Untitled",
    tags: Optional[List[str]] = None,
    created_at: str = "2024-01-01T00:00:00.000Z",
    updated_at: Optional[str] = None,
    messages: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    return {
        "id": session_id,
        "title": title,
        "tags": tags or [],
        "createdAt": created_at,
        "updatedAt": updated_at or created_at,
        "messages": messages if messages is not None else [{"role": "user", "content": "hi"}],
    }


@pytest.fixture
def sessions_dir(tmp_path: Path) -> Path:
    path = tmp_path / "sessions"
    path.mkdir()
    return path


@pytest.fixture
def write_session(sessions_dir: Path):
    """Write a session document; returns its path."""

    def _write(session_id: str, **fields: Any) -> Path:
        path = sessions_dir / f"{session_id}.json"
        path.write_text(json.dumps(session_payload(session_id, **fields)), encoding="utf-8")
        return path

    return _write


class InMemoryDocumentSource:
    """DocumentSource backed by a dict of raw bytes, ids map to ``mem:<id>``."""

    def __init__(self) -> None:
        self.documents: Dict[str, bytes] = {}

    def put(self, session_id: str, **fields: Any) -> None:
        self.documents[session_id] = json.dumps(session_payload(session_id, **fields)).encode()

    def list_document_ids(self) -> List[str]:
        return sorted(self.documents)

    def read_document(self, document_id: str) -> Optional[bytes]:
        return self.documents.get(document_id)

    def document_metadata(self, document_id: str, raw: Optional[bytes] = None) -> Optional[DocumentMetadata]:
        if raw is None:
            raw = self.documents.get(document_id)
        if raw is None:
            return None
        return parse_session(document_id, raw).metadata()

    def filename_for(self, document_id: str) -> str:
        return f"mem:{document_id}"

    def document_id_for(self, filename: str) -> str:
        return filename[len("mem:"):]


@pytest.fixture
def memory_source() -> InMemoryDocumentSource:
    return InMemoryDocumentSource()
