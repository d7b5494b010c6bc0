# chatvault/index/__init__.py
"""
Derived session index.

The index is a single JSON file holding one metadata record per session
document:

    {
        "version": "1.0.0",
        "lastUpdated": "2024-01-15T10:30:00.000Z",
        "entries": [
            {"id": "abc", "title": "...", "tags": [...], "createdAt": "...",
             "updatedAt": "...", "size": 1234, "messageCount": 12,
             "digest": "sha256:..."}
        ]
    }
"""

from .models import INDEX_SCHEMA_VERSION, IndexEntry, IndexFile, format_timestamp, utc_now
from .store import IndexStore

__all__ = [
    "INDEX_SCHEMA_VERSION",
    "IndexEntry",
    "IndexFile",
    "IndexStore",
    "format_timestamp",
    "utc_now",
]
