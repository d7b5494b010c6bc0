# chatvault/core/storage.py
"""
Atomic JSON persistence helpers.

Files are written with a write-new-then-replace discipline: the payload goes
to a temp file in the target directory, is fsynced, then ``os.replace``d over
the target. Readers see either the previous complete file or the new one.
"""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from chatvault.core.exceptions import StorageError


def atomic_write_json(path: Path | str, payload: Any, *, operation: str = "write") -> None:
    """
    Atomically replace ``path`` with the JSON encoding of ``payload``.

    Raises:
        StorageError: If the payload cannot be encoded or any filesystem step fails.
    """
    path = Path(path)
    tmp_name: str | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, ensure_ascii=False)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    except (OSError, TypeError, ValueError) as e:
        raise StorageError(operation, path, e) from e
    finally:
        if tmp_name is not None:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)


def read_json(path: Path | str) -> Any:
    """
    Read and decode a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        OSError: If the file cannot be read.
        ValueError: If the content is not valid UTF-8 JSON.
    """
    raw = Path(path).read_bytes()
    return json.loads(raw.decode("utf-8"))
