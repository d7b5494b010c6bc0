# chatvault/sync/hashing.py
"""
Content fingerprinting.

Digests are SHA-256 over the raw document bytes, rendered as
``sha256:<hex>`` so the algorithm is visible in the persisted table.
Only collision-resistant, fixed-length hash families are accepted.
"""

from __future__ import annotations

import hashlib

DEFAULT_ALGORITHM = "sha256"

SUPPORTED_ALGORITHMS = frozenset(
    {
        "sha224",
        "sha256",
        "sha384",
        "sha512",
        "sha3_224",
        "sha3_256",
        "sha3_384",
        "sha3_512",
        "blake2b",
        "blake2s",
    }
)


class ContentFingerprinter:
    """Computes stable content digests for raw document bytes."""

    def __init__(self, algorithm: str = DEFAULT_ALGORITHM) -> None:
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(
                f"Unsupported hash algorithm: {algorithm!r} "
                f"(expected one of {', '.join(sorted(SUPPORTED_ALGORITHMS))})"
            )
        self._algorithm = algorithm

    @property
    def algorithm(self) -> str:
        return self._algorithm

    def fingerprint(self, data: bytes) -> str:
        """Digest of ``data``. Empty input yields the digest of the empty input."""
        digest = hashlib.new(self._algorithm, data).hexdigest()
        return f"{self._algorithm}:{digest}"


_default = ContentFingerprinter()


def fingerprint(data: bytes) -> str:
    """Digest ``data`` with the default fingerprinter."""
    return _default.fingerprint(data)
