# tests/test_hashing.py
"""
Tests for chatvault.sync.hashing module.
"""

import hashlib

import pytest

from chatvault.sync.hashing import ContentFingerprinter, fingerprint


class TestContentFingerprinter:
    """Tests for ContentFingerprinter."""

    def test_deterministic(self):
        """Same bytes always produce the same digest."""
        fp = ContentFingerprinter()
        assert fp.fingerprint(b"Hello") == fp.fingerprint(b"Hello")

    def test_different_content_different_digest(self):
        assert fingerprint(b"Hello") != fingerprint(b"World")

    def test_format_is_algorithm_prefixed_sha256(self):
        expected = "sha256:" + hashlib.sha256(b"Hello").hexdigest()
        assert fingerprint(b"Hello") == expected

    def test_empty_input(self):
        """Zero-length input is valid and yields the digest of the empty input."""
        assert fingerprint(b"") == "sha256:" + hashlib.sha256(b"").hexdigest()

    def test_unknown_algorithm_rejected(self):
        with pytest.raises(ValueError):
            ContentFingerprinter("not-a-hash")

    @pytest.mark.parametrize("algorithm", ["md5", "sha1", "shake_128", "shake_256"])
    def test_weak_or_variable_length_algorithms_rejected(self, algorithm: str):
        """Only collision-resistant, fixed-length digests are accepted."""
        with pytest.raises(ValueError, match="Unsupported hash algorithm"):
            ContentFingerprinter(algorithm)

    @pytest.mark.parametrize("algorithm", ["sha512", "sha3_256", "blake2b"])
    def test_supported_algorithms(self, algorithm: str):
        fp = ContentFingerprinter(algorithm)

        assert fp.fingerprint(b"Hello").startswith(f"{algorithm}:")
        assert fp.algorithm == algorithm
