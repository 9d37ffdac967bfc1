"""Tests for app.utils.hashing module."""

import tempfile
from pathlib import Path

import pytest

from app.utils.hashing import sha256_bytes, sha256_file


class TestSha256Bytes:
    """Tests for sha256_bytes function."""

    def test_empty_bytes(self):
        """Empty bytes should produce known SHA256 hash."""
        expected = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        assert sha256_bytes(b"") == expected

    def test_known_input(self):
        expected = "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
        assert sha256_bytes(b"hello") == expected

    def test_returns_hex_only(self):
        """Hash should be hex digest only, no prefix."""
        result = sha256_bytes(b"test")
        assert len(result) == 64
        assert all(c in "0123456789abcdef" for c in result)


class TestSha256File:
    """Tests for sha256_file function."""

    def test_file_hash_matches_bytes_hash(self):
        content = b"test file content for hashing"
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "data.bin"
            path.write_bytes(content)

            assert sha256_file(path) == sha256_bytes(content)
            assert sha256_file(str(path)) == sha256_bytes(content)

    def test_streams_across_chunk_boundaries(self):
        """Result must not depend on the chunk size."""
        content = bytes(range(256)) * 1000
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "data.bin"
            path.write_bytes(content)

            assert sha256_file(path, chunk_size=7) == sha256_bytes(content)
            assert sha256_file(path, chunk_size=1 << 20) == sha256_bytes(content)

    def test_nonexistent_file_raises(self):
        with pytest.raises(FileNotFoundError):
            sha256_file("/nonexistent/path/file.txt")

    def test_same_bytes_same_digest_one_byte_changes_it(self):
        """The fingerprint depends only on content."""
        with tempfile.TemporaryDirectory() as tmpdir:
            first = Path(tmpdir) / "first.bin"
            second = Path(tmpdir) / "second.bin"
            first.write_bytes(b"capture" * 1000)
            second.write_bytes(b"capture" * 1000)

            assert sha256_file(first) == sha256_file(second)

            changed = bytearray(second.read_bytes())
            changed[500] ^= 0x01
            second.write_bytes(bytes(changed))

            assert sha256_file(first) != sha256_file(second)
