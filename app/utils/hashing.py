"""Capture Agent - Hashing utilities.

All hash functions return HEX DIGEST ONLY (no prefix).
The hex digest is the asset fingerprint stored in media_asset.sha256.
"""

import hashlib
from pathlib import Path

from app.config import HASH_CHUNK_SIZE


def sha256_file(path: str | Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Compute SHA256 hash of a file.

    The file is streamed in fixed-size chunks, never buffered whole.

    Args:
        path: Path to the file to hash.
        chunk_size: Read buffer size in bytes.

    Returns:
        SHA256 hex digest (64 lowercase hex characters, no prefix).

    Raises:
        FileNotFoundError: If the file does not exist.
        OSError: If the file cannot be read.
    """
    path = Path(path)
    hasher = hashlib.sha256()

    with open(path, "rb") as f:
        while chunk := f.read(chunk_size):
            hasher.update(chunk)

    return hasher.hexdigest()


def sha256_bytes(data: bytes) -> str:
    """Compute SHA256 hash of bytes.

    Args:
        data: Bytes to hash.

    Returns:
        SHA256 hex digest (64 lowercase hex characters, no prefix).
    """
    return hashlib.sha256(data).hexdigest()
