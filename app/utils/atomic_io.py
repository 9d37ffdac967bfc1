"""Capture Agent - Atomic publish helpers.

Content-store copies and note files are never written in place. Bytes go to
a sibling temp file that is created exclusively (O_EXCL, random token in the
name), get fsynced, and are then renamed over the final path. A reader sees
either nothing, the previous file, or the complete new file.

Temp names look like "<final name>.<token>.tmp", so concurrent writers in one
directory never share a temp file, and startup cleanup can sweep "*.tmp".

Failpoints (kind is WRITE or COPY):
- ATOMIC_<kind>_AFTER_TMP_WRITE: bytes written, temp not yet fsynced
- ATOMIC_<kind>_AFTER_FSYNC_BEFORE_RENAME: temp durable, rename pending
"""

import hashlib
import logging
import os
import secrets
from collections.abc import Iterable
from pathlib import Path

from app.config import HASH_CHUNK_SIZE
from app.utils.failpoints import maybe_fail

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"


def _write_all(fd: int, data: bytes) -> None:
    """os.write() until every byte is out; short writes are retried."""
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        if written == 0:
            raise OSError("os.write() made no progress")
        view = view[written:]


def _create_temp(final_path: Path, temp_suffix: str) -> tuple[int, Path]:
    final_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = final_path.with_name(f"{final_path.name}.{secrets.token_hex(6)}{temp_suffix}")
    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
    return fd, temp_path


def _remove_quietly(path: Path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning("Could not remove temp file %s", path, exc_info=True)


def _fsync_directory(dir_path: Path) -> None:
    # O_DIRECTORY is POSIX only; elsewhere rename durability is best-effort
    flags = getattr(os, "O_DIRECTORY", None)
    if flags is None:
        return
    try:
        fd = os.open(dir_path, os.O_RDONLY | flags)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        logger.debug("fsync of %s not supported", dir_path)
    finally:
        os.close(fd)


def _publish(final_path: Path, chunks: Iterable[bytes], temp_suffix: str, kind: str) -> str:
    """Stream chunks into a fresh temp file and rename it over final_path.

    Returns:
        SHA-256 hex digest of everything written.
    """
    fd, temp_path = _create_temp(final_path, temp_suffix)
    hasher = hashlib.sha256()
    try:
        try:
            for chunk in chunks:
                _write_all(fd, chunk)
                hasher.update(chunk)
            maybe_fail(f"ATOMIC_{kind}_AFTER_TMP_WRITE")
            os.fsync(fd)
        finally:
            os.close(fd)

        maybe_fail(f"ATOMIC_{kind}_AFTER_FSYNC_BEFORE_RENAME")
        os.replace(temp_path, final_path)
    except OSError:
        _remove_quietly(temp_path)
        raise

    _fsync_directory(final_path.parent)
    return hasher.hexdigest()


def atomic_write_bytes(
    final_path: str | Path,
    data: bytes,
    temp_suffix: str = TEMP_SUFFIX,
) -> None:
    """Atomically replace final_path with data.

    Parent directories are created. An existing final file is replaced.

    Raises:
        OSError: If the temp file cannot be created, written or renamed.
            No temp file is left behind in that case.
    """
    _publish(Path(final_path), (data,), temp_suffix, "WRITE")


def atomic_write_text(
    final_path: str | Path,
    text: str,
    encoding: str = "utf-8",
    temp_suffix: str = TEMP_SUFFIX,
) -> None:
    atomic_write_bytes(final_path, text.encode(encoding), temp_suffix)


def atomic_copy_file(
    source_path: str | Path,
    final_path: str | Path,
    temp_suffix: str = TEMP_SUFFIX,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Copy source_path to final_path through a temp file, hashing on the way.

    The digest covers the bytes actually written, so callers can compare it
    with a fingerprint taken before the copy to detect a source that changed
    underneath them.

    Args:
        source_path: File to copy.
        final_path: Destination; parent directories are created.
        temp_suffix: Suffix of the temp file (default: ".tmp").
        chunk_size: Read size in bytes.

    Returns:
        SHA-256 hex digest of the copied bytes.

    Raises:
        FileNotFoundError: If source_path does not exist (nothing is created).
        OSError: If reading, writing or the rename fails.
    """
    with open(source_path, "rb") as source:
        chunks = iter(lambda: source.read(chunk_size), b"")
        return _publish(Path(final_path), chunks, temp_suffix, "COPY")


def cleanup_orphan_temp_files(directory: str | Path, temp_suffix: str = TEMP_SUFFIX) -> int:
    """Delete temp files left under directory by interrupted publishes.

    Only safe while no publish is in flight (startup). Files that cannot be
    removed are logged and skipped.

    Returns:
        Number of files removed.
    """
    root = Path(directory)
    if not root.is_dir():
        return 0

    removed = 0
    for temp_file in root.rglob(f"*{temp_suffix}"):
        if not temp_file.is_file():
            continue
        try:
            temp_file.unlink()
        except OSError:
            logger.warning("Could not remove orphan temp file %s", temp_file, exc_info=True)
            continue
        removed += 1
    return removed
