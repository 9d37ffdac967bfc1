"""Capture Agent - Content store path utilities.

Returns canonical Paths inside the content store. Does NOT create directories.
Directory creation is the responsibility of the calling code.

Layout:
    <content_root>/<YYYY>/<MM>/<batch_ms>-<batch_id>-<index>-<sanitized_name>
"""

from datetime import UTC, datetime
from pathlib import Path

_SAFE_PUNCTUATION = frozenset("-_.")


def sanitize_file_name(name: str) -> str:
    """Make a file name safe for the content store.

    ASCII alphanumerics, "-", "_" and "." pass through; every other
    character (including path separators) becomes "_".

    Args:
        name: Original file name (basename).

    Returns:
        Sanitized file name, same length as the input.
    """
    return "".join(
        ch if (ch.isascii() and ch.isalnum()) or ch in _SAFE_PUNCTUATION else "_" for ch in name
    )


def batch_partition(batch_ms: int) -> tuple[str, str]:
    """Get (year, month) partition for a batch timestamp.

    Args:
        batch_ms: Batch timestamp in epoch milliseconds.

    Returns:
        Tuple of zero-padded ("YYYY", "MM") strings, in UTC.
    """
    moment = datetime.fromtimestamp(batch_ms / 1000, tz=UTC)
    return f"{moment.year:04d}", f"{moment.month:02d}"


def content_storage_path(
    content_root: Path,
    batch_ms: int,
    batch_id: str,
    index: int,
    original_name: str,
) -> Path:
    """Get canonical content-store path for one asset of a batch.

    batch_id (the job id) separates batches started in the same millisecond;
    index separates equal names inside one batch.

    Args:
        content_root: Root of the content store.
        batch_ms: Batch timestamp in epoch milliseconds.
        batch_id: Identifier unique to the batch.
        index: Zero-based position of the asset in its batch.
        original_name: Original file name (basename).

    Returns:
        Path: <content_root>/YYYY/MM/<batch_ms>-<batch_id>-<index>-<sanitized_name>
    """
    year, month = batch_partition(batch_ms)
    prefix = f"{batch_ms}-{sanitize_file_name(batch_id)}-{index}"
    file_name = f"{prefix}-{sanitize_file_name(original_name)}"
    return Path(content_root) / year / month / file_name


def is_within(path: Path, root: Path) -> bool:
    """Check that path resolves to a location inside root.

    Args:
        path: Candidate path (need not exist).
        root: Directory that must contain it.

    Returns:
        True if the resolved path is root or lies under it.
    """
    return Path(path).resolve().is_relative_to(Path(root).resolve())
