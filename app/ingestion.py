"""Capture Agent - Asset ingestion.

AssetIngestor turns a batch of local file paths into verified PreparedAssets:
1. Resolve to a canonical absolute path of a regular file
2. Enforce 0 < size <= MAX_ASSET_BYTES
3. Classify media category from the extension
4. Sniff MIME type from content and cross-check it with the category
5. Fingerprint (streaming SHA256)
6. Atomically copy into the content store (YYYY/MM partition)

The batch is all-or-nothing: the first invalid file aborts it, and every
file already copied for this batch is removed before the error propagates.
No database rows are written here; JobRepository does that afterwards.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from app.config import CONTENT_DIR, MAX_ASSET_BYTES
from app.utils.atomic_io import atomic_copy_file
from app.utils.hashing import sha256_file
from app.utils.media import (
    MediaCategory,
    check_mime_matches_category,
    classify_media_category,
    extract_duration_ms,
    read_file_head,
    sniff_mime_type,
)
from app.utils.paths import content_storage_path, is_within

logger = logging.getLogger(__name__)


# --- Error Codes ---


class IngestErrorCode(StrEnum):
    """Error codes for the ingestion stage."""

    EMPTY_BATCH = "EMPTY_BATCH"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    NOT_A_FILE = "NOT_A_FILE"
    EMPTY_ASSET = "EMPTY_ASSET"
    ASSET_TOO_LARGE = "ASSET_TOO_LARGE"
    UNSUPPORTED_MEDIA = "UNSUPPORTED_MEDIA"
    MIME_MISMATCH = "MIME_MISMATCH"
    HASH_FAILED = "HASH_FAILED"
    INGEST_FAILED = "INGEST_FAILED"


# Validation failures; everything else is an I/O failure
VALIDATION_ERROR_CODES = frozenset(
    {
        IngestErrorCode.EMPTY_BATCH,
        IngestErrorCode.NOT_A_FILE,
        IngestErrorCode.EMPTY_ASSET,
        IngestErrorCode.ASSET_TOO_LARGE,
        IngestErrorCode.UNSUPPORTED_MEDIA,
        IngestErrorCode.MIME_MISMATCH,
    }
)


class IngestError(Exception):
    """Base exception for ingest errors."""

    def __init__(self, error_code: str, message: str, path: str | None = None):
        self.error_code = error_code
        self.message = message
        self.path = path
        super().__init__(f"{error_code}: {message}")

    @property
    def is_validation_error(self) -> bool:
        return self.error_code in VALIDATION_ERROR_CODES


class EmptyBatchError(IngestError):
    """Enqueue called without any file."""

    def __init__(self):
        super().__init__(IngestErrorCode.EMPTY_BATCH, "at least one file path is required")


class FileNotFoundIngestError(IngestError):
    """Source file not found."""

    def __init__(self, path: str):
        super().__init__(IngestErrorCode.FILE_NOT_FOUND, f"Source file not found: {path}", path)


class NotAFileError(IngestError):
    """Path exists but is not a regular file."""

    def __init__(self, path: str):
        super().__init__(IngestErrorCode.NOT_A_FILE, f"Not a regular file: {path}", path)


class EmptyAssetError(IngestError):
    def __init__(self, path: str):
        super().__init__(IngestErrorCode.EMPTY_ASSET, f"File is empty: {path}", path)


class AssetTooLargeError(IngestError):
    def __init__(self, path: str, size_bytes: int, limit_bytes: int):
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        super().__init__(
            IngestErrorCode.ASSET_TOO_LARGE,
            f"File exceeds {limit_bytes} bytes ({size_bytes}): {path}",
            path,
        )


class UnsupportedMediaError(IngestError):
    def __init__(self, path: str):
        super().__init__(
            IngestErrorCode.UNSUPPORTED_MEDIA, f"Unsupported media extension: {path}", path
        )


class MimeMismatchError(IngestError):
    """Content signature belongs to a different media family than the extension."""

    def __init__(self, path: str, category: str, mime_type: str):
        self.category = category
        self.mime_type = mime_type
        super().__init__(
            IngestErrorCode.MIME_MISMATCH,
            f"Content is {mime_type} but extension says {category}: {path}",
            path,
        )


class HashFailedError(IngestError):
    """Unable to compute content hash."""

    def __init__(self, path: str, reason: str):
        super().__init__(IngestErrorCode.HASH_FAILED, f"Hash failed for {path}: {reason}", path)


class IngestFailedError(IngestError):
    """I/O failure while resolving, reading or copying a file."""

    def __init__(self, path: str, reason: str):
        super().__init__(IngestErrorCode.INGEST_FAILED, f"Ingest failed for {path}: {reason}", path)


# --- Result Types ---


@dataclass(frozen=True)
class PreparedAsset:
    """A validated asset already copied into the content store."""

    original_path: str
    storage_path: str
    media_category: MediaCategory
    mime_type: str
    size_bytes: int
    sha256: str
    duration_ms: int | None = None


# --- Helpers ---


def validate_asset_size(path: str, size_bytes: int, limit_bytes: int = MAX_ASSET_BYTES) -> None:
    """Enforce 0 < size_bytes <= limit_bytes.

    Raises:
        EmptyAssetError: If the file is empty.
        AssetTooLargeError: If the file exceeds the limit.
    """
    if size_bytes <= 0:
        raise EmptyAssetError(path)
    if size_bytes > limit_bytes:
        raise AssetTooLargeError(path, size_bytes, limit_bytes)


def build_job_title(title: str | None, file_count: int) -> str:
    """Trimmed title, or a default naming the file count."""
    if title is not None and title.strip():
        return title.strip()
    return f"Capture batch ({file_count} files)"


def _remove_files(paths: Iterable[Path]) -> int:
    removed = 0
    for path in paths:
        try:
            path.unlink()
            removed += 1
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("Could not remove copied asset %s", path, exc_info=True)
    return removed


# --- Ingestor ---


class AssetIngestor:
    """Validates, fingerprints and stores input files for one batch at a time."""

    def __init__(
        self,
        content_root: str | Path = CONTENT_DIR,
        max_asset_bytes: int = MAX_ASSET_BYTES,
    ):
        self.content_root = Path(content_root)
        self.max_asset_bytes = max_asset_bytes

    def prepare(
        self,
        file_paths: Sequence[str | Path],
        batch_ms: int,
        batch_id: str,
    ) -> list[PreparedAsset]:
        """Ingest a batch of files into the content store.

        Args:
            file_paths: Non-empty list of input paths.
            batch_ms: Batch timestamp (epoch ms); drives the YYYY/MM partition
                and the file name prefix.
            batch_id: Unique id of the batch (the job id); part of every
                stored file name so concurrent batches never collide.

        Returns:
            One PreparedAsset per input, in input order.

        Raises:
            IngestError: For the first invalid file. Files copied earlier in
                the same batch have been removed.
        """
        if not file_paths:
            raise EmptyBatchError()

        copied: list[Path] = []
        prepared: list[PreparedAsset] = []
        try:
            for index, raw_path in enumerate(file_paths):
                prepared.append(self._prepare_one(raw_path, index, batch_ms, batch_id, copied))
        except Exception as e:
            removed = _remove_files(copied)
            logger.warning(
                "Ingest batch aborted at %s (%s); removed %d copied file(s)",
                getattr(e, "path", None),
                getattr(e, "error_code", type(e).__name__),
                removed,
            )
            raise

        return prepared

    def discard(self, assets: Iterable[PreparedAsset]) -> int:
        """Remove stored copies of assets whose database insert did not happen.

        Returns:
            Number of files removed.
        """
        removed = _remove_files(Path(asset.storage_path) for asset in assets)
        if removed:
            logger.info("Discarded %d stored asset(s)", removed)
        return removed

    def _prepare_one(
        self,
        raw_path: str | Path,
        index: int,
        batch_ms: int,
        batch_id: str,
        copied: list[Path],
    ) -> PreparedAsset:
        display_path = str(raw_path)

        # 1. Canonical absolute path of a regular file
        try:
            source = Path(raw_path).expanduser().resolve(strict=True)
        except FileNotFoundError as e:
            raise FileNotFoundIngestError(display_path) from e
        except (OSError, RuntimeError) as e:
            raise IngestFailedError(display_path, f"cannot resolve path: {e}") from e

        if not source.is_file():
            raise NotAFileError(str(source))

        # 2. Size bounds
        try:
            size_bytes = source.stat().st_size
        except OSError as e:
            raise IngestFailedError(str(source), f"cannot read metadata: {e}") from e
        validate_asset_size(str(source), size_bytes, self.max_asset_bytes)

        # 3. Category from extension
        category = classify_media_category(source)
        if category == MediaCategory.UNKNOWN:
            raise UnsupportedMediaError(str(source))

        # 4. MIME from content, cross-checked
        try:
            mime_type = sniff_mime_type(read_file_head(source))
        except OSError as e:
            raise IngestFailedError(str(source), f"cannot read content: {e}") from e
        if not check_mime_matches_category(category, mime_type):
            raise MimeMismatchError(str(source), category.value, mime_type)

        # 5. Fingerprint
        try:
            fingerprint = sha256_file(source)
        except OSError as e:
            raise HashFailedError(str(source), str(e)) from e

        # 6. Copy into the content store
        dest_path = content_storage_path(
            self.content_root, batch_ms, batch_id, index, source.name
        )
        if not is_within(dest_path, self.content_root):
            raise IngestFailedError(str(source), f"destination escapes content store: {dest_path}")
        if dest_path.exists():
            raise IngestFailedError(str(source), f"destination already exists: {dest_path}")

        try:
            copied_digest = atomic_copy_file(source, dest_path)
        except OSError as e:
            raise IngestFailedError(str(source), f"copy failed: {e}") from e
        copied.append(dest_path)

        if copied_digest != fingerprint:
            raise IngestFailedError(str(source), "content changed while copying")

        duration_ms = extract_duration_ms(dest_path, mime_type)

        logger.debug("Stored %s as %s (%s, %d bytes)", source, dest_path, mime_type, size_bytes)
        return PreparedAsset(
            original_path=str(source),
            storage_path=str(dest_path),
            media_category=category,
            mime_type=mime_type,
            size_bytes=size_bytes,
            sha256=fingerprint,
            duration_ms=duration_ms,
        )
