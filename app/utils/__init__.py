"""Capture Agent - Utility modules."""

from app.utils.atomic_io import atomic_copy_file, atomic_write_bytes, atomic_write_text
from app.utils.hashing import sha256_bytes, sha256_file
from app.utils.media import (
    MediaCategory,
    check_mime_matches_category,
    classify_media_category,
    sniff_mime_type,
)
from app.utils.paths import content_storage_path, sanitize_file_name

__all__ = [
    # atomic_io
    "atomic_copy_file",
    "atomic_write_bytes",
    "atomic_write_text",
    # hashing
    "sha256_file",
    "sha256_bytes",
    # media
    "MediaCategory",
    "classify_media_category",
    "sniff_mime_type",
    "check_mime_matches_category",
    # paths
    "content_storage_path",
    "sanitize_file_name",
]
