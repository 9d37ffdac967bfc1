"""Capture Agent - Media classification utilities.

Two independent axes, each a pure function:
- classify_media_category(): extension -> MediaCategory
- sniff_mime_type(): leading bytes -> MIME type

check_mime_matches_category() is the single rule combining them.

Duration extraction is best-effort using only stdlib (wave module for WAV files).
No audio/video/image decoding happens here.
"""

import wave
from enum import StrEnum
from pathlib import Path

GENERIC_MIME = "application/octet-stream"

# Enough bytes for every signature below (ftyp brand ends at offset 12)
SNIFF_HEAD_BYTES = 64


class MediaCategory(StrEnum):
    """Media category derived from file extension."""

    AUDIO = "audio"
    VIDEO = "video"
    IMAGE = "image"
    UNKNOWN = "unknown"


EXTENSION_CATEGORIES: dict[str, MediaCategory] = {
    ".mp3": MediaCategory.AUDIO,
    ".wav": MediaCategory.AUDIO,
    ".m4a": MediaCategory.AUDIO,
    ".mp4": MediaCategory.VIDEO,
    ".jpg": MediaCategory.IMAGE,
    ".jpeg": MediaCategory.IMAGE,
    ".png": MediaCategory.IMAGE,
    ".heif": MediaCategory.IMAGE,
}

# ISO base media file format major brands (bytes 8..12 after "ftyp")
_FTYP_AUDIO_BRANDS = frozenset({b"M4A ", b"M4B ", b"M4P ", b"F4A "})
_FTYP_IMAGE_BRANDS = frozenset(
    {b"heic", b"heix", b"hevc", b"hevx", b"heim", b"heis", b"mif1", b"msf1"}
)

# Containers that legitimately carry more than one category
_SHARED_CONTAINERS: dict[str, frozenset[MediaCategory]] = {
    "video/mp4": frozenset({MediaCategory.VIDEO, MediaCategory.AUDIO}),
}


def classify_media_category(path: str | Path) -> MediaCategory:
    """Classify a file by its extension (case-insensitive).

    Args:
        path: File path or name.

    Returns:
        The MediaCategory, UNKNOWN for unsupported extensions.
    """
    suffix = Path(path).suffix.lower()
    return EXTENSION_CATEGORIES.get(suffix, MediaCategory.UNKNOWN)


def sniff_mime_type(head: bytes) -> str:
    """Detect a MIME type from the leading bytes of a file.

    Args:
        head: First bytes of the file (SNIFF_HEAD_BYTES is enough).

    Returns:
        Detected MIME type, or GENERIC_MIME when no signature matches.
    """
    if head.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if head[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"

    if head.startswith(b"RIFF") and len(head) >= 12:
        form = head[8:12]
        if form == b"WAVE":
            return "audio/wav"
        if form == b"AVI ":
            return "video/x-msvideo"
        if form == b"WEBP":
            return "image/webp"

    if len(head) >= 12 and head[4:8] == b"ftyp":
        brand = head[8:12]
        if brand in _FTYP_AUDIO_BRANDS:
            return "audio/mp4"
        if brand in _FTYP_IMAGE_BRANDS:
            return "image/heif"
        if brand == b"avif":
            return "image/avif"
        if brand == b"qt  ":
            return "video/quicktime"
        return "video/mp4"

    if head.startswith(b"\x1a\x45\xdf\xa3"):
        return "video/x-matroska"
    if head.startswith(b"ID3"):
        return "audio/mpeg"
    if head.startswith(b"OggS"):
        return "audio/ogg"
    if head.startswith(b"fLaC"):
        return "audio/flac"
    if head.startswith(b"%PDF-"):
        return "application/pdf"
    if head.startswith(b"PK\x03\x04"):
        return "application/zip"

    # MPEG audio frame sync: 11 set bits (checked after JPEG, which starts 0xFFD8)
    if len(head) >= 2 and head[0] == 0xFF and (head[1] & 0xE0) == 0xE0:
        return "audio/mpeg"

    return GENERIC_MIME


def read_file_head(path: str | Path, size: int = SNIFF_HEAD_BYTES) -> bytes:
    """Read the first bytes of a file for sniffing.

    Raises:
        OSError: If the file cannot be read.
    """
    with open(path, "rb") as f:
        return f.read(size)


def mime_family(mime_type: str) -> str:
    """Top-level MIME family ("image/png" -> "image")."""
    return mime_type.split("/", 1)[0].lower()


def check_mime_matches_category(category: MediaCategory, mime_type: str) -> bool:
    """Cross-check sniffed content against the extension-derived category.

    An undetected (generic) signature passes through. A detected signature
    must belong to the category's family, or be a container shared with it.

    Args:
        category: Category derived from the extension.
        mime_type: MIME type from sniff_mime_type().

    Returns:
        True if the combination is acceptable.
    """
    if category == MediaCategory.UNKNOWN:
        return False
    if mime_type == GENERIC_MIME:
        return True
    if category in _SHARED_CONTAINERS.get(mime_type, frozenset()):
        return True
    return mime_family(mime_type) == category.value


def extract_duration_ms(path: str | Path, mime_type: str) -> int | None:
    """Best-effort duration of an asset in milliseconds.

    Only WAV is supported (stdlib wave module). Never raises.

    Args:
        path: Path to the stored asset.
        mime_type: Sniffed MIME type of the asset.

    Returns:
        Duration in milliseconds, or None if unavailable.
    """
    if mime_type != "audio/wav":
        return None
    try:
        with wave.open(str(path), "rb") as wf:
            sample_rate = wf.getframerate()
            n_frames = wf.getnframes()
    except (wave.Error, EOFError, OSError):
        return None
    if sample_rate <= 0:
        return None
    return int(n_frames * 1000 / sample_rate)


__all__ = [
    "EXTENSION_CATEGORIES",
    "GENERIC_MIME",
    "MediaCategory",
    "check_mime_matches_category",
    "classify_media_category",
    "extract_duration_ms",
    "mime_family",
    "read_file_head",
    "sniff_mime_type",
]
