"""Capture Agent - Note publisher.

Writes a rendered markdown note into the knowledge-base vault, either through
the external publisher CLI or directly on the filesystem, depending on the
configured WriteMode:

    filesystem_only -> direct write              (method "filesystem")
    cli_only        -> CLI, failure is an error  (method "cli")
    cli_fallback    -> CLI, else direct write    (method "cli" / "filesystem_fallback")

Notes land in <vault>/<NOTES_SUBDIR>/<sanitized title>.md. Direct writes go
through atomic_write_text and must stay inside that folder.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from app.config import DEFAULT_PUBLISHER_CLI, NOTES_SUBDIR, PUBLISHER_CLI_TIMEOUT_SECONDS
from app.schemas import SettingsPayload, WriteMode
from app.utils.atomic_io import atomic_write_text
from app.utils.paths import is_within

logger = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]


class PublishErrorCode(StrEnum):
    VAULT_NOT_FOUND = "VAULT_NOT_FOUND"
    CLI_FAILED = "CLI_FAILED"
    WRITE_FAILED = "WRITE_FAILED"
    PATH_ESCAPE = "PATH_ESCAPE"


class PublishError(Exception):
    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(f"{error_code}: {message}")


class PublishMethod(StrEnum):
    CLI = "cli"
    FILESYSTEM = "filesystem"
    FILESYSTEM_FALLBACK = "filesystem_fallback"


@dataclass(frozen=True)
class PublishResult:
    note_path: str
    method: str


@dataclass(frozen=True)
class _PublishRequest:
    settings: SettingsPayload
    vault: Path
    title: str
    markdown: str
    runner: Runner


# --- Vault resolution ---


def _app_config_candidates() -> list[Path]:
    candidates: list[Path] = []
    appdata = os.environ.get("APPDATA")
    if appdata:
        candidates.append(Path(appdata) / "obsidian" / "obsidian.json")
    if sys.platform == "darwin":
        candidates.append(
            Path.home() / "Library" / "Application Support" / "obsidian" / "obsidian.json"
        )
    xdg = os.environ.get("XDG_CONFIG_HOME")
    config_home = Path(xdg) if xdg else Path.home() / ".config"
    candidates.append(config_home / "obsidian" / "obsidian.json")
    return candidates


def detect_vault_from_app_config(config_path: str | Path | None = None) -> Path | None:
    """Read the vault location from the desktop app's obsidian.json.

    The file maps vault ids to {"path": ..., "open": bool}. An open vault is
    preferred; otherwise the first listed one is used.

    Args:
        config_path: Explicit file to read. Platform locations are searched
            when omitted.

    Returns:
        The vault directory, or None if nothing usable was found.
    """
    paths = [Path(config_path)] if config_path is not None else _app_config_candidates()
    for path in paths:
        try:
            parsed = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            continue

        vaults = parsed.get("vaults") if isinstance(parsed, dict) else None
        if not isinstance(vaults, dict):
            continue
        entries = [v for v in vaults.values() if isinstance(v, dict) and v.get("path")]
        if not entries:
            continue

        chosen = next((v for v in entries if v.get("open")), entries[0])
        logger.debug("Detected vault %s from %s", chosen["path"], path)
        return Path(chosen["path"])
    return None


def resolve_vault_path(settings: SettingsPayload) -> Path:
    """Configured vault path, or the auto-detected one.

    Raises:
        PublishError: VAULT_NOT_FOUND if neither is available.
    """
    if settings.vault_path.strip():
        return Path(settings.vault_path.strip()).expanduser()
    detected = detect_vault_from_app_config()
    if detected is None:
        raise PublishError(PublishErrorCode.VAULT_NOT_FOUND, "could not detect vault path")
    return detected


def note_file_name(title: str) -> str:
    """File name for a note title.

    ASCII alphanumerics and "-_. " are kept, everything else becomes "_";
    the result is trimmed and spaces become "-".
    """
    kept = "".join(
        ch if (ch.isascii() and ch.isalnum()) or ch in "-_. " else "_" for ch in title
    )
    stem = kept.strip().replace(" ", "-") or "untitled"
    return f"{stem}.md"


def expected_note_path(vault: Path, title: str) -> Path:
    return vault / NOTES_SUBDIR / note_file_name(title)


# --- Writers ---


def write_note_direct(vault: Path, title: str, markdown: str) -> Path:
    """Atomically write the note file inside the vault.

    Returns:
        Canonical path of the written note.

    Raises:
        PublishError: VAULT_NOT_FOUND, PATH_ESCAPE or WRITE_FAILED.
    """
    try:
        canonical_vault = Path(vault).resolve(strict=True)
    except OSError as e:
        raise PublishError(
            PublishErrorCode.VAULT_NOT_FOUND, f"vault path is not accessible: {vault} ({e})"
        ) from e
    if not canonical_vault.is_dir():
        raise PublishError(PublishErrorCode.VAULT_NOT_FOUND, f"vault is not a directory: {vault}")

    final_path = canonical_vault / NOTES_SUBDIR / note_file_name(title)
    # is_within resolves symlinks, so a linked captures folder is checked too
    if not is_within(final_path, canonical_vault):
        raise PublishError(PublishErrorCode.PATH_ESCAPE, f"note path escapes vault: {final_path}")

    try:
        atomic_write_text(final_path, markdown)
    except OSError as e:
        raise PublishError(PublishErrorCode.WRITE_FAILED, f"failed to write note: {e}") from e

    return final_path.resolve()


def run_publisher_cli(
    settings: SettingsPayload,
    vault: Path,
    title: str,
    markdown: str,
    runner: Runner = subprocess.run,
) -> None:
    """Create the note through the external publisher CLI.

    Raises:
        PublishError: CLI_FAILED if the executable cannot be run or exits non-zero.
    """
    cli_path = settings.publisher_cli_path.strip() or DEFAULT_PUBLISHER_CLI
    command = [
        cli_path,
        "note",
        "create",
        "--vault",
        str(vault),
        "--name",
        title,
        "--content",
        markdown,
    ]
    try:
        result = runner(
            command,
            capture_output=True,
            text=True,
            timeout=PUBLISHER_CLI_TIMEOUT_SECONDS,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as e:
        raise PublishError(
            PublishErrorCode.CLI_FAILED, f"failed to execute publisher cli: {e}"
        ) from e

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        raise PublishError(
            PublishErrorCode.CLI_FAILED,
            f"publisher cli exited with {result.returncode}: {stderr}",
        )


# --- Write mode handlers ---


def _publish_filesystem_only(request: _PublishRequest) -> PublishResult:
    note_path = write_note_direct(request.vault, request.title, request.markdown)
    return PublishResult(note_path=str(note_path), method=PublishMethod.FILESYSTEM)


def _publish_cli_only(request: _PublishRequest) -> PublishResult:
    run_publisher_cli(
        request.settings, request.vault, request.title, request.markdown, request.runner
    )
    note_path = expected_note_path(request.vault, request.title)
    return PublishResult(note_path=str(note_path), method=PublishMethod.CLI)


def _publish_cli_fallback(request: _PublishRequest) -> PublishResult:
    try:
        return _publish_cli_only(request)
    except PublishError as e:
        logger.warning("Publisher CLI failed, writing note directly: %s", e.message)

    note_path = write_note_direct(request.vault, request.title, request.markdown)
    return PublishResult(note_path=str(note_path), method=PublishMethod.FILESYSTEM_FALLBACK)


WRITE_MODE_HANDLERS: dict[WriteMode, Callable[[_PublishRequest], PublishResult]] = {
    WriteMode.FILESYSTEM_ONLY: _publish_filesystem_only,
    WriteMode.CLI_ONLY: _publish_cli_only,
    WriteMode.CLI_FALLBACK: _publish_cli_fallback,
}


def publish_note(
    settings: SettingsPayload,
    title: str,
    markdown: str,
    runner: Runner = subprocess.run,
) -> PublishResult:
    """Publish a note according to settings.write_mode.

    Args:
        settings: Current settings (vault, CLI path, write mode).
        title: Note title; also the source of the file name.
        markdown: Rendered note body.
        runner: subprocess.run compatible callable used for the CLI.

    Returns:
        PublishResult with the note path and the method that succeeded.

    Raises:
        PublishError: If the vault cannot be resolved or the write fails.
    """
    vault = resolve_vault_path(settings)
    handler = WRITE_MODE_HANDLERS[WriteMode(settings.write_mode)]
    result = handler(_PublishRequest(settings, vault, title, markdown, runner))
    logger.info("Published note %s via %s", result.note_path, result.method)
    return result
