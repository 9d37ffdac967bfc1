"""Capture Agent - Failpoint injection for resilience testing.

Provides deterministic crash injection for testing power-failure scenarios.
Used to verify atomic publish and the job/asset insert transaction.

Safety gate: Failpoints are only active when CAPTURE_ENABLE_FAILPOINTS=1.
The default is a complete no-op.

Environment variables:
- CAPTURE_ENABLE_FAILPOINTS: Set to "1" to enable failpoint system (default: disabled)
- CAPTURE_FAILPOINT: Name of the failpoint to trigger (e.g., "JOB_INSERT_AFTER_JOB_ROW")
- CAPTURE_FAILPOINT_EXIT_CODE: Exit code to use when crashing (default: 42)

Known failpoints:
    ATOMIC_WRITE_AFTER_TMP_WRITE
    ATOMIC_WRITE_AFTER_FSYNC_BEFORE_RENAME
    ATOMIC_COPY_AFTER_TMP_WRITE
    ATOMIC_COPY_AFTER_FSYNC_BEFORE_RENAME
    JOB_INSERT_AFTER_JOB_ROW
"""

from __future__ import annotations

import os


def maybe_fail(point: str) -> None:
    """Crash the process if the named failpoint is armed.

    Uses os._exit() so that finally blocks, context managers and atexit
    hooks do not run, the same as a power loss.

    Args:
        point: The failpoint name to check. A "FAILPOINT_" prefix is ignored.
    """
    target = get_active_failpoint()
    if target is None:
        return

    if _normalize(point) != target:
        return

    try:
        exit_code = int(os.environ.get("CAPTURE_FAILPOINT_EXIT_CODE", "42"))
    except ValueError:
        exit_code = 42

    os._exit(exit_code)


def is_failpoint_enabled() -> bool:
    """Check if the failpoint system is enabled.

    Returns:
        True if CAPTURE_ENABLE_FAILPOINTS=1, False otherwise.
    """
    return os.environ.get("CAPTURE_ENABLE_FAILPOINTS") == "1"


def get_active_failpoint() -> str | None:
    """Get the currently armed failpoint name, if any.

    Returns:
        The normalized failpoint name or None.
    """
    if not is_failpoint_enabled():
        return None
    target = os.environ.get("CAPTURE_FAILPOINT", "")
    if not target:
        return None
    return _normalize(target)


def _normalize(name: str) -> str:
    name = name.upper()
    if name.startswith("FAILPOINT_"):
        name = name[len("FAILPOINT_") :]
    return name
