"""Capture Agent - Configuration constants.

Plain module-level configuration. No external config libraries.
Paths are relative to the repository root unless CAPTURE_DATA_DIR is set.
"""

import os
from pathlib import Path

# Repository root (parent of app/)
REPO_ROOT = Path(__file__).parent.parent.resolve()


def _get_data_dir() -> Path:
    """Get the data directory from environment or use default.

    Environment variable CAPTURE_DATA_DIR allows relocating all state
    (database and content store), mainly for tests and packaged installs.

    Returns:
        Absolute data directory path.
    """
    env_val = os.environ.get("CAPTURE_DATA_DIR")
    if env_val:
        return Path(env_val).expanduser().resolve()
    return REPO_ROOT / "data"


def _get_positive_int(name: str, default: int) -> int:
    """Read a positive integer from the environment.

    Args:
        name: Environment variable name.
        default: Value used when the variable is unset or invalid.

    Returns:
        The parsed value, or default.
    """
    env_val = os.environ.get(name)
    if env_val:
        try:
            value = int(env_val)
            if value > 0:
                return value
        except ValueError:
            pass
    return default


# Data directories
DATA_DIR = _get_data_dir()
CONTENT_DIR = DATA_DIR / "content"

# Database path
DB_PATH = DATA_DIR / "capture_agent.db"

# Hard cap on a single asset (2 GiB). Bounds hashing/copy cost and storage growth.
MAX_ASSET_BYTES = 2 * 1024 * 1024 * 1024

# Streaming chunk size for hashing and copying
HASH_CHUNK_SIZE = 65536  # 64KB

# Connection pool (small fixed size, no overflow)
DB_POOL_SIZE = _get_positive_int("CAPTURE_DB_POOL_SIZE", 8)
DB_POOL_TIMEOUT_SECONDS = 30

# Contended writes fail after this wait instead of blocking indefinitely
DB_BUSY_TIMEOUT_MS = _get_positive_int("CAPTURE_DB_BUSY_TIMEOUT_MS", 5000)

# Seeded settings defaults (written once into the settings row, never enforced)
DEFAULT_SUMMARY_MODEL = "gemini-2.5-flash"
DEFAULT_PUBLISHER_CLI = "obsidian"
DEFAULT_WRITE_MODE = "cli_fallback"

# Notes are published into this folder inside the vault
NOTES_SUBDIR = "AI Captures"

# Credential lookup (platform credential store first, then environment)
CREDENTIAL_SERVICE_NAME = "capture-agent"
CREDENTIAL_ENTRY_NAME = "gemini_api_key"
CREDENTIAL_ENV_VAR = "GEMINI_API_KEY"

# Summarizer request settings
SUMMARY_TIMEOUT_SECONDS = 60.0
SUMMARY_TEMPERATURE = 0.2
SUMMARY_MAX_OUTPUT_TOKENS = 512

# External publisher CLI is killed after this many seconds
PUBLISHER_CLI_TIMEOUT_SECONDS = 60
