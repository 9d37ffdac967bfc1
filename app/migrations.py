"""Capture Agent - Versioned schema migrations.

Each Migration is applied exactly once, in version order, inside its own
transaction together with its schema_migrations ledger row. Versions already
in the ledger are skipped, so run_migrations() is safe on every startup.

After all migrations succeed the settings singleton is seeded if missing
(insert-if-missing, never overwrite).

Single-process assumption: no cross-process migration coordination beyond
SQLite's own write lock.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum

from sqlalchemy import Engine, text
from sqlalchemy.exc import SQLAlchemyError

from app.config import DEFAULT_PUBLISHER_CLI, DEFAULT_SUMMARY_MODEL, DEFAULT_WRITE_MODE
from app.models import now_ms

logger = logging.getLogger(__name__)


class MigrationErrorCode(StrEnum):
    MIGRATION_FAILED = "MIGRATION_FAILED"
    MIGRATION_ORDER = "MIGRATION_ORDER"


class MigrationError(Exception):
    """A migration could not be applied or recorded. Fatal at startup."""

    def __init__(
        self,
        version: int,
        name: str,
        reason: str,
        error_code: str = MigrationErrorCode.MIGRATION_FAILED,
    ):
        self.version = version
        self.name = name
        self.error_code = error_code
        self.message = f"migration {version} ({name}) failed: {reason}"
        super().__init__(f"{error_code}: {self.message}")


@dataclass(frozen=True)
class Migration:
    """One schema version: a batch of statements applied atomically."""

    version: int
    name: str
    statements: tuple[str, ...]


LEDGER_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    applied_at INTEGER NOT NULL
)
"""

MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version=1,
        name="init_schema",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS ingestion_job (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS media_asset (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT NOT NULL REFERENCES ingestion_job(id) ON DELETE CASCADE,
                original_path TEXT NOT NULL,
                media_type TEXT NOT NULL,
                created_at INTEGER NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS settings (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                vault_path TEXT NOT NULL,
                publisher_cli_path TEXT NOT NULL,
                summary_model TEXT NOT NULL,
                write_mode TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_ingestion_job_status "
            "ON ingestion_job(status, updated_at DESC)",
            "CREATE INDEX IF NOT EXISTS idx_media_asset_job ON media_asset(job_id)",
            # Full-text scaffolding; not read or written by the ingestion core
            """
            CREATE VIRTUAL TABLE IF NOT EXISTS extraction_fts USING fts5(
                job_id UNINDEXED,
                content
            )
            """,
        ),
    ),
    Migration(
        version=2,
        name="asset_integrity_columns",
        statements=(
            "ALTER TABLE media_asset ADD COLUMN storage_path TEXT NOT NULL DEFAULT ''",
            "ALTER TABLE media_asset ADD COLUMN mime_type TEXT NOT NULL "
            "DEFAULT 'application/octet-stream'",
            "ALTER TABLE media_asset ADD COLUMN size_bytes INTEGER NOT NULL DEFAULT 0",
            "ALTER TABLE media_asset ADD COLUMN sha256 TEXT NOT NULL DEFAULT ''",
            "ALTER TABLE media_asset ADD COLUMN duration_ms INTEGER",
            "CREATE INDEX IF NOT EXISTS idx_media_asset_sha256 ON media_asset(sha256)",
        ),
    ),
)


def _check_ordering(migrations: Sequence[Migration]) -> None:
    previous = 0
    for migration in migrations:
        if migration.version <= previous:
            raise MigrationError(
                migration.version,
                migration.name,
                f"version must be greater than {previous}",
                error_code=MigrationErrorCode.MIGRATION_ORDER,
            )
        previous = migration.version


def applied_versions(engine: Engine) -> set[int]:
    """Read the set of versions recorded in the ledger."""
    with engine.connect() as conn:
        rows = conn.execute(text("SELECT version FROM schema_migrations"))
        return {int(row[0]) for row in rows}


def run_migrations(
    engine: Engine,
    migrations: Sequence[Migration] = MIGRATIONS,
    clock: Callable[[], int] = now_ms,
) -> list[int]:
    """Apply every migration not yet in the ledger.

    Args:
        engine: Engine created by app.db.create_db_engine().
        migrations: Ordered migrations (strictly increasing versions).
        clock: Epoch-milliseconds clock for applied_at.

    Returns:
        Versions applied by this call (empty when already up to date).

    Raises:
        MigrationError: On bad ordering or when a migration fails. The failing
            migration's transaction is rolled back and later ones are not tried.
    """
    _check_ordering(migrations)

    with engine.begin() as conn:
        conn.execute(text(LEDGER_DDL))

    already_applied = applied_versions(engine)
    newly_applied: list[int] = []

    for migration in migrations:
        if migration.version in already_applied:
            logger.debug("Migration %d (%s) already applied", migration.version, migration.name)
            continue

        try:
            with engine.begin() as conn:
                for statement in migration.statements:
                    conn.execute(text(statement))
                conn.execute(
                    text(
                        "INSERT INTO schema_migrations (version, name, applied_at) "
                        "VALUES (:version, :name, :applied_at)"
                    ),
                    {"version": migration.version, "name": migration.name, "applied_at": clock()},
                )
        except SQLAlchemyError as e:
            logger.error("Migration %d (%s) failed", migration.version, migration.name)
            raise MigrationError(migration.version, migration.name, str(e)) from e

        logger.info("Applied migration %d (%s)", migration.version, migration.name)
        newly_applied.append(migration.version)

    seed_settings(engine)
    return newly_applied


def seed_settings(engine: Engine) -> None:
    """Insert the settings singleton with seeded defaults if it is absent."""
    with engine.begin() as conn:
        conn.execute(
            text(
                "INSERT OR IGNORE INTO settings "
                "(id, vault_path, publisher_cli_path, summary_model, write_mode) "
                "VALUES (1, '', :cli_path, :model, :write_mode)"
            ),
            {
                "cli_path": DEFAULT_PUBLISHER_CLI,
                "model": DEFAULT_SUMMARY_MODEL,
                "write_mode": DEFAULT_WRITE_MODE,
            },
        )
