"""Capture Agent - Database engine, connection pool and unit of work.

SQLAlchemy sync engine over a file SQLite database. Every pooled connection
is configured for crash consistency on connect:
- foreign_keys=ON (cascade deletes from ingestion_job to media_asset)
- journal_mode=WAL (readers do not block the writer)
- synchronous=NORMAL
- busy_timeout (contended writes fail after a bounded wait)

pysqlite's implicit transaction handling is disabled and BEGIN is emitted
explicitly, so DDL inside a migration is transactional as well.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from app.config import DB_BUSY_TIMEOUT_MS, DB_PATH, DB_POOL_SIZE, DB_POOL_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

# Execution option read by the "begin" listener
BEGIN_MODE_OPTION = "capture_begin_mode"


def get_database_url(db_path: str | Path | None = None) -> str:
    """Get SQLite database URL.

    Args:
        db_path: Optional path override. Defaults to config.DB_PATH.

    Returns:
        SQLite connection URL string.
    """
    path = db_path if db_path is not None else DB_PATH
    return f"sqlite:///{path}"


def _install_sqlite_listeners(engine: Engine, busy_timeout_ms: int) -> None:
    """Attach connect/begin listeners that own transaction control."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Stop pysqlite from issuing BEGIN/COMMIT on its own
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys = ON")
            cursor.execute("PRAGMA journal_mode = WAL")
            cursor.execute("PRAGMA synchronous = NORMAL")
            cursor.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        mode = conn.get_execution_options().get(BEGIN_MODE_OPTION)
        if mode == "IMMEDIATE":
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


def create_db_engine(
    db_path: str | Path | None = None,
    pool_size: int = DB_POOL_SIZE,
    busy_timeout_ms: int = DB_BUSY_TIMEOUT_MS,
    pool_timeout: float = DB_POOL_TIMEOUT_SECONDS,
    echo: bool = False,
) -> Engine:
    """Create the pooled SQLAlchemy engine.

    Args:
        db_path: Optional path override for the database file.
        pool_size: Maximum number of pooled connections (no overflow).
        busy_timeout_ms: SQLite busy timeout for contended writes.
        pool_timeout: Seconds to wait for a free connection before
            sqlalchemy.exc.TimeoutError is raised.
        echo: If True, log all SQL statements.

    Returns:
        SQLAlchemy Engine instance.
    """
    url = get_database_url(db_path)
    engine = create_engine(
        url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=0,
        pool_timeout=pool_timeout,
        # Connections move between threads through the pool, never shared concurrently.
        connect_args={"check_same_thread": False, "timeout": busy_timeout_ms / 1000},
    )
    _install_sqlite_listeners(engine, busy_timeout_ms)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to the given engine.

    Args:
        engine: SQLAlchemy Engine instance.

    Returns:
        Configured sessionmaker.
    """
    # - autoflush=False: explicit flush control
    # - expire_on_commit=False: objects remain usable after commit
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class UnitOfWork:
    """One pooled connection and one transaction.

    Obtained from ConnectionPool.unit_of_work(). Nothing is persisted unless
    commit() is called; every other exit path rolls back.
    """

    def __init__(self, session: Session):
        self.session = session
        self._committed = False

    @property
    def committed(self) -> bool:
        return self._committed

    def commit(self) -> None:
        self.session.commit()
        self._committed = True

    def rollback(self) -> None:
        self.session.rollback()


class ConnectionPool:
    """Bounded pool of SQLite connections plus session/unit-of-work scopes."""

    def __init__(
        self,
        db_path: str | Path | None = None,
        pool_size: int = DB_POOL_SIZE,
        busy_timeout_ms: int = DB_BUSY_TIMEOUT_MS,
        pool_timeout: float = DB_POOL_TIMEOUT_SECONDS,
    ):
        self.db_path = Path(db_path) if db_path is not None else DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_db_engine(
            self.db_path,
            pool_size=pool_size,
            busy_timeout_ms=busy_timeout_ms,
            pool_timeout=pool_timeout,
        )
        self._session_factory = create_session_factory(self.engine)

    @contextmanager
    def unit_of_work(self) -> Iterator[UnitOfWork]:
        """Open a write transaction on one pooled connection.

        The transaction starts with BEGIN IMMEDIATE so the write lock is taken
        up front and contention is bounded by the busy timeout.

        Yields:
            UnitOfWork; call commit() to persist.
        """
        session = self._session_factory()
        uow = UnitOfWork(session)
        try:
            session.connection(execution_options={BEGIN_MODE_OPTION: "IMMEDIATE"})
            yield uow
        finally:
            try:
                if not uow.committed:
                    session.rollback()
            finally:
                session.close()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Open a read-only snapshot session. Never commits."""
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

    def migrate(self) -> list[int]:
        """Apply pending schema migrations. Returns versions applied now."""
        from app.migrations import run_migrations

        return run_migrations(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


def init_db(db_path: str | Path | None = None, **pool_kwargs) -> ConnectionPool:
    """Initialize the database: build the pool and apply migrations.

    Idempotent - safe to call on every startup.

    Args:
        db_path: Optional path override for the database file.
        **pool_kwargs: Passed through to ConnectionPool.

    Returns:
        Ready-to-use ConnectionPool.

    Raises:
        MigrationError: If a migration fails (fatal initialization error).
    """
    pool = ConnectionPool(db_path, **pool_kwargs)
    try:
        applied = pool.migrate()
    except Exception:
        pool.dispose()
        raise
    if applied:
        logger.info("Database %s migrated to versions %s", pool.db_path, applied)
    return pool
