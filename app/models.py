"""Capture Agent - SQLAlchemy ORM models.

Tables (created by app.migrations, never by metadata.create_all):
1. ingestion_job
2. media_asset
3. settings
4. schema_migrations

Timestamps are epoch milliseconds stored as INTEGER.
"""

import time

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def now_ms() -> int:
    """Return current time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


class IngestionJob(Base):
    """One ingestion batch with a lifecycle status.

    Status is only ever written through JobRepository.update_status().
    """

    __tablename__ = "ingestion_job"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[int] = mapped_column(Integer, nullable=False)

    # Job exclusively owns its assets; the FK cascades deletes at the DB level
    assets: Mapped[list["MediaAsset"]] = relationship(
        back_populates="job",
        order_by="MediaAsset.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class MediaAsset(Base):
    """One verified file belonging to a job.

    storage_path is authoritative (inside the content store);
    original_path is informational only.
    """

    __tablename__ = "media_asset"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(
        Text, ForeignKey("ingestion_job.id", ondelete="CASCADE"), nullable=False
    )
    original_path: Mapped[str] = mapped_column(Text, nullable=False)
    media_type: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False)

    # Integrity columns (migration 2)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False, default="")
    mime_type: Mapped[str] = mapped_column(Text, nullable=False, default="application/octet-stream")
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    job: Mapped[IngestionJob] = relationship(back_populates="assets")


class AppSettings(Base):
    """Process-wide settings singleton (always id = 1)."""

    __tablename__ = "settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    vault_path: Mapped[str] = mapped_column(Text, nullable=False)
    publisher_cli_path: Mapped[str] = mapped_column(Text, nullable=False)
    summary_model: Mapped[str] = mapped_column(Text, nullable=False)
    write_mode: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (CheckConstraint("id = 1", name="ck_settings_singleton"),)


class SchemaMigration(Base):
    """Append-only ledger of applied schema versions."""

    __tablename__ = "schema_migrations"

    version: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    applied_at: Mapped[int] = mapped_column(Integer, nullable=False)
