"""Capture Agent - Job repository and status state machine.

JobRepository is the transactional boundary of the core:
- insert_job_with_assets(): job + all assets in one transaction
- update_status(): the only writer of ingestion_job.status, gated by
  ALLOWED_TRANSITIONS
- list_jobs() / find_job_with_assets(): read snapshots
- get_settings() / save_settings(): the settings singleton

Transition graph:
    queued     -> processing, cancelled, failed
    processing -> completed, failed, cancelled
    failed     -> queued
    cancelled  -> queued
    completed  -> (terminal)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import StrEnum

from sqlalchemy import func, select

from app.db import ConnectionPool
from app.ingestion import PreparedAsset
from app.models import AppSettings, IngestionJob, MediaAsset, now_ms
from app.schemas import JobAsset, JobDetails, JobSummary, SettingsPayload
from app.utils.failpoints import maybe_fail

logger = logging.getLogger(__name__)


class JobStatus(StrEnum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset(
        {JobStatus.PROCESSING, JobStatus.CANCELLED, JobStatus.FAILED}
    ),
    JobStatus.PROCESSING: frozenset(
        {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
    ),
    JobStatus.FAILED: frozenset({JobStatus.QUEUED}),
    JobStatus.CANCELLED: frozenset({JobStatus.QUEUED}),
    JobStatus.COMPLETED: frozenset(),
}


class TransitionResult(StrEnum):
    """Outcome of update_status(). A missing job is not an error."""

    UPDATED = "updated"
    NOT_FOUND = "not_found"


class InvalidTransition(Exception):
    """Requested status is not reachable from the current one."""

    error_code = "INVALID_TRANSITION"

    def __init__(self, current: str, requested: str):
        self.current = str(current)
        self.requested = str(requested)
        self.message = f"cannot move job from '{self.current}' to '{self.requested}'"
        super().__init__(f"{self.error_code}: {self.message}")


def parse_status(value: str) -> JobStatus:
    """Convert a string to JobStatus.

    Raises:
        ValueError: If value is not one of the five statuses.
    """
    try:
        return JobStatus(value)
    except ValueError:
        raise ValueError(f"unknown job status: {value!r}") from None


def can_transition(current: JobStatus | str, requested: JobStatus | str) -> bool:
    """Check a (current, requested) pair against ALLOWED_TRANSITIONS."""
    return parse_status(requested) in ALLOWED_TRANSITIONS[parse_status(current)]


class JobRepository:
    """Persistence for jobs, assets and settings over a ConnectionPool."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    # --- Writes ---

    def insert_job_with_assets(
        self,
        job_id: str,
        title: str,
        initial_status: JobStatus | str,
        assets: Sequence[PreparedAsset],
        now: int,
    ) -> None:
        """Insert one job and all of its assets atomically.

        Either the job and every asset row exist afterwards, or none do.

        Args:
            job_id: New job identifier.
            title: Non-empty job title.
            initial_status: Status of the new job.
            assets: Prepared assets (at least one).
            now: Epoch ms used for created_at/updated_at.

        Raises:
            ValueError: If title or assets are empty.
            sqlalchemy.exc.SQLAlchemyError: If any insert or the commit fails.
        """
        if not title.strip():
            raise ValueError("job title must not be empty")
        if not assets:
            raise ValueError("a job needs at least one asset")
        status = parse_status(initial_status)

        with self.pool.unit_of_work() as uow:
            session = uow.session
            session.add(
                IngestionJob(
                    id=job_id,
                    title=title,
                    status=status.value,
                    created_at=now,
                    updated_at=now,
                )
            )
            session.flush()

            maybe_fail("JOB_INSERT_AFTER_JOB_ROW")

            for asset in assets:
                session.add(
                    MediaAsset(
                        job_id=job_id,
                        original_path=asset.original_path,
                        storage_path=asset.storage_path,
                        media_type=asset.media_category.value,
                        mime_type=asset.mime_type,
                        size_bytes=asset.size_bytes,
                        sha256=asset.sha256,
                        duration_ms=asset.duration_ms,
                        created_at=now,
                    )
                )
            session.flush()
            uow.commit()

        logger.info("Created job %s (%s) with %d asset(s)", job_id, status, len(assets))

    def update_status(
        self,
        job_id: str,
        next_status: JobStatus | str,
        now: int | None = None,
    ) -> TransitionResult:
        """Move a job to next_status if the transition table allows it.

        Args:
            job_id: Job identifier.
            next_status: Requested status.
            now: Epoch ms for updated_at (defaults to the current time).

        Returns:
            UPDATED, or NOT_FOUND when the job does not exist.

        Raises:
            InvalidTransition: If the move is not allowed. Nothing is changed.
            ValueError: If next_status is not a known status.
        """
        requested = parse_status(next_status)
        timestamp = now if now is not None else now_ms()

        with self.pool.unit_of_work() as uow:
            job = uow.session.get(IngestionJob, job_id)
            if job is None:
                return TransitionResult.NOT_FOUND

            current = parse_status(job.status)
            if requested not in ALLOWED_TRANSITIONS[current]:
                raise InvalidTransition(current, requested)

            job.status = requested.value
            job.updated_at = max(timestamp, job.created_at)
            uow.commit()

        logger.info("Job %s: %s -> %s", job_id, current, requested)
        return TransitionResult.UPDATED

    # --- Reads ---

    def list_jobs(self) -> list[JobSummary]:
        """All jobs, most recently updated first, with live asset counts."""
        asset_count = func.count(MediaAsset.id).label("asset_count")
        stmt = (
            select(IngestionJob, asset_count)
            .outerjoin(MediaAsset, MediaAsset.job_id == IngestionJob.id)
            .group_by(IngestionJob.id)
            .order_by(
                IngestionJob.updated_at.desc(),
                IngestionJob.created_at.desc(),
                IngestionJob.id.desc(),
            )
        )
        with self.pool.session() as session:
            rows = session.execute(stmt).all()
            return [_summary(job, count) for job, count in rows]

    def find_job_with_assets(self, job_id: str) -> JobDetails | None:
        """The job and its assets (ordered by insertion), or None if unknown."""
        with self.pool.session() as session:
            job = session.get(IngestionJob, job_id)
            if job is None:
                return None
            assets = (
                session.execute(
                    select(MediaAsset).where(MediaAsset.job_id == job_id).order_by(MediaAsset.id)
                )
                .scalars()
                .all()
            )
            return JobDetails(
                job=_summary(job, len(assets)),
                assets=[JobAsset.model_validate(asset) for asset in assets],
            )

    # --- Settings ---

    def get_settings(self) -> SettingsPayload:
        """Load the settings singleton.

        Raises:
            LookupError: If the row is missing (migrations not run).
        """
        with self.pool.session() as session:
            row = session.get(AppSettings, 1)
            if row is None:
                raise LookupError("settings row is missing; run migrations first")
            return SettingsPayload.model_validate(row)

    def save_settings(self, payload: SettingsPayload) -> SettingsPayload:
        """Overwrite the settings singleton and return what was stored."""
        with self.pool.unit_of_work() as uow:
            row = uow.session.get(AppSettings, 1)
            if row is None:
                row = AppSettings(id=1)
                uow.session.add(row)
            row.vault_path = payload.vault_path
            row.publisher_cli_path = payload.publisher_cli_path
            row.summary_model = payload.summary_model
            row.write_mode = payload.write_mode.value
            uow.commit()
            saved = SettingsPayload.model_validate(row)

        logger.info("Settings saved (write_mode=%s)", saved.write_mode)
        return saved


def _summary(job: IngestionJob, asset_count: int) -> JobSummary:
    return JobSummary(
        id=job.id,
        title=job.title,
        status=job.status,
        created_at=job.created_at,
        updated_at=job.updated_at,
        asset_count=int(asset_count),
    )
