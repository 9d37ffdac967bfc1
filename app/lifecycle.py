"""Capture Agent - Job lifecycle facade.

JobLifecycle is the single entry point used by the dispatch layer:
- enqueue(): ingest a batch, then insert the job and its assets (queued)
- list_jobs() / get_job(): read snapshots
- retry() / cancel() / transition(): status changes via the state machine
- preview_note() / publish_job(): render and publish the job's note

The clock and id generator are injected so tests can pin them.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Protocol

from app.ingestion import AssetIngestor, EmptyBatchError, build_job_title
from app.integrations.publisher import PublishResult
from app.integrations.summarizer import Summarizer
from app.jobs import JobRepository, JobStatus, TransitionResult
from app.models import now_ms
from app.notes import build_note_markdown, source_file_names
from app.schemas import JobDetails, JobSummary, SettingsPayload

logger = logging.getLogger(__name__)

Publisher = Callable[[SettingsPayload, str, str], PublishResult]


class IdGenerator(Protocol):
    def next(self) -> str: ...


# Shared by every generator so ids stay unique for the life of the process
_sequence = itertools.count()
_sequence_lock = threading.Lock()


class SequentialIdGenerator:
    """Produces <prefix>-<ms>-<seq> from a process-wide sequence."""

    def __init__(self, clock: Callable[[], int] = now_ms, prefix: str = "job"):
        self._clock = clock
        self._prefix = prefix

    def next(self) -> str:
        with _sequence_lock:
            seq = next(_sequence)
        return f"{self._prefix}-{self._clock()}-{seq}"


class InvalidJobIdError(ValueError):
    """A blank or whitespace-only job id was supplied."""


def _require_job_id(job_id: str) -> str:
    trimmed = job_id.strip()
    if not trimmed:
        raise InvalidJobIdError("job_id must not be empty")
    return trimmed


class JobLifecycle:
    def __init__(
        self,
        repository: JobRepository,
        ingestor: AssetIngestor,
        id_generator: IdGenerator | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.repository = repository
        self.ingestor = ingestor
        self.clock = clock
        self.id_generator = id_generator or SequentialIdGenerator(clock)

    # --- Ingestion ---

    def enqueue(self, file_paths: Sequence[str | Path], title: str | None = None) -> str:
        """Create a queued job from local files.

        Args:
            file_paths: Non-empty list of input paths.
            title: Optional title (defaults to "Capture batch (N files)").

        Returns:
            The new job id.

        Raises:
            IngestError: If any file is invalid; nothing is persisted.
            sqlalchemy.exc.SQLAlchemyError: If the insert fails; stored copies
                are discarded first.
        """
        if not file_paths:
            raise EmptyBatchError()

        batch_ms = self.clock()
        job_id = self.id_generator.next()
        job_title = build_job_title(title, len(file_paths))

        prepared = self.ingestor.prepare(file_paths, batch_ms, job_id)
        try:
            self.repository.insert_job_with_assets(
                job_id, job_title, JobStatus.QUEUED, prepared, batch_ms
            )
        except Exception:
            self.ingestor.discard(prepared)
            raise

        return job_id

    # --- Reads ---

    def list_jobs(self) -> list[JobSummary]:
        return self.repository.list_jobs()

    def get_job(self, job_id: str) -> JobDetails | None:
        """Job snapshot, or None if unknown.

        Raises:
            InvalidJobIdError: If job_id is blank (a ValueError).
        """
        return self.repository.find_job_with_assets(_require_job_id(job_id))

    # --- Status changes ---

    def transition(self, job_id: str, status: JobStatus | str) -> TransitionResult:
        return self.repository.update_status(job_id.strip(), status, self.clock())

    def retry(self, job_id: str) -> TransitionResult:
        return self.transition(job_id, JobStatus.QUEUED)

    def cancel(self, job_id: str) -> TransitionResult:
        return self.transition(job_id, JobStatus.CANCELLED)

    # --- Settings ---

    def get_settings(self) -> SettingsPayload:
        return self.repository.get_settings()

    def save_settings(self, payload: SettingsPayload) -> SettingsPayload:
        return self.repository.save_settings(payload)

    # --- Notes ---

    def preview_note(self, job_id: str) -> str | None:
        details = self.get_job(job_id)
        if details is None:
            return None
        return build_note_markdown(details)

    def publish_job(
        self,
        job_id: str,
        publisher: Publisher,
        summarizer: Summarizer | None = None,
        api_key: str | None = None,
    ) -> PublishResult | None:
        """Render the job's note and hand it to the publisher.

        A summary is requested only when both summarizer and api_key are given.

        Returns:
            The publish result, or None if the job does not exist.

        Raises:
            SummarizerError: If the summary request fails.
            PublishError: If the note cannot be written.
        """
        details = self.get_job(job_id)
        if details is None:
            return None
        settings = self.get_settings()

        summary = None
        if summarizer is not None and api_key:
            summary = summarizer.generate_summary(
                api_key, settings.summary_model, source_file_names(details)
            )

        markdown = build_note_markdown(details, summary)
        result = publisher(settings, details.job.title, markdown)
        logger.info("Job %s published to %s", details.job.id, result.note_path)
        return result
