"""Capture Agent - FastAPI application.

Thin dispatch layer over app.lifecycle.JobLifecycle. Endpoints validate
payloads, call the facade and map error codes to HTTP statuses:

    400  validation (bad payload, blank id, invalid file, blank API key)
    404  job or source file not found
    409  invalid status transition
    502  summarizer / publisher / credential store failure
    500  anything else (details logged, never returned)

Run with:
    uvicorn services.capture_api.main:app --reload  # dev server only
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.config import CONTENT_DIR
from app.db import ConnectionPool, init_db
from app.ingestion import AssetIngestor, IngestError, IngestErrorCode
from app.integrations.publisher import PublishError, publish_note
from app.integrations.secrets import (
    CredentialErrorCode,
    CredentialSource,
    CredentialStoreError,
    clear_credential,
    credential_source,
    resolve_credential,
    save_credential,
)
from app.integrations.summarizer import GeminiSummarizer, Summarizer, SummarizerError
from app.jobs import InvalidTransition, JobRepository, TransitionResult
from app.lifecycle import InvalidJobIdError, JobLifecycle, Publisher
from app.schemas import (
    CredentialStatusResponse,
    EnqueueIngestionRequest,
    EnqueueIngestionResponse,
    ErrorResponse,
    JobDetails,
    JobSummary,
    PreviewNoteResponse,
    PublishNoteResponse,
    SaveCredentialRequest,
    SettingsPayload,
    UpdateJobResponse,
)

logger = logging.getLogger(__name__)

# --- Core Setup ---

# Module-level state (initialized on startup)
_pool: ConnectionPool | None = None
_lifecycle: JobLifecycle | None = None


def get_lifecycle() -> JobLifecycle:
    """Get the job lifecycle facade.

    Raises:
        RuntimeError: If not initialized (app lifespan not invoked).
    """
    if _lifecycle is None:
        raise RuntimeError("Job lifecycle not initialized. App lifespan not invoked?")
    return _lifecycle


def get_publisher() -> Publisher:
    return publish_note


def get_summarizer() -> Summarizer:
    return GeminiSummarizer()


def get_api_key() -> str | None:
    """Summarizer key, or None. A failing credential store only drops the summary."""
    try:
        return resolve_credential()
    except CredentialStoreError as e:
        logger.warning("Credential store unavailable, publishing without summary: %s", e.message)
        return None


# --- Lifespan ---


def _cleanup_orphan_temp_files_safe(content_root: Path) -> None:
    """Clean up orphan temp files under the content store (best-effort)."""
    from app.utils.atomic_io import cleanup_orphan_temp_files

    try:
        removed = cleanup_orphan_temp_files(content_root)
        if removed > 0:
            logger.info("Startup cleanup: removed %d orphan temp files", removed)
    except Exception:
        # Best-effort: never crash startup
        logger.warning("Startup cleanup failed (non-fatal)", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the database (migrations) and clean up orphan temp files."""
    global _pool, _lifecycle
    if _lifecycle is None:
        _pool = init_db()
        _lifecycle = JobLifecycle(JobRepository(_pool), AssetIngestor(CONTENT_DIR))

    _cleanup_orphan_temp_files_safe(_lifecycle.ingestor.content_root)

    yield

    if _pool is not None:
        _pool.dispose()
        _pool = None
        _lifecycle = None


# --- FastAPI App ---


app = FastAPI(
    title="Capture Agent API",
    description="Local file ingestion, job lifecycle and note publishing.",
    version="0.1.0",
    lifespan=lifespan,
)


# --- Error Handling ---

_NOT_FOUND_CODES = frozenset({IngestErrorCode.FILE_NOT_FOUND, "JOB_NOT_FOUND"})


def error_code_to_status(error_code: str) -> int:
    """Map an ingest error code to an HTTP status code."""
    if error_code in _NOT_FOUND_CODES:
        return 404
    if error_code in (IngestErrorCode.HASH_FAILED, IngestErrorCode.INGEST_FAILED):
        return 500
    return 400


def make_error_response(status_code: int, error_code: str, error_message: str) -> JSONResponse:
    """Create a JSON error response."""
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error_code=str(error_code), error_message=error_message).model_dump(),
    )


def job_not_found(job_id: str) -> JSONResponse:
    return make_error_response(404, "JOB_NOT_FOUND", f"job not found: {job_id}")


@app.exception_handler(RequestValidationError)
async def _on_request_validation(request: Request, exc: RequestValidationError):
    return make_error_response(400, "VALIDATION_ERROR", str(exc.errors()))


@app.exception_handler(IngestError)
async def _on_ingest_error(request: Request, exc: IngestError):
    return make_error_response(error_code_to_status(exc.error_code), exc.error_code, exc.message)


@app.exception_handler(InvalidJobIdError)
async def _on_invalid_job_id(request: Request, exc: InvalidJobIdError):
    return make_error_response(400, "VALIDATION_ERROR", "job_id must not be empty")


@app.exception_handler(InvalidTransition)
async def _on_invalid_transition(request: Request, exc: InvalidTransition):
    return make_error_response(409, exc.error_code, exc.message)


@app.exception_handler(CredentialStoreError)
async def _on_credential_error(request: Request, exc: CredentialStoreError):
    if exc.error_code == CredentialErrorCode.EMPTY_CREDENTIAL:
        return make_error_response(400, exc.error_code, exc.message)
    return await _on_collaborator_error(request, exc)


@app.exception_handler(SummarizerError)
@app.exception_handler(PublishError)
async def _on_collaborator_error(request: Request, exc):
    logger.warning("Collaborator failure on %s: %s", request.url.path, exc)
    return make_error_response(502, exc.error_code, exc.message)


@app.exception_handler(Exception)
async def _on_unexpected(request: Request, exc: Exception):
    # Log full exception server-side, return generic message to client
    logger.exception("Unexpected error on %s", request.url.path)
    return make_error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")


_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    404: {"model": ErrorResponse, "description": "Not found"},
    500: {"model": ErrorResponse, "description": "Internal error"},
}

LifecycleDep = Annotated[JobLifecycle, Depends(get_lifecycle)]


# --- Endpoints ---


@app.post(
    "/v1/jobs",
    response_model=EnqueueIngestionResponse,
    responses=_ERROR_RESPONSES,
    summary="Create a job from local files",
)
def enqueue_ingestion(request: EnqueueIngestionRequest, lifecycle: LifecycleDep):
    """Ingest a batch of local files into a new queued job.

    The batch is all-or-nothing: one invalid file rejects the whole request
    and nothing is stored.
    """
    job_id = lifecycle.enqueue(request.file_paths, request.note_title)
    return EnqueueIngestionResponse(job_id=job_id)


@app.get("/v1/jobs", response_model=list[JobSummary], summary="List jobs")
def list_jobs(lifecycle: LifecycleDep):
    return lifecycle.list_jobs()


@app.get(
    "/v1/jobs/{job_id}",
    response_model=JobDetails,
    responses=_ERROR_RESPONSES,
    summary="Get a job with its assets",
)
def get_job(job_id: str, lifecycle: LifecycleDep):
    details = lifecycle.get_job(job_id)
    if details is None:
        return job_not_found(job_id)
    return details


@app.post(
    "/v1/jobs/{job_id}/retry",
    response_model=UpdateJobResponse,
    responses={409: {"model": ErrorResponse, "description": "Invalid transition"}},
    summary="Move a failed or cancelled job back to queued",
)
def retry_job(job_id: str, lifecycle: LifecycleDep):
    result = lifecycle.retry(job_id)
    return UpdateJobResponse(ok=result == TransitionResult.UPDATED)


@app.post(
    "/v1/jobs/{job_id}/cancel",
    response_model=UpdateJobResponse,
    responses={409: {"model": ErrorResponse, "description": "Invalid transition"}},
    summary="Cancel a queued or processing job",
)
def cancel_job(job_id: str, lifecycle: LifecycleDep):
    result = lifecycle.cancel(job_id)
    return UpdateJobResponse(ok=result == TransitionResult.UPDATED)


@app.get("/v1/settings", response_model=SettingsPayload, summary="Get settings")
def get_settings(lifecycle: LifecycleDep):
    return lifecycle.get_settings()


@app.put("/v1/settings", response_model=SettingsPayload, summary="Replace settings")
def save_settings(payload: SettingsPayload, lifecycle: LifecycleDep):
    return lifecycle.save_settings(payload)


@app.get(
    "/v1/jobs/{job_id}/note",
    response_model=PreviewNoteResponse,
    responses=_ERROR_RESPONSES,
    summary="Preview the job's markdown note",
)
def preview_note(job_id: str, lifecycle: LifecycleDep):
    markdown = lifecycle.preview_note(job_id)
    if markdown is None:
        return job_not_found(job_id)
    return PreviewNoteResponse(markdown=markdown)


@app.post(
    "/v1/jobs/{job_id}/publish",
    response_model=PublishNoteResponse,
    responses={
        **_ERROR_RESPONSES,
        502: {"model": ErrorResponse, "description": "Summarizer or publisher failed"},
    },
    summary="Publish the job's note into the vault",
)
def publish_job(
    job_id: str,
    lifecycle: LifecycleDep,
    publisher: Annotated[Publisher, Depends(get_publisher)],
    summarizer: Annotated[Summarizer, Depends(get_summarizer)],
    api_key: Annotated[str | None, Depends(get_api_key)],
):
    """Render the note (with a summary when an API key is available) and publish it."""
    result = lifecycle.publish_job(job_id, publisher, summarizer, api_key)
    if result is None:
        return job_not_found(job_id)
    return PublishNoteResponse(note_path=result.note_path, method=result.method)


@app.get(
    "/v1/credentials",
    response_model=CredentialStatusResponse,
    responses={502: {"model": ErrorResponse, "description": "Credential store failed"}},
    summary="Where the summarizer API key comes from",
)
def get_credential_status():
    source = credential_source()
    return CredentialStatusResponse(configured=source != CredentialSource.MISSING, source=source)


@app.put(
    "/v1/credentials",
    response_model=CredentialStatusResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Blank API key"},
        502: {"model": ErrorResponse, "description": "Credential store failed"},
    },
    summary="Store the summarizer API key in the platform credential store",
)
def save_api_key(request: SaveCredentialRequest):
    save_credential(request.api_key)
    logger.info("Summarizer API key saved to credential store")
    return get_credential_status()


@app.delete(
    "/v1/credentials",
    response_model=CredentialStatusResponse,
    responses={502: {"model": ErrorResponse, "description": "Credential store failed"}},
    summary="Remove the stored summarizer API key",
)
def clear_api_key():
    """Remove the stored key. An environment key, if any, still applies."""
    clear_credential()
    logger.info("Summarizer API key cleared from credential store")
    return get_credential_status()


@app.get("/health", summary="Health check")
def health_check():
    """Simple health check endpoint."""
    return {"status": "ok"}


# --- For testing: allow overriding the lifecycle ---


def override_lifecycle(lifecycle: JobLifecycle | None) -> None:
    """Override the lifecycle facade for testing."""
    global _lifecycle
    _lifecycle = lifecycle
