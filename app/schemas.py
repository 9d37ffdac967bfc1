"""Capture Agent - Pydantic models for API validation.

Request/response payloads shared by the repository read paths and the
FastAPI dispatch layer. Timestamps are epoch milliseconds.
"""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class WriteMode(StrEnum):
    """How the publisher writes notes into the vault."""

    FILESYSTEM_ONLY = "filesystem_only"
    CLI_ONLY = "cli_only"
    CLI_FALLBACK = "cli_fallback"


# --- Request Models ---


class EnqueueIngestionRequest(BaseModel):
    """Request payload for creating a job from local files."""

    model_config = ConfigDict(extra="forbid")

    file_paths: list[str] = Field(
        ...,
        description="Absolute paths of the files to ingest (must not be empty)",
    )
    note_title: str | None = Field(
        default=None,
        description="Optional job title (defaults to 'Capture batch (N files)')",
    )


class SaveCredentialRequest(BaseModel):
    """Request payload for storing the summarizer API key."""

    model_config = ConfigDict(extra="forbid")

    api_key: str = Field(..., description="API key; surrounding whitespace is trimmed")


class SettingsPayload(BaseModel):
    """The settings singleton."""

    model_config = ConfigDict(extra="forbid", from_attributes=True, str_strip_whitespace=True)

    vault_path: str = Field(default="", description="Vault folder; empty means auto-detect")
    publisher_cli_path: str = Field(default="", description="External publisher executable")
    summary_model: str = Field(..., min_length=1, description="Summarization model identifier")
    write_mode: WriteMode = Field(..., description="Note write strategy")


# --- Response Models ---


class EnqueueIngestionResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job_id: str = Field(..., description="Identifier of the newly created job")


class JobSummary(BaseModel):
    """Job row annotated with its live asset count."""

    model_config = ConfigDict(extra="forbid")

    id: str
    title: str
    status: str
    created_at: int
    updated_at: int
    asset_count: int = Field(..., ge=0)


class JobAsset(BaseModel):
    """One stored asset of a job."""

    model_config = ConfigDict(extra="forbid", from_attributes=True)

    id: int
    job_id: str
    original_path: str
    storage_path: str
    media_type: str
    mime_type: str
    size_bytes: int
    sha256: str
    duration_ms: int | None = None


class JobDetails(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job: JobSummary
    assets: list[JobAsset]


class UpdateJobResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ok: bool = Field(..., description="False when the job does not exist")


class PreviewNoteResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    markdown: str


class PublishNoteResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    note_path: str
    method: str


class CredentialStatusResponse(BaseModel):
    """Where the summarizer API key would be read from. Never includes the key."""

    model_config = ConfigDict(extra="forbid")

    configured: bool
    source: str = Field(..., description="os_keychain, environment or missing")


class ErrorResponse(BaseModel):
    """Response for failed operations."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="error", description="Operation status")
    error_code: str = Field(..., description="Error taxonomy code")
    error_message: str = Field(..., description="Human-readable error description")


__all__ = [
    "WriteMode",
    "EnqueueIngestionRequest",
    "SettingsPayload",
    "EnqueueIngestionResponse",
    "JobSummary",
    "JobAsset",
    "JobDetails",
    "UpdateJobResponse",
    "PreviewNoteResponse",
    "PublishNoteResponse",
    "SaveCredentialRequest",
    "CredentialStatusResponse",
    "ErrorResponse",
]
