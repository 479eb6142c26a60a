"""
API request and response type definitions.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from extraction_queue.constants import (
    MAX_GROUP_KEY_LENGTH,
    MAX_IDEMPOTENCY_KEY_LENGTH,
    MAX_JOB_TYPE_LENGTH,
    JobStatus,
    ProgressStage,
)


class EnqueueJobRequest(BaseModel):
    """Request body for enqueueing a new job."""

    type: str = Field(..., min_length=1, max_length=MAX_JOB_TYPE_LENGTH, description="Handler name")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job payload data")
    idempotency_key: str | None = Field(
        default=None,
        max_length=MAX_IDEMPOTENCY_KEY_LENGTH,
        description="Deduplication key; enqueueing the same key twice returns the first job",
    )
    group_key: str | None = Field(
        default=None,
        max_length=MAX_GROUP_KEY_LENGTH,
        description="Grouping key used by batch lock",
    )


class EnqueueJobResponse(BaseModel):
    """Response body after enqueueing a job."""

    id: UUID
    status: JobStatus
    created_at: datetime
    created: bool
    message: str = "Job enqueued"


class JobResponse(BaseModel):
    """Full job details response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: str
    payload: dict[str, Any]
    status: JobStatus
    idempotency_key: str | None
    group_key: str | None
    batch_id: str | None
    attempts: int
    claimed_at: datetime | None
    claimed_by: str | None
    result: dict[str, Any] | None
    error: str | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None


class JobListResponse(BaseModel):
    """Page of jobs, newest first."""

    jobs: list[JobResponse]
    count: int
    total: int
    limit: int
    offset: int


class JobStatsResponse(BaseModel):
    """Job counts by status."""

    pending: int = 0
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0


class DeleteJobResponse(BaseModel):
    id: UUID
    deleted: bool


class PurgeResponse(BaseModel):
    purged: int


class LockBatchRequest(BaseModel):
    """Request body for locking all completed jobs of a group."""

    group_key: str = Field(..., min_length=1, max_length=MAX_GROUP_KEY_LENGTH)
    batch_id: str | None = Field(default=None, max_length=MAX_GROUP_KEY_LENGTH)


class LockBatchResponse(BaseModel):
    locked_count: int
    batch_id: str
    message: str


class ProgressResponse(BaseModel):
    """Latest progress record of a job."""

    job_id: UUID
    stage: ProgressStage
    message: str | None
    data: dict[str, Any]
    updated_at: datetime


class ExtractionRequest(BaseModel):
    """Request body for enqueueing a claude_extraction job."""

    prompt: str = Field(..., min_length=1)
    name: str | None = None
    branch: str | None = None
    origin_url: str | None = None
    target_path: str | None = None
    requirement_id: str | None = None
    group_key: str | None = Field(default=None, max_length=MAX_GROUP_KEY_LENGTH)
    idempotency_key: str | None = Field(default=None, max_length=MAX_IDEMPOTENCY_KEY_LENGTH)


class RequeueExtractionRequest(BaseModel):
    """Request body for resubmitting a rejected extraction with a new prompt."""

    original_job_id: UUID
    updated_prompt: str = Field(..., min_length=1)


class ExtractionResponse(BaseModel):
    """Tracking handle of an enqueued extraction."""

    id: UUID
    name: str
    status: JobStatus
    created_at: datetime
    created: bool
    resubmitted_from: UUID | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    progress_store: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None
