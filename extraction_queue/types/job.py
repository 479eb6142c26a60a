"""
Job-related type definitions for internal use.
"""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from extraction_queue.constants import JobStatus, JobType, ProgressStage


# ============================================================================
# Payloads of the built-in job types
# ============================================================================


class ClaudeExtractionPayload(BaseModel):
    """
    Payload of a claude_extraction job.

    The prompt is run by the external code-generation agent inside the
    configured project directory, optionally on a dedicated branch.
    """

    model_config = ConfigDict(extra="allow")

    prompt: str = Field(..., min_length=1)
    name: str | None = None
    branch: str | None = None
    target_path: str | None = None
    origin_url: str | None = None
    requirement_id: str | None = None
    prompt_hash: str | None = None


class CreateFilePayload(BaseModel):
    """Payload of a create_file job."""

    path: str = Field(..., min_length=1)
    content: str
    overwrite: bool = False


class DeleteFilePayload(BaseModel):
    """Payload of a delete_file job."""

    path: str = Field(..., min_length=1)
    require_exists: bool = False


class EchoPayload(BaseModel):
    """Payload of an echo job."""

    message: str


PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    JobType.CLAUDE_EXTRACTION: ClaudeExtractionPayload,
    JobType.CREATE_FILE: CreateFilePayload,
    JobType.DELETE_FILE: DeleteFilePayload,
    JobType.ECHO: EchoPayload,
}


# ============================================================================
# Store-level types
# ============================================================================


@dataclass(frozen=True)
class StatusTransition:
    """
    A single conditional state change applied by the job store.

    The update only matches when the row's status is one of ``expected``
    and, when given, its ``claimed_at`` / ``claimed_by`` still equal the
    observed values.
    """

    expected: tuple[JobStatus, ...]
    target: JobStatus
    values: Mapping[str, Any] = field(default_factory=dict)
    claimed_at: datetime | None = None
    claimed_by: str | None = None


@dataclass(frozen=True)
class ClaimCandidate:
    """Snapshot of a claimable row, as observed before the conditional update."""

    job_id: UUID
    status: JobStatus
    claimed_at: datetime | None
    claimed_by: str | None

    @property
    def is_stale_claim(self) -> bool:
        return self.status == JobStatus.CLAIMED


# ============================================================================
# Handler-facing types
# ============================================================================


class JobResult(BaseModel):
    """
    Result of job execution.
    Returned by job handlers after processing.
    """

    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: float | None = None


class ProgressRecord(BaseModel):
    """
    Best-effort progress note for a job.

    Written by the worker and by handlers for UI feedback; never
    authoritative, the job's status is.
    """

    job_id: UUID
    stage: ProgressStage
    message: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime


ProgressReporter = Callable[[ProgressStage, str | None, dict[str, Any] | None], Awaitable[None]]


async def _discard_progress(
    stage: ProgressStage,
    message: str | None = None,
    data: dict[str, Any] | None = None,
) -> None:
    return None


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.
    Contains job metadata and utilities for the handler.
    """

    job_id: UUID
    job_type: str
    attempt: int
    payload: dict[str, Any]
    worker_id: str
    claimed_at: datetime | None = None
    reporter: ProgressReporter = _discard_progress

    async def report_progress(
        self,
        message: str | None = None,
        data: dict[str, Any] | None = None,
        stage: ProgressStage = ProgressStage.RUNNING,
    ) -> None:
        """Record a progress note for this job."""
        await self.reporter(stage, message, data)
