"""
Type definitions for the extraction queue.
Contains input/output type definitions for all functions, grouped by module.
"""

from extraction_queue.types.api import (
    DeleteJobResponse,
    EnqueueJobRequest,
    EnqueueJobResponse,
    ErrorResponse,
    ExtractionRequest,
    ExtractionResponse,
    HealthResponse,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
    LockBatchRequest,
    LockBatchResponse,
    ProgressResponse,
    PurgeResponse,
    RequeueExtractionRequest,
)
from extraction_queue.types.job import (
    PAYLOAD_MODELS,
    ClaimCandidate,
    ClaudeExtractionPayload,
    CreateFilePayload,
    DeleteFilePayload,
    EchoPayload,
    JobContext,
    JobResult,
    ProgressRecord,
    StatusTransition,
)

__all__ = [
    # API types
    "EnqueueJobRequest",
    "EnqueueJobResponse",
    "JobResponse",
    "JobListResponse",
    "JobStatsResponse",
    "DeleteJobResponse",
    "PurgeResponse",
    "LockBatchRequest",
    "LockBatchResponse",
    "ProgressResponse",
    "ExtractionRequest",
    "RequeueExtractionRequest",
    "ExtractionResponse",
    "HealthResponse",
    "ErrorResponse",
    # Job types
    "PAYLOAD_MODELS",
    "ClaudeExtractionPayload",
    "CreateFilePayload",
    "DeleteFilePayload",
    "EchoPayload",
    "StatusTransition",
    "ClaimCandidate",
    "JobResult",
    "JobContext",
    "ProgressRecord",
]
