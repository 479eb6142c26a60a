"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> CLAIMED (claim acquired by a worker)
    - CLAIMED -> CLAIMED (stale claim taken over by another worker)
    - CLAIMED -> COMPLETED (handler succeeded)
    - CLAIMED -> FAILED (handler failed, unknown type)
    - COMPLETED | FAILED -> PENDING (manual retry only)
    """

    PENDING = "pending"
    CLAIMED = "claimed"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED}
)


class JobType(StrEnum):
    """Job types with a built-in handler."""

    CLAUDE_EXTRACTION = "claude_extraction"
    CREATE_FILE = "create_file"
    DELETE_FILE = "delete_file"
    ECHO = "echo"


class ProgressStage(StrEnum):
    """Stages written to a job's progress record."""

    CLAIMED = "claimed"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# Field limits
MAX_JOB_TYPE_LENGTH = 64
MAX_IDEMPOTENCY_KEY_LENGTH = 255
MAX_GROUP_KEY_LENGTH = 255

# API constants
API_V1_PREFIX = "/v1"
IDEMPOTENCY_KEY_HEADER = "Idempotency-Key"

# Metrics names
METRIC_QUEUE_DEPTH = "job_queue_depth"
METRIC_JOBS_ENQUEUED = "jobs_enqueued_total"
METRIC_JOBS_COMPLETED = "jobs_completed_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_JOBS_CLAIMED = "jobs_claimed_total"
METRIC_STALE_CLAIMS = "stale_claims_recovered_total"
METRIC_JOBS_PURGED = "jobs_purged_total"

# Trace span names
SPAN_ENQUEUE_JOB = "enqueue_job"
SPAN_CLAIM_JOB = "claim_job"
SPAN_EXECUTE_JOB = "execute_job"
