"""
Typed errors raised by the job store, services and handlers.
"""

from uuid import UUID


class JobQueueError(Exception):
    """Base class for all job queue errors."""


class ValidationError(JobQueueError):
    """Enqueue input is missing or malformed. Nothing was written."""


class ConflictError(JobQueueError):
    """An insert collided with an existing id or idempotency key."""


class NotFoundError(JobQueueError):
    """No job matched the referenced id."""

    def __init__(self, message: str, job_id: UUID | None = None):
        super().__init__(message)
        self.job_id = job_id


class PreconditionFailed(JobQueueError):
    """
    A conditional transition did not match the row's current state.

    Raised when a claim race is lost or a transition is attempted from
    the wrong status.
    """

    def __init__(self, message: str, job_id: UUID | None = None):
        super().__init__(message)
        self.job_id = job_id


class HandlerError(JobQueueError):
    """The external task behind a handler failed."""


class StaleClaimRecovered(JobQueueError):
    """
    Not raised. Describes a claim reassigned after the stale-claim timeout,
    used as the log message when a crashed worker's job is taken over.
    """

    def __init__(self, job_id: UUID, previous_owner: str | None, new_owner: str):
        super().__init__(
            f"Job {job_id} reclaimed from {previous_owner or 'unknown worker'} "
            f"by {new_owner} after stale-claim timeout"
        )
        self.job_id = job_id
        self.previous_owner = previous_owner
        self.new_owner = new_owner
