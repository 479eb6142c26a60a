"""
Job administration.

Read and maintenance operations used by the HTTP API and by operators.
"""

import logging
from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from extraction_queue.constants import TERMINAL_STATUSES, JobStatus
from extraction_queue.db.models import Job, utcnow
from extraction_queue.db.repository import JobRepository
from extraction_queue.errors import NotFoundError
from extraction_queue.observability.metrics import get_metrics
from extraction_queue.types.job import StatusTransition

logger = logging.getLogger(__name__)


class JobAdmin:
    """
    Administrative operations on jobs.

    Retry is the only way a failed job runs again; the worker never retries
    on its own. Callers commit the session.
    """

    def __init__(self, session: AsyncSession):
        self._repo = JobRepository(session)
        self._metrics = get_metrics()

    async def get_job(self, job_id: UUID) -> Job | None:
        return await self._repo.find_by_id(job_id)

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[Sequence[Job], int]:
        """
        List jobs, newest first.

        Returns:
            Tuple of (jobs, total_count).
        """
        jobs = await self._repo.list_jobs(status=status, job_type=job_type, limit=limit, offset=offset)
        total = await self._repo.count_jobs(status=status, job_type=job_type)
        return jobs, total

    async def retry_job(self, job_id: UUID) -> Job | None:
        """
        Move a completed or failed job back to pending.

        Clears the claim and the previous outcome; ``attempts`` is kept.

        Args:
            job_id: The job UUID.

        Returns:
            The pending Job, or None if the job does not exist.

        Raises:
            PreconditionFailed: If the job is pending or claimed.
        """
        transition = StatusTransition(
            expected=tuple(TERMINAL_STATUSES),
            target=JobStatus.PENDING,
            values={
                "claimed_at": None,
                "claimed_by": None,
                "error": None,
                "result": None,
                "completed_at": None,
            },
        )
        try:
            job = await self._repo.update_status(job_id, transition)
        except NotFoundError:
            return None

        logger.info(
            "Job retried",
            extra={"job_id": str(job_id), "attempts": job.attempts},
        )
        return job

    async def delete_job(self, job_id: UUID) -> bool:
        deleted = await self._repo.delete_by_id(job_id)
        if deleted:
            logger.info("Job deleted", extra={"job_id": str(job_id)})
        return deleted

    async def purge_completed(self, older_than: datetime | None = None) -> int:
        """
        Delete completed jobs. Failed jobs are kept for diagnosis.

        Args:
            older_than: Optional cut-off on ``completed_at``.

        Returns:
            Number of purged jobs.
        """
        count = await self._repo.delete_all_by_status(JobStatus.COMPLETED, older_than=older_than)
        if count:
            self._metrics.record_jobs_purged(count)
        logger.info(
            "Purged completed jobs",
            extra={
                "purged": count,
                "older_than": older_than.isoformat() if older_than else None,
            },
        )
        return count

    async def get_stats(self) -> dict[str, int]:
        """
        Count jobs by status.

        Returns:
            Counts for every status plus ``total``.
        """
        counts = await self._repo.aggregate_counts()
        self._metrics.update_queue_depth(counts)

        stats = {status.value: count for status, count in counts.items()}
        stats["total"] = sum(counts.values())
        return stats

    async def lock_batch(self, group_key: str, batch_id: str | None = None) -> tuple[int, str]:
        """
        Lock every completed, unbatched job of a group into one batch.

        Args:
            group_key: The grouping key shared by the jobs.
            batch_id: Batch identifier; defaults to the current ISO timestamp.

        Returns:
            Tuple of (locked_count, batch_id).

        Raises:
            NotFoundError: If no job of the group is eligible.
        """
        batch_id = batch_id or utcnow().isoformat()
        count = await self._repo.lock_batch(group_key, batch_id)
        if count == 0:
            raise NotFoundError(f"No completed jobs to lock for group {group_key!r}")

        logger.info(
            "Locked batch",
            extra={"group_key": group_key, "batch_id": batch_id, "locked_count": count},
        )
        return count, batch_id
