"""
Claim protocol.

Hands each claimable job to exactly one worker. Correctness rests on the
single conditional UPDATE in ``JobRepository.update_status``: the row is
only taken when its status (and, for a stale claim, its ``claimed_at``)
still equals what was observed when the candidates were read.
"""

import logging
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from extraction_queue.constants import SPAN_CLAIM_JOB, JobStatus
from extraction_queue.db.models import Job, utcnow
from extraction_queue.db.repository import JobRepository
from extraction_queue.errors import NotFoundError, PreconditionFailed, StaleClaimRecovered
from extraction_queue.observability.metrics import get_metrics
from extraction_queue.observability.tracing import get_tracer, set_job_attributes
from extraction_queue.types.job import ClaimCandidate, StatusTransition

logger = logging.getLogger(__name__)


class ClaimProtocol:
    """
    Claims the oldest available job for a worker.

    Unlike the repository, this commits: the candidate read and every claim
    attempt run in their own short transaction.
    """

    def __init__(
        self,
        session: AsyncSession,
        stale_claim_timeout_seconds: float,
        candidate_limit: int = 10,
    ):
        """
        Args:
            session: The async database session.
            stale_claim_timeout_seconds: Age after which a claim is presumed abandoned.
            candidate_limit: Number of candidates read per attempt.
        """
        self._session = session
        self._repo = JobRepository(session)
        self._stale_timeout = timedelta(seconds=stale_claim_timeout_seconds)
        self._candidate_limit = candidate_limit
        self._metrics = get_metrics()

    async def claim_next(self, worker_id: str) -> Job | None:
        """
        Claim the oldest pending or stale-claimed job.

        Args:
            worker_id: The claiming worker's identifier.

        Returns:
            The claimed Job, or None if no candidate could be claimed.
        """
        with get_tracer().start_as_current_span(SPAN_CLAIM_JOB) as span:
            span.set_attribute("worker.id", worker_id)

            stale_before = utcnow() - self._stale_timeout
            candidates = await self._repo.find_claim_candidates(
                stale_before, self._candidate_limit
            )
            # End the read transaction before any write is attempted
            await self._session.commit()

            for candidate in candidates:
                job = await self._try_claim(candidate, worker_id)
                if job is None:
                    continue

                set_job_attributes(span, job, stale_reclaim=candidate.is_stale_claim)
                if candidate.is_stale_claim:
                    recovered = StaleClaimRecovered(job.id, candidate.claimed_by, worker_id)
                    logger.warning(
                        str(recovered),
                        extra={
                            "job_id": str(job.id),
                            "previous_owner": candidate.claimed_by,
                            "previous_claimed_at": candidate.claimed_at.isoformat(),
                            "worker_id": worker_id,
                            "attempts": job.attempts,
                        },
                    )
                self._metrics.record_job_claimed(worker_id, stale=candidate.is_stale_claim)
                logger.info(
                    "Claimed job",
                    extra={
                        "job_id": str(job.id),
                        "job_type": job.type,
                        "worker_id": worker_id,
                        "attempts": job.attempts,
                    },
                )
                return job

        return None

    async def _try_claim(self, candidate: ClaimCandidate, worker_id: str) -> Job | None:
        transition = StatusTransition(
            expected=(candidate.status,),
            target=JobStatus.CLAIMED,
            values={
                "claimed_at": utcnow(),
                "claimed_by": worker_id,
                "attempts": Job.attempts + 1,
            },
            claimed_at=candidate.claimed_at if candidate.is_stale_claim else None,
        )
        try:
            job = await self._repo.update_status(candidate.job_id, transition)
        except (PreconditionFailed, NotFoundError) as e:
            await self._session.rollback()
            logger.debug(
                "Lost claim race",
                extra={"job_id": str(candidate.job_id), "worker_id": worker_id, "reason": str(e)},
            )
            return None

        await self._session.commit()
        return job
