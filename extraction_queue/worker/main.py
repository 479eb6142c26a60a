"""
Worker process for executing jobs.

The worker polls for a claimable job, runs its handler and records the
outcome. Failed jobs are not retried automatically: failures here are
mostly non-transient (bad prompt, unreachable target), so retry is an
explicit administrative action.
"""

import asyncio
import logging
import os
import signal
import time
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from extraction_queue.config import Settings, get_settings
from extraction_queue.constants import SPAN_EXECUTE_JOB, JobStatus, ProgressStage
from extraction_queue.db import close_db, get_session_context, init_db
from extraction_queue.db.models import Job, utcnow
from extraction_queue.db.repository import JobRepository
from extraction_queue.errors import NotFoundError, PreconditionFailed
from extraction_queue.observability.logging import bind_context, clear_context, setup_logging
from extraction_queue.observability.metrics import get_metrics
from extraction_queue.observability.tracing import get_tracer, set_job_attributes
from extraction_queue.services.claim import ClaimProtocol
from extraction_queue.types.job import JobContext, JobResult, StatusTransition
from extraction_queue.worker.handlers import HandlerRegistry
from extraction_queue.worker.progress import ProgressStore

logger = logging.getLogger(__name__)

SessionContextFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def default_worker_id() -> str:
    return f"{os.uname().nodename}-{os.getpid()}"


@dataclass
class WorkerConfig:
    """Everything a worker needs besides database access."""

    worker_id: str
    handlers: HandlerRegistry
    progress: ProgressStore
    poll_interval_seconds: float = 1.0
    stale_claim_timeout_seconds: float = 300.0
    claim_candidate_limit: int = 10

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        handlers: HandlerRegistry | None = None,
    ) -> "WorkerConfig":
        settings = settings or get_settings()
        return cls(
            worker_id=settings.worker_id or default_worker_id(),
            handlers=handlers or HandlerRegistry.with_defaults(settings),
            progress=ProgressStore(settings.progress_dir),
            poll_interval_seconds=settings.worker_poll_interval_seconds,
            stale_claim_timeout_seconds=settings.stale_claim_timeout_seconds,
            claim_candidate_limit=settings.claim_candidate_limit,
        )


class Worker:
    """
    Job worker that polls for and executes jobs, one at a time.

    Features:
    - Atomic claim with stale-claim takeover
    - Flat poll interval when the queue is empty
    - Outcome writes guarded by claim ownership
    - Graceful shutdown: the current job finishes before the loop exits
    """

    def __init__(self, config: WorkerConfig, session_context: SessionContextFactory):
        """
        Initialize the worker.

        Args:
            config: Worker configuration.
            session_context: Returns a context manager yielding a session that
                commits on exit, e.g. ``get_session_context``.
        """
        self.config = config
        self.worker_id = config.worker_id
        self._session_context = session_context
        self._running = False
        self._stop_event = asyncio.Event()
        self._metrics = get_metrics()

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Run the polling loop until ``stop()`` is called."""
        logger.info(
            "Worker starting",
            extra={
                "worker_id": self.worker_id,
                "poll_interval": self.config.poll_interval_seconds,
                "stale_claim_timeout": self.config.stale_claim_timeout_seconds,
                "job_types": self.config.handlers.job_types(),
            },
        )

        self._running = True
        self._stop_event.clear()

        while self._running:
            try:
                processed = await self.run_once()
            except Exception as e:
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.worker_id},
                )
                processed = False

            if not processed:
                await self._wait_for_poll()

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """Stop the worker gracefully after the current job."""
        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False
        self._stop_event.set()

    async def _wait_for_poll(self) -> None:
        try:
            await asyncio.wait_for(
                self._stop_event.wait(),
                timeout=self.config.poll_interval_seconds,
            )
        except asyncio.TimeoutError:
            pass

    async def run_once(self) -> bool:
        """
        Claim and execute at most one job.

        Returns:
            True if a job was claimed, False if the queue had nothing to claim.
        """
        async with self._session_context() as session:
            claims = ClaimProtocol(
                session,
                stale_claim_timeout_seconds=self.config.stale_claim_timeout_seconds,
                candidate_limit=self.config.claim_candidate_limit,
            )
            job = await claims.claim_next(self.worker_id)

        if job is None:
            return False

        bind_context(job_id=str(job.id), worker_id=self.worker_id)
        try:
            await self._execute_job(job)
        finally:
            clear_context("job_id", "worker_id")
        return True

    async def _execute_job(self, job: Job) -> None:
        """
        Execute a claimed job and record its outcome.

        Args:
            job: The claimed job.
        """
        start_time = time.monotonic()
        progress = self.config.progress

        await progress.write(
            job.id,
            ProgressStage.CLAIMED,
            f"Claimed by {self.worker_id}",
            {"attempt": job.attempts},
        )

        context = JobContext(
            job_id=job.id,
            job_type=job.type,
            attempt=job.attempts,
            payload=job.payload,
            worker_id=self.worker_id,
            claimed_at=job.claimed_at,
            reporter=progress.reporter(job.id),
        )

        logger.info(
            "Executing job",
            extra={"job_id": str(job.id), "job_type": job.type, "attempt": job.attempts},
        )

        with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
            set_job_attributes(span, job, worker_id=self.worker_id)

            if job.type in self.config.handlers:
                await progress.write(job.id, ProgressStage.RUNNING, "Handler started")
            result = await self.config.handlers.execute(context)
            span.set_attribute("job.success", result.success)

        duration = time.monotonic() - start_time
        status = JobStatus.COMPLETED if result.success else JobStatus.FAILED

        if not await self._record_outcome(job, result):
            return

        if result.success:
            logger.info(
                "Job completed successfully",
                extra={"job_id": str(job.id), "duration": f"{duration:.2f}s"},
            )
            await progress.write(job.id, ProgressStage.COMPLETED, "Completed", result.output)
        else:
            logger.warning(
                "Job failed",
                extra={"job_id": str(job.id), "error": result.error, "attempt": job.attempts},
            )
            await progress.write(job.id, ProgressStage.FAILED, result.error)

        self._metrics.record_job_completed(
            job_type=job.type,
            status=status.value,
            duration_seconds=duration,
        )

    async def _record_outcome(self, job: Job, result: JobResult) -> bool:
        """
        Write the terminal status, guarded by this worker still owning the claim.

        Returns:
            True if the outcome was recorded.
        """
        now = utcnow()
        values = {"claimed_at": None, "claimed_by": None, "completed_at": now}
        if result.success:
            target = JobStatus.COMPLETED
            values["result"] = result.output or {}
            values["error"] = None
        else:
            target = JobStatus.FAILED
            values["error"] = result.error or "Unknown error"
            values["result"] = None

        transition = StatusTransition(
            expected=(JobStatus.CLAIMED,),
            target=target,
            values=values,
            claimed_by=self.worker_id,
        )

        async with self._session_context() as session:
            try:
                await JobRepository(session).update_status(job.id, transition)
            except PreconditionFailed:
                logger.warning(
                    "Claim lost before outcome was recorded; leaving job to its new owner",
                    extra={"job_id": str(job.id), "worker_id": self.worker_id},
                )
                return False
            except NotFoundError:
                logger.warning(
                    "Job deleted while it was running",
                    extra={"job_id": str(job.id), "worker_id": self.worker_id},
                )
                return False
        return True


async def run_async() -> None:
    """Run the worker asynchronously."""
    setup_logging(component="worker")
    await init_db()

    worker = Worker(WorkerConfig.from_settings(), get_session_context)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(worker.stop())
        )

    try:
        await worker.start()
    finally:
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
