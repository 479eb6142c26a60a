"""
Unit tests for the claim protocol.
"""

import asyncio
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from extraction_queue.constants import JobStatus
from extraction_queue.db.connection import session_scope
from extraction_queue.db.models import utcnow
from extraction_queue.db.repository import JobRepository
from extraction_queue.services.admin import JobAdmin
from extraction_queue.services.claim import ClaimProtocol
from extraction_queue.services.enqueue import EnqueueService
from extraction_queue.types.job import StatusTransition

STALE_TIMEOUT = 300


async def _claim(session_factory: async_sessionmaker[AsyncSession], worker_id: str):
    async with session_scope(session_factory) as session:
        return await ClaimProtocol(session, STALE_TIMEOUT).claim_next(worker_id)


class TestClaimProtocol:
    """Tests for ClaimProtocol."""

    async def test_claim_empty_queue(self, db_session: AsyncSession):
        assert await ClaimProtocol(db_session, STALE_TIMEOUT).claim_next("w1") is None

    async def test_claim_oldest_first(
        self,
        db_session: AsyncSession,
        force_state,
    ):
        repo = JobRepository(db_session)
        newer = await repo.insert("echo", {"message": "newer"})
        older = await repo.insert("echo", {"message": "older"})
        await db_session.commit()
        await force_state(older.id, created_at=utcnow() - timedelta(minutes=1))

        job = await ClaimProtocol(db_session, STALE_TIMEOUT).claim_next("w1")

        assert job.id == older.id
        assert job.status == JobStatus.CLAIMED
        assert job.claimed_by == "w1"
        assert job.claimed_at is not None
        assert job.attempts == 1
        assert (await repo.find_by_id(newer.id)).status == JobStatus.PENDING

    async def test_fresh_claim_is_not_reclaimed(self, db_session: AsyncSession):
        repo = JobRepository(db_session)
        await repo.insert("echo", {"message": "x"})
        await db_session.commit()

        claim = ClaimProtocol(db_session, STALE_TIMEOUT)
        assert await claim.claim_next("w1") is not None
        assert await claim.claim_next("w2") is None

    async def test_stale_claim_is_reclaimed(
        self,
        db_session: AsyncSession,
        force_state,
    ):
        """A claim older than the timeout is taken over and counts as a new attempt."""
        repo = JobRepository(db_session)
        job = await repo.insert("echo", {"message": "x"})
        await db_session.commit()
        await force_state(
            job.id,
            status=JobStatus.CLAIMED,
            claimed_at=utcnow() - timedelta(seconds=STALE_TIMEOUT + 60),
            claimed_by="crashed-worker",
            attempts=1,
        )

        reclaimed = await ClaimProtocol(db_session, STALE_TIMEOUT).claim_next("w2")

        assert reclaimed.id == job.id
        assert reclaimed.claimed_by == "w2"
        assert reclaimed.attempts == 2
        assert reclaimed.claimed_at > utcnow() - timedelta(seconds=STALE_TIMEOUT)

    async def test_terminal_jobs_are_never_claimed(
        self,
        db_session: AsyncSession,
        force_state,
        terminal_values,
    ):
        repo = JobRepository(db_session)
        done = await repo.insert("echo", {"message": "done"})
        failed = await repo.insert("echo", {"message": "failed"})
        await db_session.commit()
        await force_state(done.id, **terminal_values(JobStatus.COMPLETED))
        await force_state(failed.id, **terminal_values(JobStatus.FAILED))

        assert await ClaimProtocol(db_session, STALE_TIMEOUT).claim_next("w1") is None

    async def test_concurrent_claimers_get_distinct_jobs(
        self,
        db_session: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        """Each job goes to exactly one worker; surplus workers get nothing."""
        repo = JobRepository(db_session)
        job_ids = set()
        for i in range(3):
            job = await repo.insert("echo", {"message": str(i)})
            job_ids.add(job.id)
        await db_session.commit()

        claimed = await asyncio.gather(
            *(_claim(session_factory, f"w{i}") for i in range(6))
        )

        winners = [job for job in claimed if job is not None]
        assert len(winners) == 3
        assert {job.id for job in winners} == job_ids
        assert len({job.claimed_by for job in winners}) == 3

    async def test_enqueue_claim_complete_purge(self, db_session: AsyncSession):
        """Walk one job through its whole life."""
        enqueue = EnqueueService(db_session)
        job, created = await enqueue.enqueue("echo", {"message": "hi"}, idempotency_key="k1")
        await db_session.commit()
        again, created_again = await enqueue.enqueue(
            "echo", {"message": "hi"}, idempotency_key="k1"
        )
        await db_session.commit()
        assert created is True
        assert created_again is False
        assert again.id == job.id

        claim = ClaimProtocol(db_session, STALE_TIMEOUT)
        claimed = await claim.claim_next("w1")
        assert claimed.id == job.id
        assert await claim.claim_next("w2") is None

        repo = JobRepository(db_session)
        completed = await repo.update_status(
            job.id,
            StatusTransition(
                expected=(JobStatus.CLAIMED,),
                target=JobStatus.COMPLETED,
                values={
                    "claimed_at": None,
                    "claimed_by": None,
                    "result": {"echo": "hi"},
                    "completed_at": utcnow(),
                },
                claimed_by="w1",
            ),
        )
        await db_session.commit()
        assert completed.status == JobStatus.COMPLETED
        assert completed.result == {"echo": "hi"}

        assert await JobAdmin(db_session).purge_completed() == 1
        await db_session.commit()
        assert await repo.find_by_id(job.id) is None
