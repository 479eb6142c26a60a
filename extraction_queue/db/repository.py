"""
Job repository for database operations.
Implements the core data access patterns for job management.
"""

import logging
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID, uuid4

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from extraction_queue.constants import JobStatus
from extraction_queue.db.models import Job, utcnow
from extraction_queue.errors import ConflictError, NotFoundError, PreconditionFailed
from extraction_queue.types.job import ClaimCandidate, StatusTransition

logger = logging.getLogger(__name__)


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Job insertion with idempotency-key deduplication
    - Claim candidate lookup (pending and stale-claimed jobs)
    - Conditional status transitions
    - Bulk delete and batch locking

    The repository never commits; callers own the transaction.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    def _new_row(
        self,
        job_type: str,
        payload: dict[str, Any],
        idempotency_key: str | None,
        group_key: str | None,
    ) -> dict[str, Any]:
        now = utcnow()
        return {
            "id": uuid4(),
            "type": job_type,
            "payload": payload,
            "status": JobStatus.PENDING,
            "idempotency_key": idempotency_key,
            "group_key": group_key,
            "attempts": 0,
            "created_at": now,
            "updated_at": now,
        }

    async def insert(
        self,
        job_type: str,
        payload: dict[str, Any],
        idempotency_key: str | None = None,
        group_key: str | None = None,
    ) -> Job:
        """
        Insert a new pending job.

        Args:
            job_type: The handler name.
            payload: The job payload.
            idempotency_key: Optional unique deduplication key.
            group_key: Optional grouping key.

        Returns:
            The inserted Job.

        Raises:
            ConflictError: If the id or idempotency key already exists. The
                session must be rolled back by the caller.
        """
        job = Job(**self._new_row(job_type, payload, idempotency_key, group_key))
        self._session.add(job)
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise ConflictError(
                f"Job with idempotency key {idempotency_key!r} already exists"
                if idempotency_key
                else f"Job id {job.id} already exists"
            ) from e
        return job

    async def insert_if_absent(
        self,
        job_type: str,
        payload: dict[str, Any],
        idempotency_key: str,
        group_key: str | None = None,
    ) -> Job | None:
        """
        Insert a job unless one with the same idempotency key exists.

        Uses INSERT ... ON CONFLICT DO NOTHING so that concurrent callers with
        the same key are arbitrated by the unique constraint.

        Args:
            job_type: The handler name.
            payload: The job payload.
            idempotency_key: Unique deduplication key.
            group_key: Optional grouping key.

        Returns:
            The inserted Job, or None if the key was already taken.
        """
        dialect = self._session.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert

        stmt = (
            insert(Job)
            .values(**self._new_row(job_type, payload, idempotency_key, group_key))
            .on_conflict_do_nothing(index_elements=["idempotency_key"])
            .returning(Job)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def release_idempotency_key(self, job_id: UUID) -> bool:
        """
        Clear the idempotency key of a failed job so the key can be reused.

        Guarded by ``status = failed``; a job retried in the meantime keeps
        its key.

        Returns:
            True if the key was cleared.
        """
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.status == JobStatus.FAILED,
                    Job.idempotency_key.is_not(None),
                )
            )
            .values(idempotency_key=None, updated_at=utcnow())
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def find_by_id(self, job_id: UUID) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job UUID.

        Returns:
            The Job or None if not found.
        """
        stmt = select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_idempotency_key(self, idempotency_key: str) -> Job | None:
        stmt = (
            select(Job)
            .where(Job.idempotency_key == idempotency_key)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _filters(status: JobStatus | None, job_type: str | None) -> list:
        filters = []
        if status is not None:
            filters.append(Job.status == status)
        if job_type is not None:
            filters.append(Job.type == job_type)
        return filters

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[Job]:
        """
        List jobs with optional filtering, newest first.

        Args:
            status: Optional status filter.
            job_type: Optional type filter.
            limit: Maximum number of jobs to return.
            offset: Offset for pagination.

        Returns:
            The matching jobs.
        """
        stmt = (
            select(Job)
            .where(and_(True, *self._filters(status, job_type)))
            .order_by(Job.created_at.desc(), Job.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def count_jobs(
        self,
        status: JobStatus | None = None,
        job_type: str | None = None,
    ) -> int:
        stmt = select(func.count()).select_from(Job).where(
            and_(True, *self._filters(status, job_type))
        )
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def find_claim_candidates(
        self,
        stale_before: datetime,
        limit: int,
    ) -> list[ClaimCandidate]:
        """
        Find jobs that may be claimed, oldest first.

        A job is a candidate when it is pending, or when it is claimed and
        its claim is older than ``stale_before``.

        Args:
            stale_before: Claims older than this are considered abandoned.
            limit: Maximum number of candidates to return.

        Returns:
            Plain snapshots of the candidate rows.
        """
        stmt = (
            select(Job.id, Job.status, Job.claimed_at, Job.claimed_by)
            .where(
                or_(
                    Job.status == JobStatus.PENDING,
                    and_(
                        Job.status == JobStatus.CLAIMED,
                        Job.claimed_at < stale_before,
                    ),
                )
            )
            .order_by(Job.created_at.asc(), Job.id.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [
            ClaimCandidate(
                job_id=row.id,
                status=JobStatus(row.status),
                claimed_at=row.claimed_at,
                claimed_by=row.claimed_by,
            )
            for row in result.all()
        ]

    async def update_status(self, job_id: UUID, transition: StatusTransition) -> Job:
        """
        Apply one conditional state transition atomically.

        The UPDATE only matches while the row is still in one of the expected
        statuses (and holds the observed claim, when guarded).

        Args:
            job_id: The job UUID.
            transition: Expected state, target state and extra column values.

        Returns:
            The updated Job.

        Raises:
            NotFoundError: If no job with this id exists.
            PreconditionFailed: If the row's state did not match the guard.
        """
        conditions = [Job.id == job_id, Job.status.in_(transition.expected)]
        if transition.claimed_at is not None:
            conditions.append(Job.claimed_at == transition.claimed_at)
        if transition.claimed_by is not None:
            conditions.append(Job.claimed_by == transition.claimed_by)

        values = dict(transition.values)
        values["status"] = transition.target
        values["updated_at"] = utcnow()

        stmt = (
            update(Job)
            .where(and_(*conditions))
            .values(**values)
            .returning(Job)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()
        if job is not None:
            return job

        current = await self._session.scalar(select(Job.status).where(Job.id == job_id))
        if current is None:
            raise NotFoundError(f"Job {job_id} not found", job_id=job_id)
        raise PreconditionFailed(
            f"Job {job_id} is {current}, expected one of "
            f"{', '.join(s.value for s in transition.expected)}",
            job_id=job_id,
        )

    async def delete_by_id(self, job_id: UUID) -> bool:
        """
        Delete a job.

        Returns:
            True if a row was deleted, False if the job did not exist.
        """
        result = await self._session.execute(delete(Job).where(Job.id == job_id))
        return result.rowcount > 0

    async def delete_all_by_status(
        self,
        status: JobStatus,
        older_than: datetime | None = None,
    ) -> int:
        """
        Delete every job in a status.

        Args:
            status: The status whose rows are removed.
            older_than: Optional cut-off; only rows that finished before it
                are removed.

        Returns:
            Number of deleted rows.
        """
        conditions = [Job.status == status]
        if older_than is not None:
            conditions.append(Job.completed_at < older_than)

        result = await self._session.execute(delete(Job).where(and_(*conditions)))
        return result.rowcount

    async def aggregate_counts(self) -> dict[JobStatus, int]:
        """
        Count jobs by status.

        Returns:
            Dictionary of status -> count, with every status present.
        """
        stmt = select(Job.status, func.count()).group_by(Job.status)
        result = await self._session.execute(stmt)

        counts = {status: 0 for status in JobStatus}
        for status, count in result.all():
            counts[JobStatus(status)] = count
        return counts

    async def lock_batch(self, group_key: str, batch_id: str) -> int:
        """
        Stamp ``batch_id`` on every completed, unbatched job of a group.

        Returns:
            Number of jobs locked into the batch.
        """
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.group_key == group_key,
                    Job.status == JobStatus.COMPLETED,
                    Job.batch_id.is_(None),
                )
            )
            .values(batch_id=batch_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount
