"""
Job management routes.
"""

import logging
from datetime import timedelta
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from extraction_queue.config import get_settings
from extraction_queue.constants import API_V1_PREFIX, IDEMPOTENCY_KEY_HEADER, JobStatus
from extraction_queue.db import get_async_session
from extraction_queue.db.models import utcnow
from extraction_queue.errors import ConflictError, NotFoundError, PreconditionFailed, ValidationError
from extraction_queue.services.admin import JobAdmin
from extraction_queue.services.enqueue import EnqueueService
from extraction_queue.types.api import (
    DeleteJobResponse,
    EnqueueJobRequest,
    EnqueueJobResponse,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
    LockBatchRequest,
    LockBatchResponse,
    ProgressResponse,
    PurgeResponse,
)
from extraction_queue.worker.progress import ProgressStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/jobs", tags=["Jobs"])


@router.post(
    "",
    response_model=EnqueueJobResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enqueue a job",
    description=(
        "Enqueue a new job. With an idempotency key (body or header), enqueueing "
        "the same key again returns the existing job with status 200."
    ),
)
async def enqueue_job(
    request: EnqueueJobRequest,
    response: Response,
    idempotency_key: Annotated[str | None, Header(alias=IDEMPOTENCY_KEY_HEADER)] = None,
    session: AsyncSession = Depends(get_async_session),
) -> EnqueueJobResponse:
    """
    Enqueue a new job.

    Args:
        request: Job creation request.
        response: Used to downgrade the status code for deduplicated enqueues.
        idempotency_key: Deduplication key, used when the body carries none.
        session: Database session.

    Returns:
        EnqueueJobResponse with job details.
    """
    key = request.idempotency_key or idempotency_key

    try:
        job, created = await EnqueueService(session).enqueue(
            request.type,
            request.payload,
            idempotency_key=key,
            group_key=request.group_key,
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e
    except ConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    await session.commit()

    if not created:
        response.status_code = status.HTTP_200_OK

    return EnqueueJobResponse(
        id=job.id,
        status=job.status,
        created_at=job.created_at,
        created=created,
        message="Job enqueued" if created else "Job already exists (idempotent)",
    )


@router.get(
    "",
    response_model=JobListResponse,
    summary="List jobs",
    description="List jobs, newest first, with optional status and type filters.",
)
async def list_jobs(
    status_filter: Annotated[JobStatus | None, Query(alias="status")] = None,
    job_type: Annotated[str | None, Query(alias="type")] = None,
    limit: Annotated[int | None, Query(ge=1)] = None,
    offset: Annotated[int, Query(ge=0)] = 0,
    session: AsyncSession = Depends(get_async_session),
) -> JobListResponse:
    settings = get_settings()
    limit = min(limit or settings.jobs_default_page_size, settings.jobs_max_page_size)

    jobs, total = await JobAdmin(session).list_jobs(
        status=status_filter,
        job_type=job_type,
        limit=limit,
        offset=offset,
    )

    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        count=len(jobs),
        total=total,
        limit=limit,
        offset=offset,
    )


@router.delete(
    "",
    response_model=PurgeResponse,
    summary="Purge completed jobs",
    description="Delete completed jobs. Failed and pending jobs are kept.",
)
async def purge_completed(
    older_than_seconds: Annotated[float | None, Query(ge=0)] = None,
    session: AsyncSession = Depends(get_async_session),
) -> PurgeResponse:
    older_than = None
    if older_than_seconds is not None:
        older_than = utcnow() - timedelta(seconds=older_than_seconds)

    purged = await JobAdmin(session).purge_completed(older_than=older_than)
    await session.commit()
    return PurgeResponse(purged=purged)


@router.get(
    "/stats",
    response_model=JobStatsResponse,
    summary="Get job statistics",
    description="Get job counts by status.",
)
async def get_job_stats(
    session: AsyncSession = Depends(get_async_session),
) -> JobStatsResponse:
    stats = await JobAdmin(session).get_stats()
    return JobStatsResponse(**stats)


@router.post(
    "/lock-batch",
    response_model=LockBatchResponse,
    summary="Lock a batch",
    description="Stamp a shared batch id on every completed, unbatched job of a group.",
)
async def lock_batch(
    request: LockBatchRequest,
    session: AsyncSession = Depends(get_async_session),
) -> LockBatchResponse:
    """
    Lock all completed jobs of a group into one batch.

    Raises:
        HTTPException: 404 if no job of the group is eligible.
    """
    try:
        count, batch_id = await JobAdmin(session).lock_batch(request.group_key, request.batch_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    await session.commit()
    return LockBatchResponse(
        locked_count=count,
        batch_id=batch_id,
        message=f"Locked {count} jobs",
    )


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get job details",
    description="Get the full record of a job, including payload and result.",
)
async def get_job(
    job_id: UUID,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Get job details by ID.

    Args:
        job_id: The job UUID.
        session: Database session.

    Returns:
        JobResponse with full job details.

    Raises:
        HTTPException: If job not found.
    """
    job = await JobAdmin(session).get_job(job_id)

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    return JobResponse.model_validate(job)


@router.get(
    "/{job_id}/progress",
    response_model=ProgressResponse,
    summary="Get job progress",
    description="Get the latest best-effort progress record of a job.",
)
async def get_job_progress(
    job_id: UUID,
    session: AsyncSession = Depends(get_async_session),
) -> ProgressResponse:
    if await JobAdmin(session).get_job(job_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")

    record = await ProgressStore(get_settings().progress_dir).read(job_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No progress recorded for this job",
        )

    return ProgressResponse(**record.model_dump())


@router.post(
    "/{job_id}/retry",
    response_model=JobResponse,
    summary="Retry a job",
    description="Move a completed or failed job back to pending.",
)
async def retry_job(
    job_id: UUID,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Retry a terminal job.

    Args:
        job_id: The job UUID.
        session: Database session.

    Returns:
        JobResponse of the pending job.

    Raises:
        HTTPException: 404 if the job does not exist, 409 if it is not terminal.
    """
    try:
        job = await JobAdmin(session).retry_job(job_id)
    except PreconditionFailed as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    await session.commit()
    return JobResponse.model_validate(job)


@router.delete(
    "/{job_id}",
    response_model=DeleteJobResponse,
    summary="Delete a job",
)
async def delete_job(
    job_id: UUID,
    session: AsyncSession = Depends(get_async_session),
) -> DeleteJobResponse:
    deleted = await JobAdmin(session).delete_job(job_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    await session.commit()
    return DeleteJobResponse(id=job_id, deleted=True)
