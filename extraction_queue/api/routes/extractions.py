"""
Extraction routes.

Convenience endpoints for enqueueing claude_extraction jobs and resubmitting
a rejected extraction with a new prompt.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from extraction_queue.constants import API_V1_PREFIX, JobType
from extraction_queue.db import get_async_session
from extraction_queue.errors import ConflictError, ValidationError
from extraction_queue.services.admin import JobAdmin
from extraction_queue.services.enqueue import EnqueueService
from extraction_queue.services.extraction import (
    build_extraction_payload,
    extraction_idempotency_key,
    requeue_idempotency_key,
    timestamp_ms,
)
from extraction_queue.types.api import (
    ExtractionRequest,
    ExtractionResponse,
    RequeueExtractionRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/extractions", tags=["Extractions"])


async def _enqueue_extraction(
    session: AsyncSession,
    payload: dict,
    idempotency_key: str,
    group_key: str | None,
):
    try:
        job, created = await EnqueueService(session).enqueue(
            JobType.CLAUDE_EXTRACTION,
            payload,
            idempotency_key=idempotency_key,
            group_key=group_key,
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    except ConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    await session.commit()
    return job, created


@router.post(
    "",
    response_model=ExtractionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enqueue an extraction",
    description=(
        "Enqueue a claude_extraction job. Without an explicit idempotency key, "
        "one is derived from the prompt hash and the current time."
    ),
)
async def enqueue_extraction(
    request: ExtractionRequest,
    response: Response,
    session: AsyncSession = Depends(get_async_session),
) -> ExtractionResponse:
    ts = timestamp_ms()
    payload = build_extraction_payload(
        request.prompt,
        name=request.name,
        branch=request.branch,
        origin_url=request.origin_url,
        target_path=request.target_path,
        requirement_id=request.requirement_id,
        ts=ts,
    )
    key = request.idempotency_key or extraction_idempotency_key(payload["prompt_hash"], ts)

    job, created = await _enqueue_extraction(session, payload, key, request.group_key)
    if not created:
        response.status_code = status.HTTP_200_OK

    return ExtractionResponse(
        id=job.id,
        name=job.payload.get("name") or payload["name"],
        status=job.status,
        created_at=job.created_at,
        created=created,
    )


@router.post(
    "/requeue",
    response_model=ExtractionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Resubmit an extraction",
    description=(
        "Enqueue a new extraction with an updated prompt for a rejected one. "
        "The original job is not modified; the returned id is the new tracking handle."
    ),
)
async def requeue_extraction(
    request: RequeueExtractionRequest,
    session: AsyncSession = Depends(get_async_session),
) -> ExtractionResponse:
    """
    Resubmit an extraction.

    Raises:
        HTTPException: 404 if the original job does not exist, 422 if it is
            not an extraction.
    """
    original = await JobAdmin(session).get_job(request.original_job_id)
    if original is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Original job not found")
    if original.type != JobType.CLAUDE_EXTRACTION:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Job {original.id} is a {original.type} job, not an extraction",
        )

    ts = timestamp_ms()
    payload = build_extraction_payload(
        request.updated_prompt,
        branch=original.payload.get("branch"),
        origin_url=original.payload.get("origin_url"),
        ts=ts,
    )
    key = requeue_idempotency_key(original.id, ts)

    job, created = await _enqueue_extraction(session, payload, key, original.group_key)

    logger.info(
        "Extraction resubmitted",
        extra={"job_id": str(job.id), "resubmitted_from": str(original.id)},
    )

    return ExtractionResponse(
        id=job.id,
        name=payload["name"],
        status=job.status,
        created_at=job.created_at,
        created=created,
        resubmitted_from=original.id,
    )
