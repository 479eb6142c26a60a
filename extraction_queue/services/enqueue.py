"""
Enqueue service.

Validates new jobs and inserts them, deduplicating on the idempotency key.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from extraction_queue.constants import (
    MAX_GROUP_KEY_LENGTH,
    MAX_IDEMPOTENCY_KEY_LENGTH,
    MAX_JOB_TYPE_LENGTH,
    SPAN_ENQUEUE_JOB,
    JobStatus,
)
from extraction_queue.db.models import Job
from extraction_queue.db.repository import JobRepository
from extraction_queue.errors import ConflictError, ValidationError
from extraction_queue.observability.metrics import get_metrics
from extraction_queue.observability.tracing import get_tracer, set_job_attributes
from extraction_queue.types.job import PAYLOAD_MODELS

logger = logging.getLogger(__name__)

# Insert, lookup and key-release rounds before giving up on a contended key
KEY_INSERT_ATTEMPTS = 3


def validate_enqueue(
    job_type: str,
    payload: Any,
    idempotency_key: str | None = None,
    group_key: str | None = None,
) -> dict[str, Any]:
    """
    Check enqueue input before anything is written.

    Payloads of built-in job types are checked against their model; other
    types only need a JSON-serializable mapping.

    Returns:
        The payload as a plain dict.

    Raises:
        ValidationError: If a field is missing or malformed.
    """
    if not isinstance(job_type, str) or not job_type.strip():
        raise ValidationError("Job type is required")
    if len(job_type) > MAX_JOB_TYPE_LENGTH:
        raise ValidationError(f"Job type exceeds {MAX_JOB_TYPE_LENGTH} characters")

    if not isinstance(payload, Mapping):
        raise ValidationError("Payload must be a JSON object")
    payload = dict(payload)
    try:
        json.dumps(payload)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Payload is not JSON-serializable: {e}") from e

    if idempotency_key is not None:
        if not idempotency_key.strip():
            raise ValidationError("Idempotency key must not be empty")
        if len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH:
            raise ValidationError(
                f"Idempotency key exceeds {MAX_IDEMPOTENCY_KEY_LENGTH} characters"
            )

    if group_key is not None and len(group_key) > MAX_GROUP_KEY_LENGTH:
        raise ValidationError(f"Group key exceeds {MAX_GROUP_KEY_LENGTH} characters")

    model = PAYLOAD_MODELS.get(job_type)
    if model is not None:
        try:
            model.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid {job_type} payload: {e}") from e

    return payload


class EnqueueService:
    """Creates pending jobs. Callers commit the session."""

    def __init__(self, session: AsyncSession):
        self._repo = JobRepository(session)
        self._metrics = get_metrics()

    async def enqueue(
        self,
        job_type: str,
        payload: Mapping[str, Any],
        idempotency_key: str | None = None,
        group_key: str | None = None,
    ) -> tuple[Job, bool]:
        """
        Enqueue a job, returning the existing one for a known idempotency key
        unless that job has failed.

        Args:
            job_type: The handler name.
            payload: The job payload.
            idempotency_key: Optional deduplication key.
            group_key: Optional grouping key used by batch lock.

        Returns:
            Tuple of (Job, created) where created is False for a deduplicated enqueue.

        Raises:
            ValidationError: If the input is malformed.
        """
        payload = validate_enqueue(job_type, payload, idempotency_key, group_key)

        with get_tracer().start_as_current_span(SPAN_ENQUEUE_JOB) as span:
            span.set_attribute("job.type", job_type)

            if idempotency_key is None:
                job = await self._repo.insert(job_type, payload, group_key=group_key)
            else:
                job, created = await self._insert_once(job_type, payload, idempotency_key, group_key)
                if not created:
                    set_job_attributes(span, job, deduplicated=True)
                    logger.info(
                        "Returned existing job (idempotent)",
                        extra={
                            "job_id": str(job.id),
                            "idempotency_key": idempotency_key,
                            "status": str(job.status),
                        },
                    )
                    return job, False

            set_job_attributes(span, job, deduplicated=False)

        self._metrics.record_job_enqueued(job_type)
        logger.info(
            "Job enqueued",
            extra={
                "job_id": str(job.id),
                "job_type": job_type,
                "idempotency_key": idempotency_key,
            },
        )
        return job, True

    async def _insert_once(
        self,
        job_type: str,
        payload: dict[str, Any],
        idempotency_key: str,
        group_key: str | None,
    ) -> tuple[Job, bool]:
        """
        Insert under an idempotency key or return the job already holding it.

        A failed holder does not deduplicate: its key is released and the
        insert is tried again. The unique constraint arbitrates concurrent
        callers, so at most one of them creates the row.

        Raises:
            ConflictError: If the key keeps changing hands between insert and lookup.
        """
        for _ in range(KEY_INSERT_ATTEMPTS):
            job = await self._repo.insert_if_absent(
                job_type, payload, idempotency_key, group_key=group_key
            )
            if job is not None:
                return job, True

            existing = await self._repo.find_by_idempotency_key(idempotency_key)
            if existing is None:
                # Holder was deleted between insert and lookup
                continue
            if existing.status != JobStatus.FAILED:
                return existing, False

            if await self._repo.release_idempotency_key(existing.id):
                logger.info(
                    "Released idempotency key of failed job",
                    extra={"job_id": str(existing.id), "idempotency_key": idempotency_key},
                )

        raise ConflictError(f"Could not enqueue under idempotency key {idempotency_key!r}")
