"""
Health check routes.
"""

import logging
import os
from pathlib import Path

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from extraction_queue import __version__
from extraction_queue.config import get_settings
from extraction_queue.db import get_async_session
from extraction_queue.db.models import utcnow
from extraction_queue.observability.metrics import get_metrics
from extraction_queue.types.api import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


async def _database_ok(session: AsyncSession) -> bool:
    try:
        await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Database check failed", extra={"error": str(e)})
        return False
    return True


def _progress_dir_writable(directory: str) -> bool:
    """The directory, or the nearest existing ancestor it will be created under, is writable."""
    path = Path(directory).resolve()
    while not path.exists() and path != path.parent:
        path = path.parent
    return path.is_dir() and os.access(path, os.W_OK)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the database connection and the progress directory.",
)
async def health_check(
    session: AsyncSession = Depends(get_async_session),
) -> HealthResponse:
    """
    Perform a health check.

    Checks database connectivity and whether progress records can be
    written. Progress is advisory, so only the database decides the status.

    Args:
        session: Database session.

    Returns:
        HealthResponse with service status.
    """
    db_ok = await _database_ok(session)
    progress_ok = _progress_dir_writable(get_settings().progress_dir)

    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=__version__,
        database="healthy" if db_ok else "unhealthy",
        progress_store="healthy" if progress_ok else "unwritable",
        timestamp=utcnow(),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check(
    session: AsyncSession = Depends(get_async_session),
) -> dict:
    """
    Kubernetes readiness probe endpoint.

    Args:
        session: Database session.

    Returns:
        Ready status.
    """
    return {"ready": await _database_ok(session)}


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics() -> Response:
    """
    Expose Prometheus metrics.

    Returns:
        Prometheus-formatted metrics.
    """
    metrics_collector = get_metrics()
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
