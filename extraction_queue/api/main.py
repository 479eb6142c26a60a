"""
FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from extraction_queue import __version__
from extraction_queue.api.routes import extractions_router, health_router, jobs_router
from extraction_queue.config import get_settings
from extraction_queue.db import close_db, init_db
from extraction_queue.errors import (
    ConflictError,
    JobQueueError,
    NotFoundError,
    PreconditionFailed,
    ValidationError,
)
from extraction_queue.observability.logging import setup_logging
from extraction_queue.observability.metrics import setup_metrics
from extraction_queue.observability.tracing import instrument_fastapi, setup_tracing

logger = logging.getLogger(__name__)

# Fallback mapping for store errors a route does not translate itself
ERROR_STATUS = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    PreconditionFailed: status.HTTP_409_CONFLICT,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Sets up observability, then opens the database engine for the
    lifetime of the process.
    """
    settings = get_settings()
    setup_logging(component="api")
    setup_metrics()
    setup_tracing()
    await init_db()

    logger.info(
        "API started",
        extra={
            "version": __version__,
            "progress_dir": settings.progress_dir,
            "stale_claim_timeout_seconds": settings.stale_claim_timeout_seconds,
        },
    )

    yield

    await close_db()
    logger.info("API shutdown")


async def job_queue_error_handler(request: Request, exc: JobQueueError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    logger.warning(
        "Unhandled job queue error",
        extra={"path": request.url.path, "error_type": type(exc).__name__, "error": str(exc)},
    )
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: The configured application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Extraction Queue API",
        description="Durable job queue and worker engine for long-running extraction tasks",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(JobQueueError, job_queue_error_handler)

    app.include_router(health_router)
    app.include_router(jobs_router)
    app.include_router(extractions_router)

    if settings.otel_enabled:
        instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()

    uvicorn.run(
        "extraction_queue.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


app = create_app()


if __name__ == "__main__":
    run()
