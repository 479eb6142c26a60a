"""
Job handlers registry and implementations.

Job handlers must tolerate being executed more than once for the same job:
a claim held past the stale-claim timeout is handed to another worker.
"""

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Awaitable, Callable

from extraction_queue.config import Settings
from extraction_queue.constants import JobType
from extraction_queue.errors import HandlerError
from extraction_queue.types.job import (
    ClaudeExtractionPayload,
    CreateFilePayload,
    DeleteFilePayload,
    EchoPayload,
    JobContext,
    JobResult,
)
from extraction_queue.worker.agent import AgentRunner

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[JobContext], Awaitable[JobResult]]


class HandlerRegistry:
    """
    Maps job types to handlers.

    Each worker owns its registry, so independent workers in one process can
    run with different handler sets.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, JobHandler] = {}

    def register(self, job_type: str) -> Callable[[JobHandler], JobHandler]:
        """
        Decorator to register a job handler.

        Args:
            job_type: The job type this handler processes.

        Returns:
            Decorator function.

        Example:
            @registry.register("send_email")
            async def handle_send_email(context: JobContext) -> JobResult:
                ...
        """

        def decorator(handler: JobHandler) -> JobHandler:
            self.add(job_type, handler)
            return handler

        return decorator

    def add(self, job_type: str, handler: JobHandler) -> None:
        self._handlers[job_type] = handler
        logger.debug(f"Registered handler for job type: {job_type}")

    def get(self, job_type: str) -> JobHandler | None:
        return self._handlers.get(job_type)

    def job_types(self) -> list[str]:
        """List all registered job types."""
        return sorted(self._handlers)

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._handlers

    @classmethod
    def with_defaults(cls, settings: Settings | None = None) -> "HandlerRegistry":
        """
        Build a registry holding the built-in handlers.

        Args:
            settings: Settings used to configure the agent runner.

        Returns:
            HandlerRegistry: A new registry.
        """
        registry = cls()
        registry.add(JobType.ECHO, handle_echo)
        registry.add(JobType.CREATE_FILE, handle_create_file)
        registry.add(JobType.DELETE_FILE, handle_delete_file)
        registry.add(
            JobType.CLAUDE_EXTRACTION,
            ExtractionHandler(AgentRunner.from_settings(settings)),
        )
        return registry

    async def execute(self, context: JobContext) -> JobResult:
        """
        Execute a job using the appropriate handler.

        Handler exceptions are converted into an unsuccessful result; they
        never propagate to the worker loop.

        Args:
            context: The job context.

        Returns:
            JobResult from the handler.
        """
        handler = self.get(context.job_type)
        if handler is None:
            logger.error(
                f"No handler for job type: {context.job_type}",
                extra={"job_id": str(context.job_id)},
            )
            return JobResult(
                success=False,
                error=f"No handler registered for job type: {context.job_type}",
            )

        start = time.monotonic()
        try:
            result = await handler(context)
        except HandlerError as e:
            logger.warning(
                "Handler failed",
                extra={"job_id": str(context.job_id), "error": str(e)},
            )
            result = JobResult(success=False, error=str(e))
        except Exception as e:
            logger.exception(
                "Handler raised exception",
                extra={"job_id": str(context.job_id), "error": str(e)},
            )
            result = JobResult(success=False, error=f"{type(e).__name__}: {e}")

        result.duration_ms = (time.monotonic() - start) * 1000
        return result


# ============================================================================
# Built-in job handlers
# ============================================================================


async def handle_echo(context: JobContext) -> JobResult:
    """
    Echo handler for testing.

    Returns the payload message as output.
    """
    payload = EchoPayload.model_validate(context.payload)
    logger.info(
        "Echo job executing",
        extra={"job_id": str(context.job_id), "echo_message": payload.message},
    )
    return JobResult(success=True, output={"echo": payload.message})


def _write_file_atomic(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.tmp.{time.time_ns()}")
    tmp_path.write_text(content, encoding="utf-8")
    os.replace(tmp_path, path)


async def handle_create_file(context: JobContext) -> JobResult:
    """
    Write a file atomically.

    An existing file is left alone unless ``overwrite`` is set.
    """
    payload = CreateFilePayload.model_validate(context.payload)
    path = Path(payload.path)

    if path.exists() and not payload.overwrite:
        logger.info(
            "File already exists, skipping",
            extra={"job_id": str(context.job_id), "path": str(path)},
        )
        return JobResult(success=True, output={"path": str(path), "created": False})

    await asyncio.to_thread(_write_file_atomic, path, payload.content)
    logger.info("Created file", extra={"job_id": str(context.job_id), "path": str(path)})
    return JobResult(success=True, output={"path": str(path), "created": True})


async def handle_delete_file(context: JobContext) -> JobResult:
    payload = DeleteFilePayload.model_validate(context.payload)
    path = Path(payload.path)

    try:
        await asyncio.to_thread(path.unlink)
    except FileNotFoundError:
        if payload.require_exists:
            raise HandlerError(f"File not found: {path}") from None
        logger.info("File already gone", extra={"job_id": str(context.job_id), "path": str(path)})
        return JobResult(success=True, output={"path": str(path), "deleted": False})

    logger.info("Deleted file", extra={"job_id": str(context.job_id), "path": str(path)})
    return JobResult(success=True, output={"path": str(path), "deleted": True})


class ExtractionHandler:
    """Runs a claude_extraction prompt through the external agent."""

    def __init__(self, runner: AgentRunner):
        self.runner = runner

    async def __call__(self, context: JobContext) -> JobResult:
        payload = ClaudeExtractionPayload.model_validate(context.payload)
        logger.info(
            "Running extraction",
            extra={
                "job_id": str(context.job_id),
                "job_name": payload.name,
                "branch": payload.branch,
                "prompt_hash": payload.prompt_hash,
                "requirement_id": payload.requirement_id,
            },
        )
        await context.report_progress(
            "Starting agent",
            {"name": payload.name, "branch": payload.branch, "attempt": context.attempt},
        )

        output = await self.runner.run(payload, context)
        output.update(
            {
                "name": payload.name,
                "prompt_hash": payload.prompt_hash,
                "requirement_id": payload.requirement_id,
            }
        )
        return JobResult(success=True, output=output)
