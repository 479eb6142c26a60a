"""
Unit tests for job handlers.
"""

from pathlib import Path
from uuid import uuid4

import pytest

from extraction_queue.constants import JobType
from extraction_queue.errors import HandlerError
from extraction_queue.types.job import JobContext, JobResult
from extraction_queue.worker.handlers import (
    ExtractionHandler,
    HandlerRegistry,
    handle_create_file,
    handle_delete_file,
    handle_echo,
)


def make_context(job_type: str, payload: dict) -> JobContext:
    return JobContext(
        job_id=uuid4(),
        job_type=job_type,
        attempt=1,
        payload=payload,
        worker_id="test-worker",
    )


class TestHandlerRegistry:
    """Tests for HandlerRegistry."""

    def test_defaults_cover_builtin_types(self):
        registry = HandlerRegistry.with_defaults()

        assert registry.job_types() == sorted(t.value for t in JobType)
        assert registry.get(JobType.ECHO) is handle_echo
        assert isinstance(registry.get(JobType.CLAUDE_EXTRACTION), ExtractionHandler)
        assert "nonexistent" not in registry

    def test_registries_are_independent(self):
        first = HandlerRegistry()
        second = HandlerRegistry()

        @first.register("custom")
        async def handle_custom(context: JobContext) -> JobResult:
            return JobResult(success=True)

        assert "custom" in first
        assert "custom" not in second
        assert first.get("custom") is handle_custom

    async def test_execute_unknown_type(self):
        result = await HandlerRegistry().execute(make_context("nonexistent", {}))

        assert result.success is False
        assert result.error == "No handler registered for job type: nonexistent"

    async def test_execute_converts_handler_error(self):
        registry = HandlerRegistry()

        @registry.register("flaky")
        async def handle_flaky(context: JobContext) -> JobResult:
            raise HandlerError("upstream unavailable")

        result = await registry.execute(make_context("flaky", {}))

        assert result.success is False
        assert result.error == "upstream unavailable"
        assert result.duration_ms is not None

    async def test_execute_converts_unexpected_exception(self):
        registry = HandlerRegistry()

        @registry.register("broken")
        async def handle_broken(context: JobContext) -> JobResult:
            raise KeyError("missing")

        result = await registry.execute(make_context("broken", {}))

        assert result.success is False
        assert result.error.startswith("KeyError")

    async def test_execute_rejects_bad_payload(self):
        """Payload validation errors become a failed result."""
        registry = HandlerRegistry.with_defaults()

        result = await registry.execute(make_context(JobType.ECHO, {"text": "no message"}))

        assert result.success is False
        assert "ValidationError" in result.error


class TestBuiltinHandlers:
    """Tests for the built-in handlers."""

    async def test_echo(self):
        result = await handle_echo(make_context(JobType.ECHO, {"message": "hello"}))

        assert result.success is True
        assert result.output == {"echo": "hello"}

    async def test_create_file(self, tmp_path: Path):
        target = tmp_path / "nested" / "out.txt"

        result = await handle_create_file(
            make_context(JobType.CREATE_FILE, {"path": str(target), "content": "data"})
        )

        assert result.success is True
        assert result.output["created"] is True
        assert target.read_text() == "data"

    async def test_create_file_keeps_existing(self, tmp_path: Path):
        """Running the same job twice leaves the first write in place."""
        target = tmp_path / "out.txt"
        target.write_text("original")

        result = await handle_create_file(
            make_context(JobType.CREATE_FILE, {"path": str(target), "content": "new"})
        )

        assert result.output["created"] is False
        assert target.read_text() == "original"

    async def test_create_file_overwrite(self, tmp_path: Path):
        target = tmp_path / "out.txt"
        target.write_text("original")

        await handle_create_file(
            make_context(
                JobType.CREATE_FILE,
                {"path": str(target), "content": "new", "overwrite": True},
            )
        )

        assert target.read_text() == "new"
        assert [p.name for p in tmp_path.iterdir()] == ["out.txt"]

    async def test_delete_file(self, tmp_path: Path):
        target = tmp_path / "gone.txt"
        target.write_text("x")

        result = await handle_delete_file(make_context(JobType.DELETE_FILE, {"path": str(target)}))

        assert result.output["deleted"] is True
        assert not target.exists()

    async def test_delete_missing_file(self, tmp_path: Path):
        context = make_context(JobType.DELETE_FILE, {"path": str(tmp_path / "missing.txt")})

        result = await handle_delete_file(context)

        assert result.success is True
        assert result.output["deleted"] is False

    async def test_delete_missing_file_required(self, tmp_path: Path):
        context = make_context(
            JobType.DELETE_FILE,
            {"path": str(tmp_path / "missing.txt"), "require_exists": True},
        )

        with pytest.raises(HandlerError, match="File not found"):
            await handle_delete_file(context)
