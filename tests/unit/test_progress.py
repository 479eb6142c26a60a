"""
Unit tests for the progress store.
"""

from pathlib import Path
from uuid import uuid4

from extraction_queue.constants import ProgressStage
from extraction_queue.worker.progress import ProgressStore


class TestProgressStore:
    """Tests for ProgressStore."""

    async def test_write_then_read(self, tmp_path: Path):
        store = ProgressStore(tmp_path / "progress")
        job_id = uuid4()

        assert await store.write(job_id, ProgressStage.RUNNING, "working", {"lines": 3})

        record = await store.read(job_id)
        assert record.job_id == job_id
        assert record.stage == ProgressStage.RUNNING
        assert record.message == "working"
        assert record.data == {"lines": 3}

    async def test_latest_write_wins(self, tmp_path: Path):
        store = ProgressStore(tmp_path)
        job_id = uuid4()

        await store.write(job_id, ProgressStage.CLAIMED)
        await store.write(job_id, ProgressStage.COMPLETED, "done")

        record = await store.read(job_id)
        assert record.stage == ProgressStage.COMPLETED
        assert record.data == {}
        assert sorted(p.name for p in tmp_path.iterdir()) == [f"{job_id}.json"]

    async def test_read_missing(self, tmp_path: Path):
        assert await ProgressStore(tmp_path).read(uuid4()) is None

    async def test_read_corrupt(self, tmp_path: Path):
        store = ProgressStore(tmp_path)
        job_id = uuid4()
        store.path_for(job_id).write_text("{not json")

        assert await store.read(job_id) is None

    async def test_write_failure_is_not_raised(self, tmp_path: Path):
        """A progress write must never fail the job."""
        blocker = tmp_path / "blocker"
        blocker.write_text("a file where the directory should be")
        store = ProgressStore(blocker / "progress")

        assert await store.write(uuid4(), ProgressStage.RUNNING, "x") is False

    async def test_unserializable_data_is_not_raised(self, tmp_path: Path):
        store = ProgressStore(tmp_path)

        assert await store.write(uuid4(), ProgressStage.RUNNING, "x", {"obj": object()}) is False

    async def test_reporter_binds_job(self, tmp_path: Path):
        store = ProgressStore(tmp_path)
        job_id = uuid4()

        await store.reporter(job_id)(ProgressStage.RUNNING, "step 1", None)

        record = await store.read(job_id)
        assert record.message == "step 1"
