"""
Per-job progress records.

One JSON file per job id under the progress directory. Records are for UI
feedback only and never authoritative; a failed write is logged and
otherwise ignored so that it cannot fail the job.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from extraction_queue.constants import ProgressStage
from extraction_queue.db.models import utcnow
from extraction_queue.types.job import ProgressRecord, ProgressReporter

logger = logging.getLogger(__name__)


class ProgressStore:
    """File-backed store of the latest progress record of each job."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def path_for(self, job_id: UUID) -> Path:
        return self.directory / f"{job_id}.json"

    async def write(
        self,
        job_id: UUID,
        stage: ProgressStage,
        message: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> bool:
        """
        Replace the job's progress record.

        Returns:
            True if the record was written.
        """
        record = ProgressRecord(
            job_id=job_id,
            stage=stage,
            message=message,
            data=data or {},
            updated_at=utcnow(),
        )
        try:
            await asyncio.to_thread(self._write_atomic, record)
        except (OSError, TypeError, ValueError) as e:
            logger.warning(
                "Failed to write progress record",
                extra={"job_id": str(job_id), "stage": str(stage), "error": str(e)},
            )
            return False
        return True

    def _write_atomic(self, record: ProgressRecord) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self.path_for(record.job_id)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{record.job_id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(record.model_dump_json())
            os.replace(tmp_path, target)
        except Exception:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    async def read(self, job_id: UUID) -> ProgressRecord | None:
        """
        Read the job's latest progress record.

        Returns:
            The record, or None if there is none or it cannot be parsed.
        """
        path = self.path_for(job_id)
        try:
            content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(
                "Failed to read progress record",
                extra={"job_id": str(job_id), "error": str(e)},
            )
            return None

        try:
            return ProgressRecord.model_validate(json.loads(content))
        except (ValueError, PydanticValidationError) as e:
            logger.warning(
                "Corrupt progress record",
                extra={"job_id": str(job_id), "error": str(e)},
            )
            return None

    def reporter(self, job_id: UUID) -> ProgressReporter:
        """Bind the store to one job, for ``JobContext.reporter``."""

        async def report(
            stage: ProgressStage,
            message: str | None = None,
            data: dict[str, Any] | None = None,
        ) -> None:
            await self.write(job_id, stage, message, data)

        return report
