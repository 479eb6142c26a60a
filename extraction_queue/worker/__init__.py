"""
Worker module.
Contains the polling worker, the handler registry and the agent runner.
"""

from extraction_queue.worker.handlers import HandlerRegistry, JobHandler
from extraction_queue.worker.main import Worker, WorkerConfig
from extraction_queue.worker.progress import ProgressStore

__all__ = [
    "Worker",
    "WorkerConfig",
    "HandlerRegistry",
    "JobHandler",
    "ProgressStore",
]
