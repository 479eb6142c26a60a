"""
Database module.
Contains database connection, models, and repository implementations.
"""

from extraction_queue.db.connection import (
    close_db,
    create_schema,
    create_session_factory,
    get_async_session,
    get_engine,
    get_session_context,
    init_db,
    session_scope,
)
from extraction_queue.db.models import Base, Job, utcnow
from extraction_queue.db.repository import JobRepository

__all__ = [
    "get_async_session",
    "get_session_context",
    "session_scope",
    "create_session_factory",
    "create_schema",
    "get_engine",
    "init_db",
    "close_db",
    "Job",
    "Base",
    "JobRepository",
    "utcnow",
]
