"""
SQLAlchemy database models.
Defines the Job table.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from extraction_queue.constants import (
    MAX_GROUP_KEY_LENGTH,
    MAX_IDEMPOTENCY_KEY_LENGTH,
    MAX_JOB_TYPE_LENGTH,
    TERMINAL_STATUSES,
    JobStatus,
)

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests); None is stored as SQL NULL
JsonDocument = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the storage format for all timestamps."""
    return datetime.now(UTC).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing one schedulable unit of work.

    This is the authoritative source of truth for job state.
    All lifecycle transitions are conditional updates against this table.

    Key constraints:
    - idempotency_key is unique when present (enqueue deduplication)
    - claimed_at / claimed_by are set exactly while status is CLAIMED
    - attempts only ever increases (incremented on every claim)
    """

    __tablename__ = "jobs"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    type: Mapped[str] = mapped_column(
        String(MAX_JOB_TYPE_LENGTH),
        nullable=False,
        index=True,
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JsonDocument,
        nullable=False,
        default=dict,
    )

    status: Mapped[JobStatus] = mapped_column(
        Enum(
            JobStatus,
            name="job_status",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=JobStatus.PENDING,
        index=True,
    )

    # Deduplication and grouping
    idempotency_key: Mapped[str | None] = mapped_column(
        String(MAX_IDEMPOTENCY_KEY_LENGTH),
        nullable=True,
        unique=True,
    )
    group_key: Mapped[str | None] = mapped_column(
        String(MAX_GROUP_KEY_LENGTH),
        nullable=True,
        index=True,
    )
    batch_id: Mapped[str | None] = mapped_column(
        String(MAX_GROUP_KEY_LENGTH),
        nullable=True,
    )

    # Claim tracking
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )
    claimed_by: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Outcome, written on terminal transition only
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JsonDocument,
        nullable=True,
    )
    error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint("attempts >= 0", name="ck_jobs_attempts_non_negative"),
        CheckConstraint(
            "(status = 'claimed') = (claimed_at IS NOT NULL)",
            name="ck_jobs_claimed_at_iff_claimed",
        ),
        # Candidate scan for claiming: oldest pending/claimed first
        Index("ix_jobs_claim_scan", "status", "created_at"),
        # Stale-claim lookup
        Index(
            "ix_jobs_claimed_at",
            "claimed_at",
            postgresql_where=text("status = 'claimed'"),
        ),
    )

    @property
    def is_terminal(self) -> bool:
        """Check if the job reached completed or failed."""
        return self.status in TERMINAL_STATUSES

    def is_claim_stale(self, timeout_seconds: float, now: datetime | None = None) -> bool:
        """Check if the job is claimed and its claim outlived the timeout."""
        if self.status != JobStatus.CLAIMED or self.claimed_at is None:
            return False
        now = now or utcnow()
        return (now - self.claimed_at).total_seconds() > timeout_seconds

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, type={self.type}, "
            f"status={self.status}, attempts={self.attempts})"
        )
