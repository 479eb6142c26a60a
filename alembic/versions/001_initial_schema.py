"""Initial schema with jobs table

Revision ID: 001
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enum using raw SQL with IF NOT EXISTS
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE job_status AS ENUM ('pending', 'claimed', 'completed', 'failed');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    # Create jobs table
    op.create_table(
        "jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("type", sa.String(64), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "status",
            postgresql.ENUM("pending", "claimed", "completed", "failed", name="job_status", create_type=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("idempotency_key", sa.String(255), nullable=True),
        sa.Column("group_key", sa.String(255), nullable=True),
        sa.Column("batch_id", sa.String(255), nullable=True),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("claimed_at", sa.DateTime, nullable=True),
        sa.Column("claimed_by", sa.String(255), nullable=True),
        sa.Column("result", postgresql.JSONB, nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime,
            nullable=False,
            server_default=sa.text("(now() at time zone 'utc')"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime,
            nullable=False,
            server_default=sa.text("(now() at time zone 'utc')"),
        ),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("attempts >= 0", name="ck_jobs_attempts_non_negative"),
        sa.CheckConstraint(
            "(status = 'claimed') = (claimed_at IS NOT NULL)",
            name="ck_jobs_claimed_at_iff_claimed",
        ),
    )

    # Create indexes
    op.create_index("ix_jobs_type", "jobs", ["type"])
    op.create_index("ix_jobs_status", "jobs", ["status"])
    op.create_index("ix_jobs_group_key", "jobs", ["group_key"])
    op.create_index("ix_jobs_claim_scan", "jobs", ["status", "created_at"])

    # Create unique constraint for idempotency; NULL keys never collide
    op.create_unique_constraint(
        "uq_jobs_idempotency_key",
        "jobs",
        ["idempotency_key"],
    )

    # Create partial index for stale-claim lookup
    op.execute("""
        CREATE INDEX ix_jobs_claimed_at
        ON jobs (claimed_at)
        WHERE status = 'claimed'
    """)


def downgrade() -> None:
    # Drop indexes
    op.execute("DROP INDEX IF EXISTS ix_jobs_claimed_at")
    op.drop_constraint("uq_jobs_idempotency_key", "jobs")
    op.drop_index("ix_jobs_claim_scan")
    op.drop_index("ix_jobs_group_key")
    op.drop_index("ix_jobs_status")
    op.drop_index("ix_jobs_type")

    # Drop table
    op.drop_table("jobs")

    # Drop enum
    op.execute("DROP TYPE IF EXISTS job_status")
