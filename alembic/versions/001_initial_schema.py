"""Initial schema with jobs table

Revision ID: 001
Revises: 
Create Date: 2026-10-18 00:00:00.000000

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

JOB_STATUSES = ("pending", "waiting", "in-progress", "completed", "failed", "cancelled")


def upgrade() -> None:
    # Create enum using raw SQL with IF NOT EXISTS
    statuses = ", ".join(f"'{status}'" for status in JOB_STATUSES)
    op.execute(f"""
        DO $$ BEGIN
            CREATE TYPE job_status AS ENUM ({statuses});
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    # Create jobs table
    op.create_table(
        "jobs",
        sa.Column("id", sa.Integer, autoincrement=True, nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "status",
            postgresql.ENUM(*JOB_STATUSES, name="job_status", create_type=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column(
            "scheduled_time",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("retries", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="3"),
        sa.Column("lease_owner", sa.String(255), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("retries >= 0", name="ck_jobs_retries_non_negative"),
        sa.CheckConstraint("max_retries >= 0", name="ck_jobs_max_retries_non_negative"),
    )

    # Claim lookups: oldest eligible job first
    op.create_index("ix_jobs_claim", "jobs", ["status", "scheduled_time"])

    # Reaper lookups for lapsed leases
    op.create_index("ix_jobs_lease_expiry", "jobs", ["status", "lease_expires_at"])

    # Partial index so claims only walk the claimable backlog
    op.execute("""
        CREATE INDEX ix_jobs_claimable
        ON jobs (scheduled_time, id)
        WHERE status IN ('pending', 'waiting')
    """)


def downgrade() -> None:
    # Drop indexes
    op.execute("DROP INDEX IF EXISTS ix_jobs_claimable")
    op.drop_index("ix_jobs_lease_expiry")
    op.drop_index("ix_jobs_claim")

    # Drop table
    op.drop_table("jobs")

    # Drop enum
    op.execute("DROP TYPE IF EXISTS job_status")
