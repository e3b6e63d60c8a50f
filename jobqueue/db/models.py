"""
SQLAlchemy database models.
Defines the Job table.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobqueue.constants import JobStatus


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing a unit of work in the queue.

    This is the authoritative source of truth for job state.
    All job lifecycle transitions are managed through this table.

    Key constraints:
    - status transitions follow the defined state machine
    - a job is claimable only when status is pending/waiting and
      scheduled_time has passed
    - lease_owner and lease_expires_at identify the worker holding an
      in-progress job and when that claim lapses
    """

    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    # Opaque to the queue, interpreted by the handler
    payload: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
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
    )

    scheduled_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Retry tracking
    retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=3,
    )

    # Lease management
    lease_owner: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        # Claim lookups: status filter then oldest scheduled_time first
        Index("ix_jobs_claim", "status", "scheduled_time"),
        # Reaper lookups for lapsed leases
        Index("ix_jobs_lease_expiry", "status", "lease_expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, status={self.status}, "
            f"retries={self.retries}/{self.max_retries})"
        )
