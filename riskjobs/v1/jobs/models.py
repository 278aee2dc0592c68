"""
Job model for trackable asynchronous work.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, TIMESTAMP, CheckConstraint, SmallInteger, Text, func
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from riskjobs.infra.database import Base


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED.value, JobStatus.FAILED.value})


class JobType(str, Enum):
    """Job types, one handler each."""

    AI_PREVIEW = "AI_PREVIEW"
    PARSE_DOCUMENT = "PARSE_DOCUMENT"
    GAP_DETECTION = "GAP_DETECTION"
    RISK_ANALYSIS = "RISK_ANALYSIS"
    REPORT_GENERATION = "REPORT_GENERATION"


class Job(Base):
    """
    A persisted unit of asynchronous work.

    Lifecycle: created PENDING by the dispatcher, claimed into PROCESSING by
    the processor (which increments ``attempts``), then COMPLETED or FAILED,
    or released back to PENDING while attempts remain.
    """

    __tablename__ = "jobs"

    id: Mapped[UUID] = mapped_column(PG_UUID, primary_key=True, default=uuid4)
    type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job type identifier"
    )
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="Job status: PENDING|PROCESSING|COMPLETED|FAILED",
    )
    input: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        server_default="{}",
        comment="Job-specific parameters",
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Handler output, set on completion"
    )
    error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Failure message, set on permanent failure"
    )
    attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="Number of attempts made"
    )
    max_attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=3, comment="Attempt ceiling"
    )
    created_by_id: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Requesting user, owner of the job"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(UTC),
    )
    started_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="First move to PROCESSING"
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Reached a terminal status"
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')",
            name="jobs_status_check",
        ),
        CheckConstraint("attempts >= 0", name="jobs_attempts_check"),
        CheckConstraint("max_attempts >= 1", name="jobs_max_attempts_check"),
    )

    def is_terminal(self) -> bool:
        """Check if the job reached COMPLETED or FAILED."""
        return self.status in TERMINAL_STATUSES

    def has_attempts_left(self) -> bool:
        return self.attempts < self.max_attempts
