"""
Job Pydantic schemas.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from riskjobs.v1.jobs.models import JobType


class JobCreate(BaseModel):
    """Schema for submitting a new job."""

    type: JobType = Field(..., description="Job type")
    input: dict[str, Any] = Field(default_factory=dict, description="Job input")
    max_attempts: int | None = Field(
        default=None, ge=1, le=10, description="Attempt ceiling override"
    )


class JobResponse(BaseModel):
    """Job record as exposed to polling callers."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: str
    status: str
    input: dict[str, Any]
    result: dict[str, Any] | None = None
    error: str | None = None
    attempts: int
    max_attempts: int
    created_by_id: str
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime


class JobSubmitResponse(BaseModel):
    """Returned to callers that just created a job."""

    job_id: UUID
    status: str
    poll_interval_ms: int


class WorkerEvent(BaseModel):
    """Envelope handed to the remote worker."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId", description="Job to process")


class WorkerResult(BaseModel):
    """Reply from the remote worker."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    job_id: str | None = Field(default=None, alias="jobId")
    error: str | None = None
