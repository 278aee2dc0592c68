"""
Job API endpoints: submission, status polling and the worker intake.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, status
from fastapi.responses import JSONResponse

from riskjobs.config.logging import get_logger
from riskjobs.v1.core.exceptions import create_success_response
from riskjobs.v1.core.security import Principal, PrincipalDep, WorkerTokenDep
from riskjobs.v1.jobs.engine import JobEngine, get_engine
from riskjobs.v1.jobs.models import JobStatus
from riskjobs.v1.jobs.schemas import (
    JobCreate,
    JobResponse,
    JobSubmitResponse,
    WorkerResult,
)
from riskjobs.worker import handle_event, parse_event

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])
worker_router = APIRouter(prefix="/worker", tags=["worker"])


@router.post("", response_model=dict, status_code=status.HTTP_202_ACCEPTED)
async def submit_job(
    job_request: JobCreate,
    principal: Principal = PrincipalDep,
    engine: JobEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Submit a job; poll GET /jobs/{job_id} for its outcome."""

    job_id = await engine.dispatcher.create(
        job_request.type,
        job_request.input,
        principal.user_id,
        max_attempts=job_request.max_attempts,
    )

    response = JobSubmitResponse(
        job_id=job_id,
        status=JobStatus.PENDING.value,
        poll_interval_ms=engine.settings.job_poll_interval_ms,
    )
    return create_success_response(data=response.model_dump(mode="json"))


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID,
    principal: Principal = PrincipalDep,
    engine: JobEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Poll a job owned by the caller."""

    job = await engine.dispatcher.find_one(job_id, principal.user_id)
    job_data = JobResponse.model_validate(job)

    return create_success_response(data=job_data.model_dump(mode="json"))


@worker_router.post(
    "/invoke",
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[WorkerTokenDep],
)
async def invoke_worker(
    event: dict[str, Any],
    background_tasks: BackgroundTasks,
    engine: JobEngine = Depends(get_engine),
) -> JSONResponse:
    """Accept a worker envelope and process the job after responding."""

    job_id = parse_event(event)
    if job_id is None:
        result = WorkerResult(success=False, error="Invalid jobId format")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=result.model_dump(by_alias=True),
        )

    background_tasks.add_task(handle_event, engine.processor, event)
    logger.info("Worker invocation accepted", job_id=str(job_id))

    result = WorkerResult(success=True, job_id=str(job_id))
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=result.model_dump(by_alias=True),
    )
