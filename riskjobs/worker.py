"""
Remote worker entrypoint.

Receives the ``{"jobId": ...}`` envelope sent by the dispatcher, runs one
processing attempt and reports ``{"success": bool, "jobId": ..., "error": ...}``.
"""

from typing import Any
from uuid import UUID

import pydantic

from riskjobs.config.logging import get_logger
from riskjobs.v1.jobs.processor import JobProcessor
from riskjobs.v1.jobs.schemas import WorkerEvent, WorkerResult

logger = get_logger(__name__)


def parse_event(event: dict[str, Any]) -> UUID | None:
    """Extract the job id from a worker envelope, or None if it is malformed."""
    try:
        return UUID(WorkerEvent.model_validate(event).job_id)
    except (pydantic.ValidationError, ValueError, TypeError):
        return None


async def handle_event(processor: JobProcessor, event: dict[str, Any]) -> WorkerResult:
    """Process the job named by a worker envelope."""
    job_id = parse_event(event)
    if job_id is None:
        logger.error("Invalid jobId format", job_id=event.get("jobId"))
        return WorkerResult(success=False, error="Invalid jobId format")

    logger.info("Processing job", job_id=str(job_id))

    try:
        await processor.process_job(job_id)
    except Exception as e:
        logger.exception("Worker failed to process job", job_id=str(job_id))
        return WorkerResult(success=False, job_id=str(job_id), error=str(e))

    logger.info("Job processed", job_id=str(job_id))
    return WorkerResult(success=True, job_id=str(job_id))
