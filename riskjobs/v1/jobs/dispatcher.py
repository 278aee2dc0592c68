"""
Job dispatcher: creates jobs and routes them to an execution path.
"""

import asyncio
from datetime import timedelta
from typing import Any
from uuid import UUID

from riskjobs.config.logging import get_logger
from riskjobs.config.settings import Settings
from riskjobs.v1.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from riskjobs.v1.jobs.invoker import RemoteInvoker
from riskjobs.v1.jobs.models import Job, JobType
from riskjobs.v1.jobs.processor import JobProcessor
from riskjobs.v1.jobs.store import JobStore

logger = get_logger(__name__)


class JobDispatcher:
    """
    Creates jobs and decides where they run.

    Routing:
    - development/test environments: in-process, as a background task
    - otherwise: the remote invoker when one is configured
    - no remote invoker: in-process, with a warning
    """

    def __init__(
        self,
        settings: Settings,
        store: JobStore,
        processor: JobProcessor,
        invoker: RemoteInvoker | None = None,
    ):
        self.settings = settings
        self.store = store
        self.processor = processor
        self.invoker = invoker
        self._background: set[asyncio.Task] = set()

    async def create(
        self,
        job_type: JobType | str,
        input: dict[str, Any],
        owner_id: str,
        *,
        max_attempts: int | None = None,
    ) -> UUID:
        """
        Persist a PENDING job and route it for execution.

        Returns the job id without waiting for the job; progress is only
        observable by polling.

        Raises:
            ValidationError: If ``job_type`` is not a known job type, or
                ``max_attempts`` is below 1
        """
        try:
            job_type = JobType(job_type)
        except ValueError:
            raise ValidationError(
                f"Unknown job type: {job_type}",
                {"allowed": [t.value for t in JobType]},
            ) from None

        if max_attempts is None:
            max_attempts = self.settings.job_max_attempts
        if max_attempts < 1:
            raise ValidationError(
                "max_attempts must be >= 1", {"max_attempts": max_attempts}
            )

        job = await self.store.create(
            job_type=job_type.value,
            input=input,
            created_by_id=owner_id,
            max_attempts=max_attempts,
        )

        logger.info(
            "Job created",
            job_id=str(job.id),
            job_type=job.type,
            owner_id=owner_id,
            max_attempts=job.max_attempts,
        )

        await self.route(job.id)
        return job.id

    async def find_one(self, job_id: UUID, requester_id: str) -> Job:
        """
        Fetch a job on behalf of its owner.

        Raises:
            NotFoundError: If no job has this id
            ForbiddenError: If the requester did not create the job
        """
        job = await self.store.get(job_id)

        if job is None:
            raise NotFoundError(f"Job {job_id} not found")

        if job.created_by_id != requester_id:
            raise ForbiddenError("You do not own this job")

        return job

    async def route(self, job_id: UUID) -> None:
        """Send a job down exactly one execution path."""
        if self.settings.runs_jobs_locally:
            self._execute_locally(job_id)
            return

        if self.invoker is None:
            logger.warning(
                "No remote worker configured; falling back to local execution",
                job_id=str(job_id),
            )
            self._execute_locally(job_id)
            return

        try:
            await self.invoker.invoke(job_id)
        except Exception:
            # The job stays PENDING and is picked up by redispatch_pending
            logger.exception("Remote job invocation failed", job_id=str(job_id))

    async def redispatch_pending(self, limit: int = 100) -> list[UUID]:
        """
        Route PENDING jobs that still have attempts left and sat idle.

        Drives the retries of jobs the processor released back to PENDING
        and recovers jobs whose remote invocation was lost. Stale PROCESSING
        jobs are released first so they are routed in the same sweep.
        """
        job_ids = await self.processor.recover_stale(limit=limit)

        idle = await self.store.list_redispatchable(
            idle_for=timedelta(seconds=self.settings.job_redispatch_after_s),
            limit=limit,
        )
        job_ids += [job.id for job in idle if job.id not in job_ids]

        for job_id in job_ids:
            await self.route(job_id)

        if job_ids:
            logger.info("Redispatched pending jobs", job_count=len(job_ids))

        return job_ids

    async def drain(self) -> None:
        """Wait for all in-process executions started by this dispatcher."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _execute_locally(self, job_id: UUID) -> None:
        logger.info("Executing job locally", job_id=str(job_id))
        task = asyncio.create_task(self.processor.process_job(job_id))
        self._background.add(task)
        task.add_done_callback(self._on_local_done)

    def _on_local_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Local job execution failed",
                error=str(error),
                exc_info=error,
            )
