"""
Job processor: owns the job state machine.

PENDING -> PROCESSING -> COMPLETED | FAILED, with PROCESSING -> PENDING while
attempts remain. The processor never schedules retries itself; a job released
to PENDING waits for the next ``process_job`` invocation.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from riskjobs.config.logging import get_logger
from riskjobs.config.settings import Settings
from riskjobs.v1.core.exceptions import HandlerNotFoundError
from riskjobs.v1.core.registries import CompensatingJobHandler, JobHandler, JobRegistry
from riskjobs.v1.jobs.models import Job, JobStatus, JobType
from riskjobs.v1.jobs.store import JobStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChainRule:
    """Follow-up job created when a job of some type completes."""

    next_type: JobType
    correlation_key: str


CHAIN_RULES: dict[str, ChainRule] = {
    JobType.PARSE_DOCUMENT.value: ChainRule(
        next_type=JobType.GAP_DETECTION, correlation_key="assessment_id"
    ),
}


class JobProcessor:
    """Runs one attempt of a job through its registered handler."""

    def __init__(
        self,
        store: JobStore,
        registry: JobRegistry,
        settings: Settings,
        chain_rules: dict[str, ChainRule] | None = None,
    ):
        self.store = store
        self.registry = registry
        self.settings = settings
        self.chain_rules = CHAIN_RULES if chain_rules is None else chain_rules

    @property
    def processing_timeout(self) -> timedelta:
        """How long a PROCESSING job may go without progress before recovery."""
        return timedelta(seconds=self.settings.job_processing_timeout_s)

    async def process_job(self, job_id: UUID, depth: int = 0) -> None:
        """
        Process a single attempt of a job.

        Handler errors never escape: they become a transition to PENDING or
        FAILED. Missing, finished or in-flight jobs are a no-op; a PROCESSING
        job whose host went silent past the processing timeout is reclaimed.

        Args:
            job_id: Job to process
            depth: Chain depth of this job, 0 for jobs dispatched directly
        """
        job = await self.store.get(job_id)
        if job is None:
            logger.error("Job not found for processing", job_id=str(job_id))
            return

        claimed = await self.store.claim(job_id, stale_after=self.processing_timeout)
        if claimed is None:
            if job.is_terminal():
                logger.info(
                    "Job already finished, skipping", job_id=str(job_id), status=job.status
                )
            else:
                logger.warning(
                    "Job not claimable, skipping", job_id=str(job_id), status=job.status
                )
            return

        job_logger = logger.bind(
            job_id=str(job_id), job_type=claimed.type, attempt=claimed.attempts
        )
        if job.status == JobStatus.PROCESSING.value:
            job_logger.warning("Reclaimed stale job")
        job_logger.info("Processing job started")

        handler: JobHandler | None = None
        try:
            handler = self._resolve_handler(claimed.type)
            result = await handler.execute(claimed.input)
            await self.store.mark_completed(job_id, _to_payload(result))
        except Exception as e:
            job_logger.warning("Job attempt failed", error=str(e))
            await self._handle_failure(claimed, handler, e)
            return

        job_logger.info("Job completed")
        await self._run_chain(claimed, depth)

    async def recover_stale(self, limit: int = 100) -> list[UUID]:
        """
        Recover PROCESSING jobs abandoned by a crashed or timed out host.

        Jobs with attempts left go back to PENDING; the rest are FAILED and
        their handler's compensating action runs.

        Returns:
            Ids of the jobs released to PENDING
        """
        timeout = self.processing_timeout
        released: list[UUID] = []

        for job in await self.store.list_stale(timeout, limit=limit):
            if job.has_attempts_left():
                if await self.store.recover_stale(
                    job.id, timeout, status=JobStatus.PENDING.value
                ):
                    released.append(job.id)
                    logger.warning(
                        "Released stale job for retry",
                        job_id=str(job.id),
                        attempts=job.attempts,
                    )
                continue

            message = (
                f"Job timed out after {self.settings.job_processing_timeout_s}s "
                "in PROCESSING"
            )
            failed = await self.store.recover_stale(
                job.id,
                timeout,
                status=JobStatus.FAILED.value,
                error=message,
                completed_at=datetime.now(UTC),
            )
            if failed:
                logger.error(
                    "Stale job failed permanently",
                    job_id=str(job.id),
                    job_type=job.type,
                    attempts=job.attempts,
                )
                await self._compensate(
                    job, self.registry.get_or_none(job.type), TimeoutError(message)
                )

        return released

    def _resolve_handler(self, job_type: str) -> JobHandler:
        handler = self.registry.get_or_none(job_type)
        if handler is None:
            raise HandlerNotFoundError(job_type)
        return handler

    async def _handle_failure(
        self, job: Job, handler: JobHandler | None, error: Exception
    ) -> None:
        current = await self.store.get(job.id) or job

        if current.has_attempts_left():
            await self.store.release(job.id)
            logger.info(
                "Job released for retry",
                job_id=str(job.id),
                attempts=current.attempts,
                max_attempts=current.max_attempts,
            )
            return

        message = str(error) or error.__class__.__name__
        await self.store.mark_failed(job.id, message)
        logger.error(
            "Job failed permanently",
            job_id=str(job.id),
            job_type=job.type,
            attempts=current.attempts,
            error=message,
        )

        await self._compensate(job, handler, error)

    async def _compensate(
        self, job: Job, handler: JobHandler | None, error: Exception
    ) -> None:
        if not isinstance(handler, CompensatingJobHandler):
            return

        try:
            await handler.on_failure(job.input, error)
        except Exception:
            logger.exception(
                "Compensating action failed", job_id=str(job.id), job_type=job.type
            )

    async def _run_chain(self, parent: Job, depth: int) -> None:
        rule = self.chain_rules.get(parent.type)
        if rule is None:
            return

        correlation_id = (parent.input or {}).get(rule.correlation_key)
        if not correlation_id:
            logger.warning(
                "Chained job skipped, correlation id missing",
                job_id=str(parent.id),
                correlation_key=rule.correlation_key,
            )
            return

        try:
            child = await self.store.create(
                job_type=rule.next_type.value,
                input={rule.correlation_key: correlation_id},
                created_by_id=parent.created_by_id,
                max_attempts=self.settings.job_max_attempts,
            )
        except Exception:
            logger.exception("Failed to create chained job", job_id=str(parent.id))
            return

        logger.info(
            "Chained job created",
            job_id=str(child.id),
            job_type=child.type,
            parent_job_id=str(parent.id),
        )

        if depth + 1 > self.settings.job_max_chain_depth:
            logger.warning(
                "Chain depth limit reached, deferring chained job",
                job_id=str(child.id),
                depth=depth + 1,
            )
            return

        await self.process_job(child.id, depth=depth + 1)


def _to_payload(result: Any) -> dict[str, Any] | None:
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    return result
