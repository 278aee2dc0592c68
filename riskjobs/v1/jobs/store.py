"""
Durable job store backed by SQLAlchemy.

Every state transition is a single UPDATE statement so that concurrent
processors never lose an attempt increment.
"""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riskjobs.v1.jobs.models import Job, JobStatus


class JobStore:
    """Persistence operations for jobs, one session per operation."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(
        self,
        job_type: str,
        input: dict[str, Any],
        created_by_id: str,
        max_attempts: int,
    ) -> Job:
        """Insert a new PENDING job."""
        now = datetime.now(UTC)
        job = Job(
            id=uuid.uuid4(),
            type=job_type,
            status=JobStatus.PENDING.value,
            input=input,
            attempts=0,
            max_attempts=max_attempts,
            created_by_id=created_by_id,
            created_at=now,
            updated_at=now,
        )

        async with self.session_factory() as session:
            session.add(job)
            await session.commit()
            await session.refresh(job)

        return job

    async def get(self, job_id: UUID) -> Job | None:
        async with self.session_factory() as session:
            result = await session.execute(select(Job).where(Job.id == job_id))
            return result.scalar_one_or_none()

    async def claim(
        self, job_id: UUID, stale_after: timedelta | None = None
    ) -> Job | None:
        """
        Move a PENDING job to PROCESSING and count the attempt.

        The status guard makes the claim exclusive: of two overlapping
        invocations for the same job only one gets a row back.

        Args:
            job_id: Job to claim
            stale_after: Also reclaim a PROCESSING job with attempts left that
                made no progress for this long (its previous host died)

        Returns:
            The claimed job, or None if the job was not claimable
        """
        now = datetime.now(UTC)
        claimable = Job.status == JobStatus.PENDING.value
        if stale_after is not None:
            claimable = or_(
                claimable,
                and_(
                    Job.status == JobStatus.PROCESSING.value,
                    Job.updated_at <= now - stale_after,
                    Job.attempts < Job.max_attempts,
                ),
            )

        query = (
            update(Job)
            .where(and_(Job.id == job_id, claimable))
            .values(
                status=JobStatus.PROCESSING.value,
                attempts=Job.attempts + 1,
                started_at=func.coalesce(Job.started_at, now),
                updated_at=now,
            )
            .returning(Job)
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory() as session:
            result = await session.execute(query)
            job = result.scalar_one_or_none()
            await session.commit()

        return job

    async def mark_completed(self, job_id: UUID, result: dict[str, Any] | None) -> None:
        now = datetime.now(UTC)
        await self._update(
            job_id,
            status=JobStatus.COMPLETED.value,
            result=result,
            error=None,
            completed_at=now,
            updated_at=now,
        )

    async def mark_failed(self, job_id: UUID, error: str) -> None:
        now = datetime.now(UTC)
        await self._update(
            job_id,
            status=JobStatus.FAILED.value,
            error=error,
            completed_at=now,
            updated_at=now,
        )

    async def release(self, job_id: UUID) -> None:
        """Return a job to PENDING so a later invocation can retry it."""
        await self._update(
            job_id, status=JobStatus.PENDING.value, updated_at=datetime.now(UTC)
        )

    async def list_redispatchable(
        self, idle_for: timedelta, limit: int = 100
    ) -> list[Job]:
        """PENDING jobs with attempts left that nobody touched for ``idle_for``."""
        cutoff = datetime.now(UTC) - idle_for
        query = (
            select(Job)
            .where(
                and_(
                    Job.status == JobStatus.PENDING.value,
                    Job.attempts < Job.max_attempts,
                    Job.updated_at <= cutoff,
                )
            )
            .order_by(Job.updated_at)
            .limit(limit)
        )

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_stale(self, stale_for: timedelta, limit: int = 100) -> list[Job]:
        """PROCESSING jobs that made no progress for ``stale_for``."""
        cutoff = datetime.now(UTC) - stale_for
        query = (
            select(Job)
            .where(
                and_(
                    Job.status == JobStatus.PROCESSING.value,
                    Job.updated_at <= cutoff,
                )
            )
            .order_by(Job.updated_at)
            .limit(limit)
        )

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def recover_stale(
        self, job_id: UUID, stale_for: timedelta, **values: Any
    ) -> bool:
        """
        Apply ``values`` to a job only if it is still a stale PROCESSING job.

        Returns:
            True if the job was updated, False if it progressed meanwhile
        """
        cutoff = datetime.now(UTC) - stale_for
        query = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.status == JobStatus.PROCESSING.value,
                    Job.updated_at <= cutoff,
                )
            )
            .values(**values, updated_at=datetime.now(UTC))
            .returning(Job.id)
        )

        async with self.session_factory() as session:
            result = await session.execute(query)
            recovered = result.scalar_one_or_none() is not None
            await session.commit()

        return recovered

    async def _update(self, job_id: UUID, **values: Any) -> None:
        async with self.session_factory() as session:
            await session.execute(update(Job).where(Job.id == job_id).values(**values))
            await session.commit()
