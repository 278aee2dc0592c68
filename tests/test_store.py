"""
JobStore tests against PostgreSQL.

Skipped unless DATABASE_URL points at a PostgreSQL database.
"""

import asyncio
import os
from datetime import timedelta

import pytest
from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from riskjobs.infra.database import Base
from riskjobs.v1.jobs.models import Job, JobStatus, JobType
from riskjobs.v1.jobs.store import JobStore

DATABASE_URL = os.getenv("DATABASE_URL", "")

pytestmark = pytest.mark.skipif(
    "postgresql" not in DATABASE_URL, reason="requires a PostgreSQL DATABASE_URL"
)


@pytest.fixture
async def store():
    engine = create_async_engine(DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    yield JobStore(session_factory)

    async with session_factory() as session:
        await session.execute(delete(Job))
        await session.commit()
    await engine.dispose()


async def new_job(store: JobStore, max_attempts: int = 3) -> Job:
    return await store.create(
        JobType.RISK_ANALYSIS.value, {"assessment_id": "a-1"}, "owner-1", max_attempts
    )


async def test_create_and_get(store):
    job = await new_job(store)

    fetched = await store.get(job.id)

    assert fetched.status == JobStatus.PENDING.value
    assert fetched.attempts == 0
    assert fetched.input == {"assessment_id": "a-1"}
    assert fetched.started_at is None


async def test_claim_increments_attempts_and_sets_started_at(store):
    job = await new_job(store)

    claimed = await store.claim(job.id)

    assert claimed.status == JobStatus.PROCESSING.value
    assert claimed.attempts == 1
    first_start = claimed.started_at
    assert first_start is not None

    await store.release(job.id)
    reclaimed = await store.claim(job.id)

    assert reclaimed.attempts == 2
    assert reclaimed.started_at == first_start


async def test_claim_is_exclusive(store):
    job = await new_job(store)

    results = await asyncio.gather(*(store.claim(job.id) for _ in range(5)))

    assert sum(result is not None for result in results) == 1
    assert (await store.get(job.id)).attempts == 1


async def test_mark_completed_and_failed(store):
    done = await new_job(store)
    failed = await new_job(store)

    await store.mark_completed(done.id, {"score": 3})
    await store.mark_failed(failed.id, "boom")

    done = await store.get(done.id)
    failed = await store.get(failed.id)
    assert done.status == JobStatus.COMPLETED.value
    assert done.result == {"score": 3}
    assert done.completed_at is not None
    assert failed.status == JobStatus.FAILED.value
    assert failed.error == "boom"
    assert failed.result is None


async def test_list_redispatchable(store):
    idle = await new_job(store)
    exhausted = await new_job(store, max_attempts=1)
    await store.claim(exhausted.id)
    await store.release(exhausted.id)

    jobs = await store.list_redispatchable(idle_for=timedelta(0))

    ids = {job.id for job in jobs}
    assert idle.id in ids
    assert exhausted.id not in ids


async def age(store: JobStore, job_id, by: timedelta) -> None:
    async with store.session_factory() as session:
        await session.execute(
            update(Job).where(Job.id == job_id).values(updated_at=Job.updated_at - by)
        )
        await session.commit()


async def test_claim_reclaims_only_stale_processing_jobs(store):
    job = await new_job(store)
    await store.claim(job.id)

    assert await store.claim(job.id, stale_after=timedelta(minutes=15)) is None

    await age(store, job.id, timedelta(days=1))
    reclaimed = await store.claim(job.id, stale_after=timedelta(minutes=15))

    assert reclaimed.status == JobStatus.PROCESSING.value
    assert reclaimed.attempts == 2


async def test_claim_does_not_reclaim_exhausted_jobs(store):
    job = await new_job(store, max_attempts=1)
    await store.claim(job.id)
    await age(store, job.id, timedelta(days=1))

    assert await store.claim(job.id, stale_after=timedelta(minutes=15)) is None


async def test_list_and_recover_stale(store):
    stale = await new_job(store)
    fresh = await new_job(store)
    await store.claim(stale.id)
    await store.claim(fresh.id)
    await age(store, stale.id, timedelta(days=1))

    jobs = await store.list_stale(timedelta(minutes=15))

    assert [job.id for job in jobs] == [stale.id]
    assert await store.recover_stale(
        stale.id, timedelta(minutes=15), status=JobStatus.PENDING.value
    )
    assert not await store.recover_stale(
        fresh.id, timedelta(minutes=15), status=JobStatus.PENDING.value
    )
    assert (await store.get(stale.id)).status == JobStatus.PENDING.value
    assert (await store.get(fresh.id)).status == JobStatus.PROCESSING.value
