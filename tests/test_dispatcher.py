import uuid
from datetime import timedelta

import pytest

from riskjobs.config.settings import Settings
from riskjobs.v1.core.exceptions import (
    ForbiddenError,
    NotFoundError,
    ValidationError,
    WorkerInvocationError,
)
from riskjobs.v1.jobs.dispatcher import JobDispatcher
from riskjobs.v1.jobs.models import JobStatus, JobType

from .conftest import FakeInvoker, RecordingHandler


@pytest.fixture
def production_settings() -> Settings:
    return Settings(
        environment="production",
        auth_mode="dev",
        debug=False,
        job_redispatch_after_s=0,
    )


async def test_create_persists_pending_job(dispatcher, store):
    job_id = await dispatcher.create(
        JobType.RISK_ANALYSIS, {"assessment_id": "a-1"}, "owner-1"
    )

    job = store.jobs[job_id]
    assert job.type == JobType.RISK_ANALYSIS.value
    assert job.input == {"assessment_id": "a-1"}
    assert job.created_by_id == "owner-1"
    assert job.max_attempts == 3

    await dispatcher.drain()


async def test_create_runs_job_locally_in_test_environment(dispatcher, registry, store):
    registry.register(JobType.RISK_ANALYSIS.value, RecordingHandler(result={"score": 1}))

    job_id = await dispatcher.create("RISK_ANALYSIS", {"assessment_id": "a-1"}, "owner-1")
    await dispatcher.drain()

    job = store.jobs[job_id]
    assert job.status == JobStatus.COMPLETED.value
    assert job.result == {"score": 1}


async def test_create_does_not_surface_handler_failures(dispatcher, registry, store):
    registry.register(JobType.RISK_ANALYSIS.value, RecordingHandler(fail_times=99))

    job_id = await dispatcher.create(
        JobType.RISK_ANALYSIS, {"assessment_id": "a-1"}, "owner-1", max_attempts=1
    )
    await dispatcher.drain()

    assert store.jobs[job_id].status == JobStatus.FAILED.value


async def test_create_rejects_unknown_job_type(dispatcher, store):
    with pytest.raises(ValidationError, match="Unknown job type: NOPE"):
        await dispatcher.create("NOPE", {}, "owner-1")

    assert store.jobs == {}


async def test_remote_routing_hands_job_to_invoker(production_settings, store, processor):
    invoker = FakeInvoker()
    dispatcher = JobDispatcher(production_settings, store, processor, invoker)

    job_id = await dispatcher.create(JobType.RISK_ANALYSIS, {}, "owner-1")

    assert invoker.invoked == [job_id]
    # Never both paths
    assert not dispatcher._background
    assert store.jobs[job_id].status == JobStatus.PENDING.value


async def test_remote_routing_falls_back_to_local(production_settings, store, processor, registry):
    registry.register(JobType.RISK_ANALYSIS.value, RecordingHandler())
    dispatcher = JobDispatcher(production_settings, store, processor, invoker=None)

    job_id = await dispatcher.create(JobType.RISK_ANALYSIS, {}, "owner-1")
    await dispatcher.drain()

    assert store.jobs[job_id].status == JobStatus.COMPLETED.value


async def test_invoker_failure_leaves_job_pending(production_settings, store, processor):
    invoker = FakeInvoker(error=WorkerInvocationError("Worker unreachable"))
    dispatcher = JobDispatcher(production_settings, store, processor, invoker)

    job_id = await dispatcher.create(JobType.RISK_ANALYSIS, {}, "owner-1")

    job = store.jobs[job_id]
    assert job.status == JobStatus.PENDING.value
    assert job.attempts == 0


async def test_find_one_returns_owned_job(dispatcher, store):
    job_id = await dispatcher.create(JobType.RISK_ANALYSIS, {}, "owner-1")
    await dispatcher.drain()

    job = await dispatcher.find_one(job_id, "owner-1")

    assert job.id == job_id


async def test_find_one_missing_job(dispatcher):
    with pytest.raises(NotFoundError):
        await dispatcher.find_one(uuid.uuid4(), "owner-1")


async def test_find_one_forbids_other_users(dispatcher):
    job_id = await dispatcher.create(JobType.RISK_ANALYSIS, {"secret": "x"}, "owner-1")
    await dispatcher.drain()

    with pytest.raises(ForbiddenError) as exc_info:
        await dispatcher.find_one(job_id, "intruder")

    assert "secret" not in str(exc_info.value.details)
    assert exc_info.value.message == "You do not own this job"


async def test_find_one_does_not_mutate_job(dispatcher, store):
    job_id = await dispatcher.create(JobType.RISK_ANALYSIS, {}, "owner-1")
    await dispatcher.drain()
    before = store.jobs[job_id].updated_at

    await dispatcher.find_one(job_id, "owner-1")

    assert store.jobs[job_id].updated_at == before


async def test_redispatch_routes_released_jobs(production_settings, store, processor, registry):
    registry.register(JobType.RISK_ANALYSIS.value, RecordingHandler(fail_times=1))
    invoker = FakeInvoker()
    dispatcher = JobDispatcher(production_settings, store, processor, invoker)
    job = await store.create(JobType.RISK_ANALYSIS.value, {}, "owner-1", max_attempts=3)
    await processor.process_job(job.id)

    redispatched = await dispatcher.redispatch_pending()

    assert redispatched == [job.id]
    assert invoker.invoked == [job.id]


async def test_redispatch_skips_exhausted_and_terminal_jobs(
    production_settings, store, processor, registry
):
    registry.register(JobType.RISK_ANALYSIS.value, RecordingHandler())
    invoker = FakeInvoker()
    dispatcher = JobDispatcher(production_settings, store, processor, invoker)
    done = await store.create(JobType.RISK_ANALYSIS.value, {}, "owner-1", max_attempts=3)
    await processor.process_job(done.id)

    assert await dispatcher.redispatch_pending() == []
    assert invoker.invoked == []


async def test_create_rejects_attempts_below_one(dispatcher, store):
    with pytest.raises(ValidationError, match="max_attempts must be >= 1"):
        await dispatcher.create(JobType.RISK_ANALYSIS, {}, "owner-1", max_attempts=0)

    assert store.jobs == {}


async def test_create_keeps_explicit_max_attempts(dispatcher, store):
    job_id = await dispatcher.create(
        JobType.RISK_ANALYSIS, {}, "owner-1", max_attempts=1
    )
    await dispatcher.drain()

    assert store.jobs[job_id].max_attempts == 1


async def test_redispatch_recovers_stale_processing_job(
    production_settings, store, processor
):
    invoker = FakeInvoker()
    dispatcher = JobDispatcher(production_settings, store, processor, invoker)
    job = await store.create(JobType.RISK_ANALYSIS.value, {}, "owner-1", max_attempts=3)
    await store.claim(job.id)
    store.age(job.id, timedelta(days=1))

    redispatched = await dispatcher.redispatch_pending()

    assert redispatched == [job.id]
    assert invoker.invoked == [job.id]
    assert store.jobs[job.id].status == JobStatus.PENDING.value


async def test_redispatch_runs_stale_job_to_completion_locally(
    dispatcher, store, registry
):
    registry.register(JobType.RISK_ANALYSIS.value, RecordingHandler(result={"score": 2}))
    job = await store.create(JobType.RISK_ANALYSIS.value, {}, "owner-1", max_attempts=3)
    await store.claim(job.id)
    store.age(job.id, timedelta(days=1))

    await dispatcher.redispatch_pending()
    await dispatcher.drain()

    done = store.jobs[job.id]
    assert done.status == JobStatus.COMPLETED.value
    assert done.attempts == 2
