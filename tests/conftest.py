import copy
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import pytest
from httpx import ASGITransport, AsyncClient

from riskjobs.config.settings import Settings
from riskjobs.v1.core.registries import JobRegistry
from riskjobs.v1.jobs.dispatcher import JobDispatcher
from riskjobs.v1.jobs.handlers import DocumentStatus
from riskjobs.v1.jobs.models import Job, JobStatus
from riskjobs.v1.jobs.processor import JobProcessor


def _snapshot(job: Job) -> Job:
    """Detached copy of a job, like a row freshly read from the database."""
    return Job(
        **{
            column.key: copy.deepcopy(getattr(job, column.key))
            for column in Job.__table__.columns
        }
    )


class InMemoryJobStore:
    """Job store with the same transition semantics as the SQL store."""

    def __init__(self):
        self.jobs: dict[UUID, Job] = {}
        self.fail_create = False

    async def create(
        self,
        job_type: str,
        input: dict[str, Any],
        created_by_id: str,
        max_attempts: int,
    ) -> Job:
        if self.fail_create:
            raise RuntimeError("database unavailable")

        now = datetime.now(UTC)
        job = Job(
            id=uuid.uuid4(),
            type=job_type,
            status=JobStatus.PENDING.value,
            input=copy.deepcopy(input),
            result=None,
            error=None,
            attempts=0,
            max_attempts=max_attempts,
            created_by_id=created_by_id,
            created_at=now,
            started_at=None,
            completed_at=None,
            updated_at=now,
        )
        self.jobs[job.id] = job
        return _snapshot(job)

    async def get(self, job_id: UUID) -> Job | None:
        job = self.jobs.get(job_id)
        return _snapshot(job) if job is not None else None

    async def claim(
        self, job_id: UUID, stale_after: timedelta | None = None
    ) -> Job | None:
        job = self.jobs.get(job_id)
        if job is None:
            return None

        now = datetime.now(UTC)
        stale = (
            stale_after is not None
            and job.status == JobStatus.PROCESSING.value
            and job.updated_at <= now - stale_after
            and job.attempts < job.max_attempts
        )
        if job.status != JobStatus.PENDING.value and not stale:
            return None

        job.status = JobStatus.PROCESSING.value
        job.attempts += 1
        job.started_at = job.started_at or now
        job.updated_at = now
        return _snapshot(job)

    async def mark_completed(self, job_id: UUID, result: dict[str, Any] | None) -> None:
        now = datetime.now(UTC)
        self._update(
            job_id,
            status=JobStatus.COMPLETED.value,
            result=copy.deepcopy(result),
            error=None,
            completed_at=now,
            updated_at=now,
        )

    async def mark_failed(self, job_id: UUID, error: str) -> None:
        now = datetime.now(UTC)
        self._update(
            job_id,
            status=JobStatus.FAILED.value,
            error=error,
            completed_at=now,
            updated_at=now,
        )

    async def release(self, job_id: UUID) -> None:
        self._update(job_id, status=JobStatus.PENDING.value, updated_at=datetime.now(UTC))

    async def list_redispatchable(
        self, idle_for: timedelta, limit: int = 100
    ) -> list[Job]:
        cutoff = datetime.now(UTC) - idle_for
        jobs = [
            job
            for job in self.jobs.values()
            if job.status == JobStatus.PENDING.value
            and job.attempts < job.max_attempts
            and job.updated_at <= cutoff
        ]
        jobs.sort(key=lambda job: job.updated_at)
        return [_snapshot(job) for job in jobs[:limit]]

    async def list_stale(self, stale_for: timedelta, limit: int = 100) -> list[Job]:
        cutoff = datetime.now(UTC) - stale_for
        jobs = [
            job
            for job in self.jobs.values()
            if job.status == JobStatus.PROCESSING.value and job.updated_at <= cutoff
        ]
        jobs.sort(key=lambda job: job.updated_at)
        return [_snapshot(job) for job in jobs[:limit]]

    async def recover_stale(
        self, job_id: UUID, stale_for: timedelta, **values: Any
    ) -> bool:
        job = self.jobs.get(job_id)
        cutoff = datetime.now(UTC) - stale_for
        if (
            job is None
            or job.status != JobStatus.PROCESSING.value
            or job.updated_at > cutoff
        ):
            return False
        self._update(job_id, **values, updated_at=datetime.now(UTC))
        return True

    def age(self, job_id: UUID, by: timedelta) -> None:
        """Pretend a job was last touched ``by`` ago."""
        self.jobs[job_id].updated_at -= by

    def _update(self, job_id: UUID, **values: Any) -> None:
        job = self.jobs.get(job_id)
        if job is None:
            return
        for key, value in values.items():
            setattr(job, key, value)


class RecordingHandler:
    """Handler returning a fixed result, optionally failing the first calls."""

    def __init__(
        self,
        result: dict[str, Any] | None = None,
        fail_times: int = 0,
        error: Exception | None = None,
    ):
        self.result = {"ok": True} if result is None else result
        self.fail_times = fail_times
        self.error = error or RuntimeError("handler exploded")
        self.calls: list[dict[str, Any]] = []

    async def execute(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(payload)
        if len(self.calls) <= self.fail_times:
            raise self.error
        return self.result


class CompensatingHandler(RecordingHandler):
    """Recording handler that also records compensation calls."""

    def __init__(self, *args, on_failure_error: Exception | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.on_failure_error = on_failure_error
        self.failures: list[tuple[dict[str, Any], Exception]] = []

    async def on_failure(self, payload: dict[str, Any], error: Exception) -> None:
        self.failures.append((payload, error))
        if self.on_failure_error is not None:
            raise self.on_failure_error


class FakeInvoker:
    """Remote invoker recording the job ids it was handed."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.invoked: list[UUID] = []
        self.closed = False

    async def invoke(self, job_id: UUID) -> None:
        self.invoked.append(job_id)
        if self.error is not None:
            raise self.error

    async def close(self) -> None:
        self.closed = True


class FakeDocuments:
    def __init__(self):
        self.statuses: list[tuple[str, DocumentStatus, str | None]] = []

    async def set_status(
        self,
        document_id: str,
        status: DocumentStatus,
        error_message: str | None = None,
    ) -> None:
        self.statuses.append((document_id, status, error_message))


class FakeExtractor:
    def __init__(self, result: dict[str, Any] | None = None, error: Exception | None = None):
        self.result = result or {"text": "Revenue grew 12%", "pages": 3, "tables": []}
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def analyze_document(self, bucket: str, key: str) -> dict[str, Any]:
        self.calls.append((bucket, key))
        if self.error is not None:
            raise self.error
        return self.result


class FakeAssessmentService:
    """Stands in for gap detection, risk analysis and report rendering."""

    def __init__(self):
        self.calls: list[tuple[str, str]] = []

    async def detect_gaps(self, assessment_id: str) -> dict[str, Any]:
        self.calls.append(("detect_gaps", assessment_id))
        return {"gaps": ["ownership_structure"]}

    async def analyze(self, assessment_id: str) -> dict[str, Any]:
        self.calls.append(("analyze", assessment_id))
        return {"overall_score": 42}

    async def render(self, assessment_id: str) -> dict[str, Any]:
        self.calls.append(("render", assessment_id))
        return {"report_key": f"reports/{assessment_id}.pdf"}


@pytest.fixture
def settings() -> Settings:
    """Settings for a test environment, where jobs run in-process."""
    return Settings(
        environment="test",
        debug=False,
        job_max_attempts=3,
        job_redispatch_after_s=0,
        s3_bucket="test-bucket",
        llm_endpoint_url="http://model.test",
    )


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def registry() -> JobRegistry:
    return JobRegistry()


@pytest.fixture
def processor(store, registry, settings) -> JobProcessor:
    return JobProcessor(store, registry, settings)


@pytest.fixture
def dispatcher(settings, store, processor) -> JobDispatcher:
    return JobDispatcher(settings, store, processor)


@pytest.fixture
def documents() -> FakeDocuments:
    return FakeDocuments()


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def assessments() -> FakeAssessmentService:
    return FakeAssessmentService()


@pytest.fixture
async def async_client_for():
    """Build an async test client around an app; closes clients on teardown."""
    clients: list[AsyncClient] = []

    async def factory(app) -> AsyncClient:
        transport = ASGITransport(app=app)
        client = AsyncClient(transport=transport, base_url="http://test")
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.aclose()
