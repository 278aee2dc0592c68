"""
Wiring of the job engine's collaborators.

Every dependency is constructed here and passed explicitly, so tests and
alternative hosts (HTTP app, CLI, remote worker) can substitute their own.
"""

from dataclasses import dataclass, field
from typing import Any

from fastapi import Request

from riskjobs.config.settings import Settings
from riskjobs.infra.database import Database
from riskjobs.v1.core.registries import JobRegistry
from riskjobs.v1.jobs.dispatcher import JobDispatcher
from riskjobs.v1.jobs.invoker import HttpWorkerInvoker, RemoteInvoker
from riskjobs.v1.jobs.processor import JobProcessor
from riskjobs.v1.jobs.registry_init import register_job_handlers
from riskjobs.v1.jobs.store import JobStore
from riskjobs.v1.llm.client import ModelClient


@dataclass
class JobEngine:
    """The engine's components, built once per process."""

    settings: Settings
    store: JobStore
    registry: JobRegistry
    processor: JobProcessor
    dispatcher: JobDispatcher
    model_client: ModelClient | None = None
    database: Database | None = None
    closeables: list[Any] = field(default_factory=list)

    async def close(self) -> None:
        await self.dispatcher.drain()
        for resource in self.closeables:
            await resource.close()
        if self.database is not None:
            await self.database.close()


def build_engine(
    settings: Settings,
    store: JobStore | None = None,
    registry: JobRegistry | None = None,
    invoker: RemoteInvoker | None = None,
    model_client: ModelClient | None = None,
    **collaborators: Any,
) -> JobEngine:
    """
    Assemble a job engine.

    Args:
        settings: Application settings
        store: Job store; defaults to one on the configured database
        registry: Handler registry; defaults to a fresh one
        invoker: Remote invoker; defaults to ``settings.worker_url`` if set
        model_client: Model runtime client; built from settings if omitted
        **collaborators: Business-logic collaborators forwarded to
            ``register_job_handlers`` (documents, extractor, gap_detector,
            risk_analyzer, report_renderer)
    """
    database = None
    closeables: list[Any] = []

    if store is None:
        database = Database(settings)
        store = JobStore(database.SessionLocal)

    if model_client is None:
        model_client = ModelClient(settings)
        closeables.append(model_client)

    if invoker is None:
        invoker = HttpWorkerInvoker.from_settings(settings)
        if invoker is not None:
            closeables.append(invoker)

    if registry is None:
        registry = JobRegistry()
        register_job_handlers(
            registry, settings, model_client=model_client, **collaborators
        )

    processor = JobProcessor(store, registry, settings)
    dispatcher = JobDispatcher(settings, store, processor, invoker)

    return JobEngine(
        settings=settings,
        store=store,
        registry=registry,
        processor=processor,
        dispatcher=dispatcher,
        model_client=model_client,
        database=database,
        closeables=closeables,
    )


def get_engine(request: Request) -> JobEngine:
    """Dependency injection function for the application's job engine."""
    return request.app.state.engine
