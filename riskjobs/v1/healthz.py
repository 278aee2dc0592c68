from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from riskjobs.v1.jobs.engine import JobEngine, get_engine

router = APIRouter()


class HealthResponse(BaseModel):
    """Service health with job engine status."""

    ok: bool
    version: str
    environment: str
    timestamp: str
    execution_mode: str
    registered_handlers: list[str]
    model_circuit_state: str | None = None


@router.get("/healthz", response_model=HealthResponse)
async def healthz(engine: JobEngine = Depends(get_engine)) -> HealthResponse:
    """Report liveness and how jobs will be executed."""
    settings = engine.settings

    if settings.runs_jobs_locally or engine.dispatcher.invoker is None:
        execution_mode = "local"
    else:
        execution_mode = "remote"

    return HealthResponse(
        ok=True,
        version=settings.version,
        environment=settings.environment,
        timestamp=datetime.now(UTC).isoformat(),
        execution_mode=execution_mode,
        registered_handlers=engine.registry.list(),
        model_circuit_state=(
            engine.model_client.breaker.state.value if engine.model_client else None
        ),
    )
