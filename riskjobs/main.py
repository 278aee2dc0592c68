from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from riskjobs.config.logging import setup_logging
from riskjobs.config.settings import Settings, settings as default_settings
from riskjobs.v1.core.exceptions import (
    RequestContextMiddleware,
    RiskJobsException,
    general_exception_handler,
    http_exception_handler,
    risk_jobs_exception_handler,
)
from riskjobs.v1.healthz import router as health_router
from riskjobs.v1.jobs.engine import JobEngine, build_engine
from riskjobs.v1.jobs.routes import router as jobs_router
from riskjobs.v1.jobs.routes import worker_router


def create_app(
    engine: JobEngine | None = None, settings: Settings | None = None
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or (engine.settings if engine else default_settings)

    # Initialize structured logging
    setup_logging()

    if engine is None:
        engine = build_engine(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.engine.close()

    app = FastAPI(
        title=settings.app_name,
        description="Asynchronous job execution for risk assessment intake",
        version=settings.version,
        debug=settings.debug,
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.engine = engine

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(RiskJobsException, risk_jobs_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")
    app.include_router(worker_router, prefix="/v1")

    # Freeze the handler registry outside development to prevent runtime modifications
    if settings.environment != "development":
        engine.registry.freeze()

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "riskjobs.main:create_app",
        factory=True,
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
        workers=1 if default_settings.debug else default_settings.workers,
    )
