"""FastAPI application factory.

Creates the FastAPI app with lifespan management, exception handlers,
and OpenAPI metadata.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from loguru import logger
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from legacy_migrator.core.background import task_runner
from legacy_migrator.core.config import get_settings
from legacy_migrator.core.database import dispose_engine, get_session_factory, init_engine
from legacy_migrator.core.exceptions import JobNotFoundError, JobStateError
from legacy_migrator.core.logging import setup_logging
from legacy_migrator.core.metrics import PrometheusMetricsSink
from legacy_migrator.services.migration_service import MigrationOrchestrator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifecycle.

    Initializes the engine and the orchestrator on startup and fails jobs
    left running by a previous process; cancels in-flight executions and
    disposes the engine on shutdown.
    """
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir)
    init_engine(settings.database_url, echo=False, schema=settings.database_schema)

    session_factory = get_session_factory()
    orchestrator = MigrationOrchestrator.from_settings(
        settings, session_factory, metrics_sink=PrometheusMetricsSink(), runner=task_runner
    )
    app.state.orchestrator = orchestrator

    if settings.migration_recover_on_startup:
        async with session_factory() as session:
            recovered = await orchestrator.recover_stale_jobs(session, settings.migration_stale_after)
        if recovered:
            logger.warning(f"Marked {len(recovered)} interrupted import jobs as failed")

    yield

    await task_runner.shutdown()
    await dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Legacy Migrator",
        description="Resumable batch migration of legacy guarantee, client and commission data",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Register exception handlers
    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"detail": str(exc)},
        )

    @app.exception_handler(JobNotFoundError)
    async def job_not_found_handler(request: Request, exc: JobNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(JobStateError)
    async def job_state_handler(request: Request, exc: JobStateError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    from legacy_migrator.api.router import create_router

    app.include_router(create_router(settings))

    return app
