from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from orchestrator.api.dependencies import get_runtime
from orchestrator.logging_utils import configure_logging
from orchestrator.scheduler.jobs import OrchestratorRuntime
from orchestrator.schemas.api import HealthResponse
from orchestrator.startup import verify_database

logger = logging.getLogger(__name__)

RuntimeFactory = Callable[[], OrchestratorRuntime]


def create_app(runtime_factory: RuntimeFactory = OrchestratorRuntime) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The lifespan validates the database, then builds and starts the
    orchestrator runtime; it is stopped (in-flight work drained) on exit.
    """

    configure_logging()

    @asynccontextmanager
    async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
        verify_database()

        runtime = runtime_factory()
        runtime.start()
        application.state.runtime = runtime
        try:
            yield
        finally:
            runtime.stop()
            application.state.runtime = None

    application = FastAPI(
        title="Scrape Orchestrator API",
        version="1.0.0",
        lifespan=_lifespan,
    )

    from orchestrator.api.routers import dispatch_router

    application.include_router(dispatch_router)

    @application.get("/health", response_model=HealthResponse)
    def healthcheck(runtime: OrchestratorRuntime = Depends(get_runtime)) -> HealthResponse:
        running = runtime.dispatch_running and runtime.consumer_running
        return HealthResponse(
            status="ok" if running else "degraded",
            dispatch_running=runtime.dispatch_running,
            consumer_running=runtime.consumer_running,
        )

    return application


app = create_app()
