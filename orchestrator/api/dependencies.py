"""
orchestrator/api/dependencies.py

FastAPI dependencies resolving the process runtime from application state.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from orchestrator.scheduler.jobs import OrchestratorRuntime
from orchestrator.services.dispatch_service import DispatchLoop


def get_runtime(request: Request) -> OrchestratorRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Orchestrator runtime is not initialised.",
        )
    return runtime


def get_dispatch_loop(request: Request) -> DispatchLoop:
    return get_runtime(request).dispatch_loop
