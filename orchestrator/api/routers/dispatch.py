"""
orchestrator/api/routers/dispatch.py

Manual dispatch endpoints.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from orchestrator.api.dependencies import get_dispatch_loop
from orchestrator.schemas.api import DispatchCycleSummaryResponse, ManualScrapeResponse
from orchestrator.services.dispatch_service import DispatchLoop

router = APIRouter(tags=["dispatch"])


@router.post(
    "/targets/{target_id}/scrape",
    response_model=ManualScrapeResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def trigger_target_scrape(
    target_id: UUID,
    dispatch_loop: DispatchLoop = Depends(get_dispatch_loop),
) -> ManualScrapeResponse:
    """
    Publish a scrape command for one target immediately, outside its schedule.
    """

    try:
        published = dispatch_loop.trigger_manual_scrape(target_id)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable.",
        ) from exc

    if not published:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Scrape target {target_id} is not dispatchable.",
        )
    return ManualScrapeResponse(target_id=target_id, status="published")


@router.post("/dispatch/run", response_model=DispatchCycleSummaryResponse)
def run_dispatch_cycle(
    dispatch_loop: DispatchLoop = Depends(get_dispatch_loop),
) -> DispatchCycleSummaryResponse:
    """
    Run one dispatch cycle now and return its counters.
    """

    try:
        summary = dispatch_loop.run_cycle()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable.",
        ) from exc
    return DispatchCycleSummaryResponse.from_summary(summary)
