"""
orchestrator/schemas/api.py

Response schemas for the orchestrator HTTP endpoints.
"""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field

from orchestrator.domain.scheduling import DispatchCycleSummary


class DispatchCycleSummaryResponse(BaseModel):
    """
    API response model for one dispatch cycle.
    """

    due: int = Field(..., ge=0)
    domains_processed: int = Field(..., ge=0)
    domains_deferred: int = Field(..., ge=0)
    dispatched: int = Field(..., ge=0)
    rate_gated: int = Field(..., ge=0)
    missing_configuration: int = Field(..., ge=0)
    failed: int = Field(..., ge=0)
    dispatched_target_ids: list[UUID] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: DispatchCycleSummary) -> "DispatchCycleSummaryResponse":
        return cls(
            due=summary.due,
            domains_processed=summary.domains_processed,
            domains_deferred=summary.domains_deferred,
            dispatched=summary.dispatched,
            rate_gated=summary.rate_gated,
            missing_configuration=summary.missing_configuration,
            failed=summary.failed,
            dispatched_target_ids=list(summary.dispatched_target_ids),
        )


class ManualScrapeResponse(BaseModel):
    target_id: UUID
    status: str


class HealthResponse(BaseModel):
    status: str
    dispatch_running: bool
    consumer_running: bool
