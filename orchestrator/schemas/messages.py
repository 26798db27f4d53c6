"""
orchestrator/schemas/messages.py

Broker message contracts shared with the external scraping engine.

Commands are produced here and consumed by the engine; results flow the
other way. Both travel as compact JSON.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ScrapingProfile(BaseModel):
    """
    Request fingerprint the engine must use for this page fetch.
    """

    model_config = ConfigDict(frozen=True)

    user_agent: str = Field(..., min_length=1)
    headers: dict[str, str] = Field(default_factory=dict)


class ScrapeCommand(BaseModel):
    """
    Instruction to scrape one product page.
    """

    model_config = ConfigDict(frozen=True)

    target_id: uuid.UUID
    canonical_product_id: uuid.UUID
    seller_name: str
    exact_product_url: str
    selectors: dict[str, Any] = Field(default_factory=dict)
    requires_browser_automation: bool = False
    scraping_profile: ScrapingProfile
    dispatched_at: datetime

    @field_validator("dispatched_at")
    @classmethod
    def _dispatched_at_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class ScrapeResult(BaseModel):
    """
    Outcome of one scrape attempt reported by the engine.

    Fields the orchestrator does not use (extracted price, stock, ...) are
    ignored. A naive ``timestamp`` is taken to be UTC.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    target_id: uuid.UUID
    success: bool
    error_code: str | None = None
    error_message: str | None = None
    http_status: int | None = None
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)
