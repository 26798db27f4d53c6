"""
orchestrator/domain/scheduling.py

Immutable snapshots passed between the scheduler, the dispatch workers and
the result consumer. ORM rows never leave the session that loaded them;
these copies are safe to hand to another thread.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from db.models.scrape_target import ScrapeTarget


@dataclass(frozen=True)
class SiteSelectors:
    """
    Extraction configuration forwarded verbatim to the scraping engine.
    """

    configuration_id: uuid.UUID
    selectors: dict[str, Any]
    requires_browser_automation: bool = False


@dataclass(frozen=True)
class DueTarget:
    """
    Read-only copy of a scrape target selected for dispatch.
    """

    id: uuid.UUID
    canonical_product_id: uuid.UUID
    seller_name: str
    exact_product_url: str
    site_configuration: SiteSelectors | None
    frequency_override: str | None
    last_scraped_at: datetime | None
    next_scrape_at: datetime | None
    is_active: bool = True

    @classmethod
    def from_model(cls, row: ScrapeTarget) -> "DueTarget":
        config = row.site_configuration
        return cls(
            id=row.id,
            canonical_product_id=row.canonical_product_id,
            seller_name=row.seller_name,
            exact_product_url=row.exact_product_url,
            site_configuration=(
                SiteSelectors(
                    configuration_id=config.id,
                    selectors=dict(config.selectors or {}),
                    requires_browser_automation=config.requires_browser_automation,
                )
                if config is not None
                else None
            ),
            frequency_override=row.scraping_frequency_override,
            last_scraped_at=row.last_scraped_at,
            next_scrape_at=row.next_scrape_at,
            is_active=row.is_active_for_scraping,
        )


@dataclass(frozen=True)
class ScrapeIdentity:
    """
    One request fingerprint: a user agent plus a named header set.
    """

    user_agent: str
    headers: dict[str, str]
    persona: str | None = None


@dataclass
class DispatchCycleSummary:
    """
    Counters for one dispatch cycle.
    """

    due: int = 0
    domains_processed: int = 0
    domains_deferred: int = 0
    dispatched: int = 0
    rate_gated: int = 0
    missing_configuration: int = 0
    failed: int = 0
    dispatched_target_ids: list[uuid.UUID] = field(default_factory=list)

    def merge(self, other: "DispatchCycleSummary") -> None:
        self.dispatched += other.dispatched
        self.rate_gated += other.rate_gated
        self.missing_configuration += other.missing_configuration
        self.failed += other.failed
        self.dispatched_target_ids.extend(other.dispatched_target_ids)
