"""
Domain-layer value objects shared by orchestration services.
"""

from orchestrator.domain.scheduling import (
    DispatchCycleSummary,
    DueTarget,
    ScrapeIdentity,
    SiteSelectors,
)

__all__ = ["DispatchCycleSummary", "DueTarget", "ScrapeIdentity", "SiteSelectors"]
