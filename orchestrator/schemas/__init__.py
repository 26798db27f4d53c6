"""
Wire and API schemas.
"""

from orchestrator.schemas.api import (
    DispatchCycleSummaryResponse,
    HealthResponse,
    ManualScrapeResponse,
)
from orchestrator.schemas.messages import ScrapeCommand, ScrapeResult, ScrapingProfile

__all__ = [
    "DispatchCycleSummaryResponse",
    "HealthResponse",
    "ManualScrapeResponse",
    "ScrapeCommand",
    "ScrapeResult",
    "ScrapingProfile",
]
