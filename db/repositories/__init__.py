"""
Repository exports for the orchestration store.
"""

from db.repositories.domain_profile_repository import DomainProfileRepository
from db.repositories.scrape_target_repository import ScrapeTargetRepository

__all__ = ["DomainProfileRepository", "ScrapeTargetRepository"]
