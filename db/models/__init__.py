"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.domain_rate_profile import DomainRateProfile
from db.models.scrape_target import ScrapeTarget
from db.models.site_configuration import ScraperSiteConfiguration

__all__ = [
    "DomainRateProfile",
    "ScrapeTarget",
    "ScraperSiteConfiguration",
]
