"""
db/models/site_configuration.py

Per-site extraction configuration. Maintained by the administration
subsystem; the orchestrator only reads it and forwards ``selectors``
untouched on each scrape command.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import JSON, Boolean, Index, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin


class ScraperSiteConfiguration(Base, TimestampMixin):
    __tablename__ = "scraper_site_configurations"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    site_domain: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Hostname the selectors were written for",
    )
    selectors: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        comment="Extraction selectors, opaque to the orchestrator",
    )
    requires_browser_automation: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    __table_args__ = (Index("ix_scraper_site_configurations_site_domain", "site_domain"),)
