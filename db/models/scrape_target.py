"""
db/models/scrape_target.py

One (product, seller, URL) pairing to be periodically re-scraped.

Rows are created and edited by the administration subsystem. The
orchestrator owns exactly two columns: ``last_scraped_at`` and
``next_scrape_at``.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, TimestampMixin, UTCDateTime
from db.models.site_configuration import ScraperSiteConfiguration


class ScrapeTarget(Base, TimestampMixin):
    __tablename__ = "scrape_targets"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    canonical_product_id: Mapped[uuid.UUID] = mapped_column(Uuid(), nullable=False)
    seller_name: Mapped[str] = mapped_column(String(255), nullable=False)
    exact_product_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    site_configuration_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(),
        ForeignKey("scraper_site_configurations.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_active_for_scraping: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )
    scraping_frequency_override: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Short token such as PT4H / P1D, or a raw duration string",
    )
    last_scraped_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    next_scrape_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="NULL means due immediately",
    )

    site_configuration: Mapped[ScraperSiteConfiguration | None] = relationship(lazy="joined")

    __table_args__ = (
        Index("ix_scrape_targets_active_next_scrape", "is_active_for_scraping", "next_scrape_at"),
        Index("ix_scrape_targets_canonical_product_id", "canonical_product_id"),
    )
