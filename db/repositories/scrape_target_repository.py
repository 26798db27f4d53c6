"""
Repository for scrape target reads and schedule writes.

The caller controls commit/rollback; this repository never commits on its own.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Select, or_, select
from sqlalchemy.orm import Session, lazyload

from db.models.scrape_target import ScrapeTarget


class ScrapeTargetRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def list_due(self, *, now: datetime, limit: int) -> list[ScrapeTarget]:
        """
        Active targets whose next scrape time has arrived, oldest first.

        Targets that were never scheduled (``next_scrape_at IS NULL``) sort
        ahead of everything else.
        """

        if limit <= 0:
            return []
        stmt: Select[tuple[ScrapeTarget]] = (
            select(ScrapeTarget)
            .where(
                ScrapeTarget.is_active_for_scraping.is_(True),
                or_(
                    ScrapeTarget.next_scrape_at.is_(None),
                    ScrapeTarget.next_scrape_at <= now,
                ),
            )
            .order_by(ScrapeTarget.next_scrape_at.asc().nulls_first(), ScrapeTarget.id)
            .limit(limit)
        )
        return list(self._session.scalars(stmt).unique().all())

    def get(self, target_id: uuid.UUID) -> ScrapeTarget | None:
        return self._session.get(ScrapeTarget, target_id)

    def get_for_update(self, target_id: uuid.UUID) -> ScrapeTarget | None:
        """
        Load one target with a row lock held until the transaction ends.

        The site configuration is not joined: PostgreSQL refuses FOR UPDATE
        on the nullable side of an outer join.
        """

        stmt = (
            select(ScrapeTarget)
            .where(ScrapeTarget.id == target_id)
            .options(lazyload(ScrapeTarget.site_configuration))
            .with_for_update()
        )
        return self._session.scalars(stmt).one_or_none()
