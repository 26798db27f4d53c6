"""
orchestrator/services/schedule_service.py

Due-target selection and schedule persistence for scrape targets.

Two callers write schedules concurrently: the dispatch loop advances a
target optimistically right after publishing its command, and the result
consumer rewrites it when the scrape later fails. Each write is one
transaction holding the target's row lock.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError

from db.repositories.scrape_target_repository import ScrapeTargetRepository
from db.session import SessionFactory, SessionLocal
from orchestrator.config import OrchestrationSettings, get_orchestration_settings
from orchestrator.domain.scheduling import DueTarget
from orchestrator.services.frequency import parse_frequency

logger = logging.getLogger(__name__)

FALLBACK_FREQUENCY = timedelta(hours=4)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class ScheduleService:
    """
    Reads due work and persists ``last_scraped_at`` / ``next_scrape_at``.
    """

    def __init__(
        self,
        *,
        session_factory: SessionFactory = SessionLocal,
        settings: OrchestrationSettings | None = None,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        resolved = settings or get_orchestration_settings()
        default = parse_frequency(resolved.default_frequency)
        if default is None:
            logger.warning(
                "Invalid default scraping frequency %r; using %s",
                resolved.default_frequency,
                FALLBACK_FREQUENCY,
            )
            default = FALLBACK_FREQUENCY
        self._default_frequency = default

    @property
    def default_frequency(self) -> timedelta:
        return self._default_frequency

    def due_targets(self, limit: int) -> list[DueTarget]:
        """
        Active targets due now, longest-waiting first, at most ``limit``.
        """

        now = self._clock()
        with self._session_factory() as session:
            rows = ScrapeTargetRepository(session).list_due(now=now, limit=limit)
            targets = [DueTarget.from_model(row) for row in rows]

        logger.info("Found %d scrape targets due at %s", len(targets), now.isoformat())
        return targets

    def get_target(self, target_id: uuid.UUID) -> DueTarget | None:
        with self._session_factory() as session:
            row = ScrapeTargetRepository(session).get(target_id)
            return DueTarget.from_model(row) if row is not None else None

    def effective_frequency(self, target: DueTarget) -> timedelta:
        """
        The target's override when it parses to a positive duration,
        otherwise the configured default.
        """

        return self._resolve_frequency(target.frequency_override, target.id)

    def _resolve_frequency(self, override: str | None, target_id: uuid.UUID) -> timedelta:
        if override is None or not override.strip():
            return self._default_frequency

        parsed = parse_frequency(override)
        if parsed is None:
            logger.warning(
                "Invalid scraping frequency override %r for target %s; using default %s",
                override,
                target_id,
                self._default_frequency,
            )
            return self._default_frequency
        return parsed

    def _derive_next(
        self,
        last_scraped_at: datetime,
        override: str | None,
        target_id: uuid.UUID,
    ) -> datetime:
        frequency = self._resolve_frequency(override, target_id)
        try:
            return last_scraped_at + frequency
        except OverflowError:
            logger.warning(
                "Scraping frequency %s for target %s overflows the calendar; using default %s",
                frequency,
                target_id,
                self._default_frequency,
            )
            return last_scraped_at + self._default_frequency

    def update_schedule(
        self,
        target_id: uuid.UUID,
        last_scraped_at: datetime | None = None,
        next_scrape_at: datetime | None = None,
    ) -> datetime | None:
        """
        Persist a schedule change for one target.

        - ``next_scrape_at`` given: stored verbatim (failure backoff path).
        - only ``last_scraped_at`` given: next time is derived as
          ``last_scraped_at + effective_frequency``. If the stored next time
          is already later than ``last_scraped_at``, a failure-path write
          landed after this dispatch started and is kept.

        A missing target is logged and ignored; the row may have been deleted
        by the administration side in the meantime. Returns the stored
        ``next_scrape_at`` (None when the target was not found).
        """

        with self._session_factory() as session:
            try:
                row = ScrapeTargetRepository(session).get_for_update(target_id)
                if row is None:
                    session.rollback()
                    logger.warning("Scrape target %s not found for schedule update", target_id)
                    return None

                if last_scraped_at is not None:
                    row.last_scraped_at = last_scraped_at

                if next_scrape_at is not None:
                    row.next_scrape_at = next_scrape_at
                elif last_scraped_at is not None:
                    stored = row.next_scrape_at
                    if stored is not None and stored > last_scraped_at:
                        logger.debug(
                            "Keeping later schedule %s for target %s over derived cadence",
                            stored.isoformat(),
                            target_id,
                        )
                    else:
                        row.next_scrape_at = self._derive_next(
                            last_scraped_at, row.scraping_frequency_override, row.id
                        )

                stored_next = row.next_scrape_at
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                raise

        logger.debug(
            "Updated schedule for target %s. Next scrape: %s",
            target_id,
            stored_next.isoformat() if stored_next else None,
        )
        return stored_next
