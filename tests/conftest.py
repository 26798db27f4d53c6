"""
Shared fixtures: a throwaway SQLite store built from the ORM metadata, a
controllable clock and a seeding helper for scrape targets.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

import db.models  # noqa: F401 registers ORM models on Base.metadata
from db.base import Base
from db.models import ScrapeTarget, ScraperSiteConfiguration
from db.session import build_session_factory

T0 = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture()
def engine(tmp_path: Path) -> Iterator[Engine]:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'orchestrator.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return build_session_factory(engine)


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def seed_target(session_factory: sessionmaker[Session]) -> Callable[..., uuid.UUID]:
    """
    Insert one scrape target (with a site configuration unless
    ``configured=False``) and return its id.
    """

    def _seed(
        *,
        url: str = "https://shop.example.com/p/1",
        next_scrape_at: datetime | None = None,
        last_scraped_at: datetime | None = None,
        frequency: str | None = None,
        active: bool = True,
        configured: bool = True,
        seller_name: str = "Example Shop",
    ) -> uuid.UUID:
        with session_factory() as session:
            config = None
            if configured:
                config = ScraperSiteConfiguration(
                    site_domain="shop.example.com",
                    selectors={"price": ".price", "title": "h1"},
                    requires_browser_automation=False,
                )
                session.add(config)
            target = ScrapeTarget(
                canonical_product_id=uuid.uuid4(),
                seller_name=seller_name,
                exact_product_url=url,
                site_configuration=config,
                is_active_for_scraping=active,
                scraping_frequency_override=frequency,
                last_scraped_at=last_scraped_at,
                next_scrape_at=next_scrape_at,
            )
            session.add(target)
            session.commit()
            return target.id

    return _seed


@pytest.fixture()
def load_target(session_factory: sessionmaker[Session]) -> Callable[[uuid.UUID], ScrapeTarget | None]:
    def _load(target_id: uuid.UUID) -> ScrapeTarget | None:
        with session_factory() as session:
            return session.get(ScrapeTarget, target_id)

    return _load
