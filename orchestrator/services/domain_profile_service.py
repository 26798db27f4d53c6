"""
orchestrator/services/domain_profile_service.py

Per-origin-domain rate gate and identity rotation.

State lives in the ``domain_rate_profiles`` table rather than in process
memory, so several orchestrator instances share one gate per domain. Every
public method is its own transaction.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models.domain_rate_profile import DomainRateProfile
from db.repositories.domain_profile_repository import DomainProfileRepository
from db.session import SessionFactory, SessionLocal
from orchestrator.config import DomainProfileSettings, get_domain_profile_settings
from orchestrator.domain.scheduling import ScrapeIdentity
from orchestrator.logging_utils import log_event

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENTS: tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) "
    "Version/17.2 Safari/605.1.15",
)

DEFAULT_HEADER_PROFILES: dict[str, dict[str, str]] = {
    "chrome_windows": {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,"
        "image/apng,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Accept-Encoding": "gzip, deflate, br",
        "DNT": "1",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
        "sec-ch-ua": '"Not_A Brand";v="8", "Chromium";v="120", "Google Chrome";v="120"',
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"Windows"',
    },
    "firefox_windows": {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
        "Accept-Encoding": "gzip, deflate, br",
        "DNT": "1",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
    },
    "safari_mac": {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Accept-Encoding": "gzip, deflate, br",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
    },
}


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def normalize_domain(domain: str) -> str:
    return domain.strip().lower()


class DomainProfileService:
    """
    Rate gate and fingerprint randomiser for one origin domain at a time.

    ``rng`` and ``clock`` are injectable so tests can pin the jitter draw and
    the current time. A single ``random.Random`` may be shared across worker
    threads; its methods are safe to call concurrently.
    """

    def __init__(
        self,
        *,
        session_factory: SessionFactory = SessionLocal,
        settings: DomainProfileSettings | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_domain_profile_settings()
        self._rng = rng or random.Random()
        self._clock = clock

    def get_or_create(self, domain: str) -> DomainRateProfile:
        """
        Fetch the profile for ``domain``, creating it with defaults if absent.
        """

        key = normalize_domain(domain)
        with self._session_factory() as session:
            try:
                profile = self._get_or_create(session, key)
                session.commit()
                return profile
            except SQLAlchemyError:
                session.rollback()
                raise

    def can_request_now(self, domain: str) -> bool:
        profile = self.get_or_create(domain)
        if profile.next_allowed_at is None:
            return True
        return profile.next_allowed_at <= self._clock()

    def record_request(self, domain: str) -> datetime:
        """
        Stamp a request against ``domain`` and push its gate forward.

        The delay is drawn uniformly from ``[min_delay_ms, max_delay_ms]``
        (inclusive) so the spacing between requests never settles into a
        fixed, fingerprintable interval. Returns the new ``next_allowed_at``.
        """

        key = normalize_domain(domain)
        with self._session_factory() as session:
            try:
                repository = DomainProfileRepository(session)
                profile = repository.get_for_update(key)
                if profile is None:
                    self._get_or_create(session, key)
                    profile = repository.get_for_update(key)
                if profile is None:
                    raise RuntimeError(f"Domain profile for {key!r} could not be created.")

                now = self._clock()
                delay_ms = self._rng.randint(profile.min_delay_ms, profile.max_delay_ms)
                profile.last_request_at = now
                profile.next_allowed_at = now + timedelta(milliseconds=delay_ms)
                next_allowed_at = profile.next_allowed_at
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                raise

        logger.debug(
            "Recorded request for %s; next allowed at %s (delay %d ms)",
            key,
            next_allowed_at.isoformat(),
            delay_ms,
        )
        return next_allowed_at

    def pick_identity(self, domain: str) -> ScrapeIdentity:
        """
        Draw a user agent and a header persona for the next request.

        The two draws are independent, so a persona's headers may be paired
        with another browser's user agent.
        """

        profile = self.get_or_create(domain)
        user_agent = self._rng.choice(list(profile.user_agents))
        personas = sorted(profile.header_profiles)
        if not personas:
            return ScrapeIdentity(user_agent=user_agent, headers={})
        persona = self._rng.choice(personas)
        return ScrapeIdentity(
            user_agent=user_agent,
            headers=dict(profile.header_profiles[persona]),
            persona=persona,
        )

    def _get_or_create(self, session: Session, key: str) -> DomainRateProfile:
        repository = DomainProfileRepository(session)
        profile = repository.get(key)
        if profile is not None:
            return profile

        created = repository.insert_if_absent(
            domain=key,
            user_agents=list(DEFAULT_USER_AGENTS),
            header_profiles={name: dict(headers) for name, headers in DEFAULT_HEADER_PROFILES.items()},
            min_delay_ms=self._settings.default_min_delay_ms,
            max_delay_ms=self._settings.default_max_delay_ms,
        )
        if created:
            log_event(
                logger,
                logging.INFO,
                "domain_profile_created",
                domain=key,
                min_delay_ms=self._settings.default_min_delay_ms,
                max_delay_ms=self._settings.default_max_delay_ms,
            )
        profile = repository.get(key)
        if profile is None:
            raise RuntimeError(f"Domain profile for {key!r} vanished after upsert.")
        return profile
