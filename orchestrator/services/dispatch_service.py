"""
orchestrator/services/dispatch_service.py

One dispatch cycle: pull due targets, group them by origin domain, and
publish scrape commands while respecting each domain's rate gate.

Concurrency model
-----------------
- Domains are processed in parallel, one worker thread per domain, at most
  ``max_concurrent_domains`` per cycle. Domains beyond the cap are left
  untouched and stay due for the next cycle.
- Targets inside one domain are processed strictly in order; a domain never
  has two requests in flight from the same cycle, otherwise its delay window
  would mean nothing.

Per-target outcome
------------------
  rate_gated             domain gate closed; target left due, no writes
  missing_configuration  no site configuration; warned, left due
  dispatched             command published, gate advanced, schedule advanced
  failed                 any exception; logged, left due
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from urllib.parse import urlparse

from orchestrator.config import OrchestrationSettings, get_orchestration_settings
from orchestrator.domain.scheduling import DispatchCycleSummary, DueTarget, ScrapeIdentity
from orchestrator.logging_utils import log_event
from orchestrator.messaging.base import CommandPublisher, MessagingError
from orchestrator.schemas.messages import ScrapeCommand, ScrapingProfile
from orchestrator.services.domain_profile_service import DomainProfileService
from orchestrator.services.schedule_service import ScheduleService

logger = logging.getLogger(__name__)

UNKNOWN_DOMAIN = "unknown"


class DispatchOutcome:
    DISPATCHED = "dispatched"
    RATE_GATED = "rate_gated"
    MISSING_CONFIGURATION = "missing_configuration"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def extract_domain(url: str) -> str:
    """
    Lowercase hostname of ``url``; ``"unknown"`` when there is none.

    Targets with malformed URLs still get dispatched, all sharing the
    ``unknown`` rate gate.
    """

    try:
        hostname = urlparse(url.strip()).hostname
    except ValueError:
        hostname = None
    if not hostname:
        logger.warning("Failed to extract domain from URL: %r", url)
        return UNKNOWN_DOMAIN
    return hostname.lower()


def group_by_domain(targets: Sequence[DueTarget]) -> dict[str, list[DueTarget]]:
    """
    Partition targets by domain, keeping due order both across domains
    (first appearance) and within each domain.
    """

    groups: dict[str, list[DueTarget]] = {}
    for target in targets:
        groups.setdefault(extract_domain(target.exact_product_url), []).append(target)
    return groups


def build_scrape_command(
    target: DueTarget,
    identity: ScrapeIdentity,
    *,
    dispatched_at: datetime,
) -> ScrapeCommand:
    config = target.site_configuration
    return ScrapeCommand(
        target_id=target.id,
        canonical_product_id=target.canonical_product_id,
        seller_name=target.seller_name,
        exact_product_url=target.exact_product_url,
        selectors=dict(config.selectors) if config is not None else {},
        requires_browser_automation=config.requires_browser_automation if config is not None else False,
        scraping_profile=ScrapingProfile(user_agent=identity.user_agent, headers=identity.headers),
        dispatched_at=dispatched_at,
    )


class DispatchLoop:
    """
    Runs dispatch cycles on demand. Cadence is owned by the caller
    (see ``orchestrator.scheduler.jobs``).
    """

    def __init__(
        self,
        *,
        schedule_service: ScheduleService,
        profile_service: DomainProfileService,
        publisher: CommandPublisher,
        settings: OrchestrationSettings | None = None,
        clock: Callable[[], datetime] = _now_utc,
        stop_event: threading.Event | None = None,
    ) -> None:
        self._schedule = schedule_service
        self._profiles = profile_service
        self._publisher = publisher
        self._settings = settings or get_orchestration_settings()
        self._clock = clock
        self._stop_event = stop_event or threading.Event()
        self._cycle_lock = threading.Lock()

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def run_cycle(self) -> DispatchCycleSummary:
        """
        Execute one cycle and return its counters.

        Only a failure to load due targets escapes; everything after that is
        contained per target. Cycles never overlap: a caller arriving while
        one runs waits for it to finish.
        """

        with self._cycle_lock:
            return self._run_cycle()

    def _run_cycle(self) -> DispatchCycleSummary:
        due = self._schedule.due_targets(self._settings.max_targets_per_cycle)
        summary = DispatchCycleSummary(due=len(due))
        if not due:
            logger.debug("No scrape targets due")
            return summary

        groups = group_by_domain(due)
        selected = list(groups.items())[: self._settings.max_concurrent_domains]
        summary.domains_processed = len(selected)
        summary.domains_deferred = len(groups) - len(selected)

        log_event(
            logger,
            logging.INFO,
            "dispatch_cycle_started",
            due=summary.due,
            domains=len(groups),
            domains_processed=summary.domains_processed,
            domains_deferred=summary.domains_deferred,
        )

        with ThreadPoolExecutor(
            max_workers=len(selected),
            thread_name_prefix="dispatch-domain",
        ) as executor:
            futures = {
                executor.submit(self._process_domain, domain, targets): domain
                for domain, targets in selected
            }
            for future in as_completed(futures):
                domain = futures[future]
                try:
                    summary.merge(future.result())
                except Exception:  # noqa: BLE001
                    logger.exception("Domain worker for %s crashed", domain)

        log_event(
            logger,
            logging.INFO,
            "dispatch_cycle_completed",
            due=summary.due,
            domains_processed=summary.domains_processed,
            domains_deferred=summary.domains_deferred,
            dispatched=summary.dispatched,
            rate_gated=summary.rate_gated,
            missing_configuration=summary.missing_configuration,
            failed=summary.failed,
        )
        return summary

    def trigger_manual_scrape(self, target_id: uuid.UUID) -> bool:
        """
        Publish a command for one target right now, ignoring its schedule
        and its domain's rate gate. Neither is modified.
        """

        logger.info("Triggering manual scrape for target %s", target_id)
        target = self._schedule.get_target(target_id)
        if target is None:
            logger.warning("Scrape target %s not found for manual scrape", target_id)
            return False
        if not target.is_active:
            logger.warning("Scrape target %s is not active for scraping", target_id)
            return False
        if target.site_configuration is None:
            logger.warning("Scrape target %s has no site configuration", target_id)
            return False

        domain = extract_domain(target.exact_product_url)
        identity = self._profiles.pick_identity(domain)
        command = build_scrape_command(target, identity, dispatched_at=self._clock())
        try:
            self._publisher.publish(command)
        except MessagingError:
            logger.exception("Manual scrape publish failed for target %s", target_id)
            return False

        log_event(
            logger,
            logging.INFO,
            "manual_scrape_published",
            target_id=target_id,
            domain=domain,
        )
        return True

    def _process_domain(self, domain: str, targets: list[DueTarget]) -> DispatchCycleSummary:
        logger.debug("Processing %d scrape targets for domain %s", len(targets), domain)
        summary = DispatchCycleSummary()
        for target in targets:
            if self._stop_event.is_set():
                logger.info("Stop requested; leaving remaining targets for %s due", domain)
                break
            try:
                outcome = self._dispatch_target(domain, target)
            except Exception as exc:  # noqa: BLE001
                summary.failed += 1
                log_event(
                    logger,
                    logging.ERROR,
                    "scrape_dispatch_failed",
                    target_id=target.id,
                    domain=domain,
                    error=repr(exc),
                )
                continue

            if outcome == DispatchOutcome.DISPATCHED:
                summary.dispatched += 1
                summary.dispatched_target_ids.append(target.id)
            elif outcome == DispatchOutcome.RATE_GATED:
                summary.rate_gated += 1
            elif outcome == DispatchOutcome.MISSING_CONFIGURATION:
                summary.missing_configuration += 1
        return summary

    def _dispatch_target(self, domain: str, target: DueTarget) -> str:
        if not self._profiles.can_request_now(domain):
            logger.debug("Domain %s is rate-gated, skipping target %s", domain, target.id)
            return DispatchOutcome.RATE_GATED

        if target.site_configuration is None:
            log_event(
                logger,
                logging.WARNING,
                "target_missing_site_configuration",
                target_id=target.id,
                domain=domain,
                seller_name=target.seller_name,
            )
            return DispatchOutcome.MISSING_CONFIGURATION

        identity = self._profiles.pick_identity(domain)
        now = self._clock()
        command = build_scrape_command(target, identity, dispatched_at=now)
        self._publisher.publish(command)

        self._profiles.record_request(domain)
        self._schedule.update_schedule(target.id, last_scraped_at=now)

        logger.debug(
            "Scheduled scraping for target %s (product %s, seller %s)",
            target.id,
            target.canonical_product_id,
            target.seller_name,
        )
        return DispatchOutcome.DISPATCHED
