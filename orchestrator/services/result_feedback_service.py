"""
orchestrator/services/result_feedback_service.py

Turns asynchronous scrape results into schedule corrections.

Successful results need nothing: the dispatch loop already advanced the
target when it published the command. A failed result is classified into a
retry delay and the target is rescheduled to ``result.timestamp + delay``.
The retry time depends only on the message itself, so redelivered or
reordered results always produce the same write.

Settlement rules per delivery:
  payload does not decode/validate  -> reject, no requeue (poison)
  processing raised, first delivery -> reject with requeue
  processing raised, redelivery     -> reject, no requeue
  processed                         -> ack
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from pydantic import ValidationError

from orchestrator.logging_utils import log_event
from orchestrator.messaging.base import Delivery, ResultSource
from orchestrator.schemas.messages import ScrapeResult
from orchestrator.services.schedule_service import ScheduleService

logger = logging.getLogger(__name__)


class FailureClass:
    CAPTCHA = "captcha"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    PARSING_ERROR = "parsing_error"
    UNCLASSIFIED = "unclassified"


CAPTCHA_ERROR_CODES: frozenset[str] = frozenset({"BLOCKED_BY_CAPTCHA", "CAPTCHA_DETECTED", "BOT_CHALLENGE"})
PARSING_ERROR_CODES: frozenset[str] = frozenset({"PARSING_ERROR", "EXTRACTION_ERROR"})


def _error_code(result: ScrapeResult) -> str:
    return (result.error_code or "").strip().upper()


@dataclass(frozen=True)
class BackoffRule:
    failure_class: str
    delay: timedelta
    matches: Callable[[ScrapeResult], bool]


# Evaluated top to bottom; the first match wins.
BACKOFF_RULES: tuple[BackoffRule, ...] = (
    BackoffRule(
        FailureClass.CAPTCHA,
        timedelta(hours=2),
        lambda result: _error_code(result) in CAPTCHA_ERROR_CODES,
    ),
    BackoffRule(
        FailureClass.RATE_LIMITED,
        timedelta(hours=1),
        lambda result: result.http_status == 429,
    ),
    BackoffRule(
        FailureClass.SERVER_ERROR,
        timedelta(minutes=30),
        lambda result: result.http_status is not None and 500 <= result.http_status <= 599,
    ),
    BackoffRule(
        FailureClass.PARSING_ERROR,
        timedelta(minutes=15),
        lambda result: _error_code(result) in PARSING_ERROR_CODES,
    ),
)
DEFAULT_RETRY_DELAY = timedelta(minutes=30)


def classify_failure(result: ScrapeResult) -> tuple[str, timedelta]:
    """
    Map a failed result to its failure class and retry delay.
    """

    for rule in BACKOFF_RULES:
        if rule.matches(result):
            return rule.failure_class, rule.delay
    return FailureClass.UNCLASSIFIED, DEFAULT_RETRY_DELAY


class ResultFeedbackHandler:
    """
    Applies one decoded result to the target's schedule.
    """

    def __init__(self, *, schedule_service: ScheduleService) -> None:
        self._schedule = schedule_service

    def handle(self, result: ScrapeResult) -> datetime | None:
        """
        Returns the retry time written for a failure, None for a success.
        """

        if result.success:
            logger.debug("Scrape succeeded for target %s", result.target_id)
            return None

        failure_class, delay = classify_failure(result)
        next_retry_at = result.timestamp + delay
        logger.warning(
            "Scrape failed for target %s: %s (HTTP %s) - %s",
            result.target_id,
            result.error_code,
            result.http_status,
            result.error_message,
        )

        # last_scraped_at stays as-is: the attempt produced no usable data.
        self._schedule.update_schedule(
            result.target_id,
            last_scraped_at=None,
            next_scrape_at=next_retry_at,
        )
        log_event(
            logger,
            logging.INFO,
            "scrape_retry_scheduled",
            target_id=result.target_id,
            error_code=result.error_code,
            http_status=result.http_status,
            failure_class=failure_class,
            delay_seconds=int(delay.total_seconds()),
            next_retry_at=next_retry_at.isoformat(),
        )
        return next_retry_at


class ResultFeedbackLoop:
    """
    Long-lived consumer draining the result queue until ``stop_event`` is set.
    """

    def __init__(
        self,
        *,
        source: ResultSource,
        handler: ResultFeedbackHandler,
        poll_seconds: float = 1.0,
        stop_event: threading.Event | None = None,
    ) -> None:
        self._source = source
        self._handler = handler
        self._poll_seconds = poll_seconds
        self._stop_event = stop_event or threading.Event()

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def run(self) -> None:
        """
        Consume until stopped. The in-flight message is always settled before
        the loop exits; prefetched but unprocessed messages go back to the
        queue when the source closes.
        """

        logger.info("Scrape result consumer started")
        try:
            for delivery in self._source.deliveries(poll_seconds=self._poll_seconds):
                if self._stop_event.is_set():
                    if delivery is not None:
                        delivery.reject(True)
                    break
                if delivery is None:
                    continue
                self.process_delivery(delivery)
        finally:
            self._source.close()
            logger.info("Scrape result consumer stopped")

    def process_delivery(self, delivery: Delivery) -> None:
        try:
            result = ScrapeResult.model_validate_json(delivery.body)
        except ValidationError as exc:
            log_event(
                logger,
                logging.ERROR,
                "result_message_rejected",
                routing_key=delivery.routing_key,
                reason="invalid_payload",
                error_count=exc.error_count(),
            )
            delivery.reject(False)
            return

        try:
            self._handler.handle(result)
        except OverflowError:
            # retry time past datetime.max; redelivery cannot succeed
            log_event(
                logger,
                logging.ERROR,
                "result_message_rejected",
                target_id=result.target_id,
                routing_key=delivery.routing_key,
                reason="retry_time_out_of_range",
            )
            delivery.reject(False)
            return
        except Exception as exc:  # noqa: BLE001
            requeue = not delivery.redelivered
            log_event(
                logger,
                logging.ERROR,
                "result_processing_failed",
                target_id=result.target_id,
                routing_key=delivery.routing_key,
                requeue=requeue,
                error=repr(exc),
            )
            delivery.reject(requeue)
            return

        delivery.ack()
