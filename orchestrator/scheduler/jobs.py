"""
orchestrator/scheduler/jobs.py

Process runtime for the two orchestration loops.

Dispatch loop
-------------
An APScheduler ``BackgroundScheduler`` interval job. ``max_instances=1``
and ``coalesce=True`` mean that a cycle running longer than the interval
delays the next one instead of stacking or replaying missed runs. The first
cycle fires immediately on start.

Result feedback loop
--------------------
A dedicated daemon thread draining the result queue. A broker failure ends
the current subscription; the thread waits ``reconnect_delay_seconds`` and
subscribes again until shutdown.

Lifecycle
----------
``OrchestratorRuntime.start()`` on boot, ``stop()`` on shutdown. ``stop()``
sets the shared stop signal (dispatch workers stop taking new targets, the
consumer stops taking new messages), waits for the in-flight cycle and the
in-flight message to finish, then closes broker connections.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler

from orchestrator.config import (
    BrokerSettings,
    OrchestrationSettings,
    get_broker_settings,
    get_orchestration_settings,
)
from orchestrator.logging_utils import log_event
from orchestrator.messaging.base import CommandPublisher, ResultSource
from orchestrator.messaging.rabbitmq import RabbitMQCommandPublisher, RabbitMQResultSource
from orchestrator.services.dispatch_service import DispatchLoop
from orchestrator.services.domain_profile_service import DomainProfileService
from orchestrator.services.result_feedback_service import ResultFeedbackHandler, ResultFeedbackLoop
from orchestrator.services.schedule_service import ScheduleService

logger = logging.getLogger(__name__)

DISPATCH_JOB_ID = "scrape_dispatch_cycle"


def run_dispatch_cycle(dispatch_loop: DispatchLoop) -> None:
    """
    Job body: one dispatch cycle. A failure to read due work is logged and
    re-raised so APScheduler records the failed run; the next interval
    still fires.
    """

    try:
        dispatch_loop.run_cycle()
    except Exception:
        logger.exception("Scheduler: dispatch cycle failed")
        raise


def build_scheduler(
    dispatch_loop: DispatchLoop,
    *,
    settings: OrchestrationSettings | None = None,
) -> BackgroundScheduler:
    """
    Returns a configured but *not yet started* ``BackgroundScheduler``.
    """

    resolved = settings or get_orchestration_settings()
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_dispatch_cycle,
        trigger="interval",
        seconds=resolved.interval_seconds,
        args=[dispatch_loop],
        id=DISPATCH_JOB_ID,
        name="Scrape dispatch cycle",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(timezone.utc),
    )
    return scheduler


class OrchestratorRuntime:
    """
    Owns the dispatch scheduler and the result consumer thread.
    """

    def __init__(
        self,
        *,
        schedule_service: ScheduleService | None = None,
        profile_service: DomainProfileService | None = None,
        publisher: CommandPublisher | None = None,
        result_source: ResultSource | None = None,
        settings: OrchestrationSettings | None = None,
        broker_settings: BrokerSettings | None = None,
        reconnect_delay_seconds: float = 5.0,
    ) -> None:
        self._settings = settings or get_orchestration_settings()
        broker = broker_settings or get_broker_settings()
        self._stop_event = threading.Event()
        self._reconnect_delay_seconds = reconnect_delay_seconds

        self.schedule_service = schedule_service or ScheduleService(settings=self._settings)
        self.profile_service = profile_service or DomainProfileService()
        self.publisher = publisher or RabbitMQCommandPublisher(broker)
        self.dispatch_loop = DispatchLoop(
            schedule_service=self.schedule_service,
            profile_service=self.profile_service,
            publisher=self.publisher,
            settings=self._settings,
            stop_event=self._stop_event,
        )
        self.feedback_loop = ResultFeedbackLoop(
            source=result_source or RabbitMQResultSource(broker),
            handler=ResultFeedbackHandler(schedule_service=self.schedule_service),
            poll_seconds=broker.poll_seconds,
            stop_event=self._stop_event,
        )
        self._scheduler: BackgroundScheduler | None = None
        self._consumer_thread: threading.Thread | None = None

    @property
    def dispatch_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def consumer_running(self) -> bool:
        return self._consumer_thread is not None and self._consumer_thread.is_alive()

    def start(self, *, dispatch: bool = True, consume: bool = True) -> None:
        self._stop_event.clear()
        if dispatch:
            self._scheduler = build_scheduler(self.dispatch_loop, settings=self._settings)
            self._scheduler.start()
        if consume:
            self._consumer_thread = threading.Thread(
                target=self._consume_forever,
                name="scrape-result-consumer",
                daemon=True,
            )
            self._consumer_thread.start()
        log_event(
            logger,
            logging.INFO,
            "orchestrator_started",
            dispatch=dispatch,
            consume=consume,
            interval_seconds=self._settings.interval_seconds,
            max_targets_per_cycle=self._settings.max_targets_per_cycle,
            max_concurrent_domains=self._settings.max_concurrent_domains,
        )

    def stop(self, *, timeout: float | None = 30.0) -> None:
        logger.info("Orchestrator stopping")
        self._stop_event.set()
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=True)
            self._scheduler = None
        if self._consumer_thread is not None:
            self._consumer_thread.join(timeout=timeout)
            if self._consumer_thread.is_alive():
                logger.warning("Scrape result consumer did not stop within %s seconds", timeout)
            self._consumer_thread = None
        self.publisher.close()
        logger.info("Orchestrator stopped")

    def _consume_forever(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.feedback_loop.run()
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Scrape result consumer failed; reconnecting in %.1f seconds",
                    self._reconnect_delay_seconds,
                )
                self._stop_event.wait(self._reconnect_delay_seconds)
