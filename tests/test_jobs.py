"""
tests/test_jobs.py

Scheduler wiring and the orchestrator runtime lifecycle.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from orchestrator.config import BrokerSettings, OrchestrationSettings
from orchestrator.messaging.base import CommandPublisher, Delivery, MessagingError, ResultSource
from orchestrator.scheduler.jobs import (
    DISPATCH_JOB_ID,
    OrchestratorRuntime,
    build_scheduler,
    run_dispatch_cycle,
)
from orchestrator.schemas.messages import ScrapeCommand


class NullPublisher(CommandPublisher):
    def __init__(self) -> None:
        self.closed = False

    def publish(self, command: ScrapeCommand) -> None:
        raise AssertionError("nothing should be published")

    def close(self) -> None:
        self.closed = True


class FlakySource(ResultSource):
    """Fails on the first subscription, idles on the next ones."""

    def __init__(self) -> None:
        self.subscriptions = 0
        self.resubscribed = threading.Event()

    def deliveries(self, *, poll_seconds: float) -> Iterator[Delivery | None]:
        self.subscriptions += 1
        if self.subscriptions == 1:
            raise MessagingError("connection refused")
        self.resubscribed.set()
        while True:
            time.sleep(poll_seconds)
            yield None


class TestBuildScheduler:
    def test_registers_single_interval_job(self) -> None:
        scheduler = build_scheduler(MagicMock(), settings=OrchestrationSettings(interval_seconds=120))

        job = scheduler.get_job(DISPATCH_JOB_ID)

        assert job is not None
        assert job.trigger.interval == timedelta(seconds=120)
        assert job.max_instances == 1
        assert job.coalesce is True
        assert scheduler.running is False

    def test_job_body_propagates_failures(self) -> None:
        loop = MagicMock()
        loop.run_cycle.side_effect = RuntimeError("store unavailable")

        with pytest.raises(RuntimeError):
            run_dispatch_cycle(loop)


class TestOrchestratorRuntime:
    def _runtime(self, source: ResultSource, publisher: CommandPublisher) -> OrchestratorRuntime:
        schedule = MagicMock()
        schedule.due_targets.return_value = []
        return OrchestratorRuntime(
            schedule_service=schedule,
            profile_service=MagicMock(),
            publisher=publisher,
            result_source=source,
            settings=OrchestrationSettings(interval_seconds=3600),
            broker_settings=BrokerSettings(poll_seconds=0.01),
            reconnect_delay_seconds=0.01,
        )

    def test_consumer_resubscribes_after_broker_failure(self) -> None:
        source = FlakySource()
        publisher = NullPublisher()
        runtime = self._runtime(source, publisher)

        runtime.start(dispatch=False)
        try:
            assert source.resubscribed.wait(timeout=5)
            assert runtime.consumer_running is True
        finally:
            runtime.stop(timeout=5)

        assert runtime.consumer_running is False
        assert publisher.closed is True

    def test_start_runs_first_cycle_immediately(self) -> None:
        source = FlakySource()
        runtime = self._runtime(source, NullPublisher())
        cycle_ran = threading.Event()
        runtime.schedule_service.due_targets.side_effect = lambda limit: cycle_ran.set() or []

        runtime.start(consume=False)
        try:
            assert cycle_ran.wait(timeout=5)
            assert runtime.dispatch_running is True
        finally:
            runtime.stop(timeout=5)

        assert runtime.dispatch_running is False
