"""
tests/test_result_feedback_service.py

Failure classification, schedule corrections and delivery settlement for
the result feedback loop.
"""

from __future__ import annotations

import json
import threading
import uuid
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta
from typing import Any
from unittest.mock import MagicMock

import pytest
from sqlalchemy.orm import Session, sessionmaker

from conftest import T0, FrozenClock
from orchestrator.config import OrchestrationSettings
from orchestrator.messaging.base import Delivery, ResultSource
from orchestrator.schemas.messages import ScrapeResult
from orchestrator.services.result_feedback_service import (
    DEFAULT_RETRY_DELAY,
    FailureClass,
    ResultFeedbackHandler,
    ResultFeedbackLoop,
    classify_failure,
)
from orchestrator.services.schedule_service import ScheduleService


def failed_result(**overrides: Any) -> ScrapeResult:
    payload: dict[str, Any] = {
        "target_id": uuid.uuid4(),
        "success": False,
        "error_code": "HTTP_ERROR",
        "http_status": None,
        "timestamp": T0,
    }
    payload.update(overrides)
    return ScrapeResult(**payload)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class TestClassifyFailure:
    @pytest.mark.parametrize(
        "error_code, http_status, expected_class, expected_delay",
        [
            ("BLOCKED_BY_CAPTCHA", 403, FailureClass.CAPTCHA, timedelta(hours=2)),
            ("captcha_detected", None, FailureClass.CAPTCHA, timedelta(hours=2)),
            ("BLOCKED_BY_CAPTCHA", 429, FailureClass.CAPTCHA, timedelta(hours=2)),
            ("HTTP_ERROR", 429, FailureClass.RATE_LIMITED, timedelta(hours=1)),
            ("TIMEOUT", 429, FailureClass.RATE_LIMITED, timedelta(hours=1)),
            ("HTTP_ERROR", 500, FailureClass.SERVER_ERROR, timedelta(minutes=30)),
            ("HTTP_ERROR", 503, FailureClass.SERVER_ERROR, timedelta(minutes=30)),
            ("PARSING_ERROR", 200, FailureClass.PARSING_ERROR, timedelta(minutes=15)),
            ("EXTRACTION_ERROR", None, FailureClass.PARSING_ERROR, timedelta(minutes=15)),
            ("HTTP_ERROR", 404, FailureClass.UNCLASSIFIED, DEFAULT_RETRY_DELAY),
            (None, None, FailureClass.UNCLASSIFIED, DEFAULT_RETRY_DELAY),
        ],
    )
    def test_rule_table(
        self,
        error_code: str | None,
        http_status: int | None,
        expected_class: str,
        expected_delay: timedelta,
    ) -> None:
        result = failed_result(error_code=error_code, http_status=http_status)
        assert classify_failure(result) == (expected_class, expected_delay)


# ---------------------------------------------------------------------------
# Handler against the store
# ---------------------------------------------------------------------------


@pytest.fixture()
def schedule(session_factory: sessionmaker[Session], clock: FrozenClock) -> ScheduleService:
    return ScheduleService(session_factory=session_factory, settings=OrchestrationSettings(), clock=clock)


class TestResultFeedbackHandler:
    def test_rate_limited_failure_reschedules_one_hour_after_result(
        self,
        schedule: ScheduleService,
        seed_target: Callable[..., uuid.UUID],
        load_target: Callable,
    ) -> None:
        last = T0 - timedelta(minutes=3)
        target_id = seed_target(last_scraped_at=last, next_scrape_at=last + timedelta(hours=4))
        result_time = T0 + timedelta(minutes=7)

        retry_at = ResultFeedbackHandler(schedule_service=schedule).handle(
            failed_result(target_id=target_id, http_status=429, timestamp=result_time)
        )

        row = load_target(target_id)
        assert retry_at == result_time + timedelta(hours=1)
        assert row.next_scrape_at == result_time + timedelta(hours=1)
        assert row.last_scraped_at == last

    def test_success_changes_nothing(
        self,
        schedule: ScheduleService,
        seed_target: Callable[..., uuid.UUID],
        load_target: Callable,
    ) -> None:
        next_at = T0 + timedelta(hours=4)
        target_id = seed_target(last_scraped_at=T0, next_scrape_at=next_at)

        result = ScrapeResult(target_id=target_id, success=True, timestamp=T0 + timedelta(minutes=1))
        assert ResultFeedbackHandler(schedule_service=schedule).handle(result) is None

        assert load_target(target_id).next_scrape_at == next_at

    def test_redelivered_failure_writes_same_time(
        self,
        schedule: ScheduleService,
        seed_target: Callable[..., uuid.UUID],
        load_target: Callable,
    ) -> None:
        target_id = seed_target()
        result = failed_result(target_id=target_id, error_code="PARSING_ERROR")
        handler = ResultFeedbackHandler(schedule_service=schedule)

        handler.handle(result)
        handler.handle(result)

        assert load_target(target_id).next_scrape_at == T0 + timedelta(minutes=15)

    def test_unknown_target_is_ignored(self, schedule: ScheduleService) -> None:
        handler = ResultFeedbackHandler(schedule_service=schedule)
        assert handler.handle(failed_result(http_status=500)) == T0 + timedelta(minutes=30)


# ---------------------------------------------------------------------------
# Delivery settlement
# ---------------------------------------------------------------------------


class SettlementRecorder:
    def __init__(self) -> None:
        self.settlements: list[tuple[str, bool | None]] = []

    def delivery(self, body: bytes, *, redelivered: bool = False) -> Delivery:
        return Delivery(
            body=body,
            routing_key="scraping.result.product",
            redelivered=redelivered,
            ack=lambda: self.settlements.append(("ack", None)),
            reject=lambda requeue: self.settlements.append(("reject", requeue)),
        )


class StubHandler:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.handled: list[ScrapeResult] = []

    def handle(self, result: ScrapeResult) -> datetime | None:
        if self.error is not None:
            raise self.error
        self.handled.append(result)
        return None


class ListSource(ResultSource):
    def __init__(self, items: list[Delivery | None]) -> None:
        self.items = items
        self.closed = False

    def deliveries(self, *, poll_seconds: float) -> Iterator[Delivery | None]:
        yield from self.items

    def close(self) -> None:
        self.closed = True


def result_body(**overrides: Any) -> bytes:
    payload: dict[str, Any] = {
        "target_id": str(uuid.uuid4()),
        "success": False,
        "error_code": "HTTP_ERROR",
        "http_status": 503,
        "timestamp": "2026-10-19T12:00:00Z",
        "price": 19.99,
    }
    payload.update(overrides)
    return json.dumps(payload).encode("utf-8")


def make_loop(handler: StubHandler, items: list[Delivery | None] | None = None) -> ResultFeedbackLoop:
    return ResultFeedbackLoop(
        source=ListSource(items or []),
        handler=handler,  # type: ignore[arg-type]
        poll_seconds=0.01,
    )


class TestProcessDelivery:
    def test_valid_result_is_acked(self) -> None:
        recorder = SettlementRecorder()
        handler = StubHandler()

        make_loop(handler).process_delivery(recorder.delivery(result_body()))

        assert recorder.settlements == [("ack", None)]
        assert handler.handled[0].http_status == 503

    @pytest.mark.parametrize(
        "body",
        [
            b"not json at all",
            b"{}",
            json.dumps({"target_id": "nope", "success": False, "timestamp": "2026-10-19T12:00:00Z"}).encode(),
            json.dumps({"target_id": str(uuid.uuid4()), "success": False}).encode(),
        ],
        ids=["garbage", "empty", "bad-uuid", "no-timestamp"],
    )
    def test_poison_message_is_dropped(self, body: bytes) -> None:
        recorder = SettlementRecorder()
        handler = StubHandler()

        make_loop(handler).process_delivery(recorder.delivery(body))

        assert recorder.settlements == [("reject", False)]
        assert handler.handled == []

    def test_processing_failure_requeues_first_delivery(self) -> None:
        recorder = SettlementRecorder()

        make_loop(StubHandler(RuntimeError("db down"))).process_delivery(recorder.delivery(result_body()))

        assert recorder.settlements == [("reject", True)]

    def test_processing_failure_drops_redelivery(self) -> None:
        recorder = SettlementRecorder()

        make_loop(StubHandler(RuntimeError("db down"))).process_delivery(
            recorder.delivery(result_body(), redelivered=True)
        )

        assert recorder.settlements == [("reject", False)]

    def test_retry_time_past_calendar_end_is_dropped(self) -> None:
        recorder = SettlementRecorder()
        schedule_service = MagicMock()
        loop = ResultFeedbackLoop(
            source=ListSource([]),
            handler=ResultFeedbackHandler(schedule_service=schedule_service),
        )
        body = result_body(error_code="BLOCKED_BY_CAPTCHA", timestamp="9999-12-31T23:59:59Z")

        loop.process_delivery(recorder.delivery(body))

        assert recorder.settlements == [("reject", False)]
        schedule_service.update_schedule.assert_not_called()


class TestRunLoop:
    def test_drains_source_and_closes(self) -> None:
        recorder = SettlementRecorder()
        handler = StubHandler()
        source = ListSource([recorder.delivery(result_body()), None, recorder.delivery(result_body())])
        loop = ResultFeedbackLoop(source=source, handler=handler)  # type: ignore[arg-type]

        loop.run()

        assert len(handler.handled) == 2
        assert recorder.settlements == [("ack", None), ("ack", None)]
        assert source.closed is True

    def test_stop_requeues_unprocessed_delivery(self) -> None:
        recorder = SettlementRecorder()
        handler = StubHandler()
        stop = threading.Event()
        stop.set()
        source = ListSource([recorder.delivery(result_body())])
        loop = ResultFeedbackLoop(source=source, handler=handler, stop_event=stop)  # type: ignore[arg-type]

        loop.run()

        assert handler.handled == []
        assert recorder.settlements == [("reject", True)]
        assert source.closed is True
