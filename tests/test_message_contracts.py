"""
tests/test_message_contracts.py

JSON contracts exchanged with the scraping engine.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from orchestrator.schemas.messages import ScrapeCommand, ScrapeResult, ScrapingProfile


def _command(**overrides) -> ScrapeCommand:
    payload = {
        "target_id": uuid.uuid4(),
        "canonical_product_id": uuid.uuid4(),
        "seller_name": "Example Shop",
        "exact_product_url": "https://shop.example.com/p/1",
        "selectors": {"price": {"css": ".price", "attr": "content"}},
        "requires_browser_automation": True,
        "scraping_profile": ScrapingProfile(user_agent="TestAgent/1.0", headers={"Accept": "*/*"}),
        "dispatched_at": datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc),
    }
    payload.update(overrides)
    return ScrapeCommand(**payload)


class TestScrapeCommand:
    def test_serialises_every_field(self) -> None:
        command = _command()
        data = json.loads(command.model_dump_json())

        assert set(data) == {
            "target_id",
            "canonical_product_id",
            "seller_name",
            "exact_product_url",
            "selectors",
            "requires_browser_automation",
            "scraping_profile",
            "dispatched_at",
        }
        assert data["target_id"] == str(command.target_id)
        assert data["selectors"] == {"price": {"css": ".price", "attr": "content"}}
        assert data["scraping_profile"] == {"user_agent": "TestAgent/1.0", "headers": {"Accept": "*/*"}}

    def test_naive_dispatch_time_is_utc(self) -> None:
        command = _command(dispatched_at=datetime(2026, 10, 19, 12, 0))
        assert command.dispatched_at.tzinfo == timezone.utc

    def test_empty_user_agent_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ScrapingProfile(user_agent="")

    def test_is_frozen(self) -> None:
        command = _command()
        with pytest.raises(ValidationError):
            command.seller_name = "Other"  # type: ignore[misc]


class TestScrapeResult:
    def test_minimal_success(self) -> None:
        result = ScrapeResult.model_validate_json(
            json.dumps(
                {
                    "target_id": "0b8f6f0e-7d0c-4d0b-9d55-3f2a9e8c1a11",
                    "success": True,
                    "timestamp": "2026-10-19T12:00:00+02:00",
                }
            )
        )

        assert result.success is True
        assert result.error_code is None
        assert result.http_status is None
        assert result.timestamp == datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)
        assert result.timestamp.tzinfo == timezone.utc

    def test_unknown_fields_are_ignored(self) -> None:
        result = ScrapeResult.model_validate(
            {
                "target_id": str(uuid.uuid4()),
                "success": False,
                "error_code": "HTTP_ERROR",
                "http_status": 429,
                "timestamp": "2026-10-19T12:00:00Z",
                "price": "19.99",
                "currency": "EUR",
            }
        )
        assert result.http_status == 429

    def test_missing_target_id_is_invalid(self) -> None:
        with pytest.raises(ValidationError):
            ScrapeResult.model_validate({"success": False, "timestamp": "2026-10-19T12:00:00Z"})
