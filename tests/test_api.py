"""
tests/test_api.py

HTTP endpoints with the runtime replaced by stubs (lifespan not entered).
"""

from __future__ import annotations

import uuid
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from orchestrator.domain.scheduling import DispatchCycleSummary
from orchestrator.main import create_app


@pytest.fixture()
def dispatch_loop() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def client(dispatch_loop: MagicMock) -> TestClient:
    app = create_app()
    app.state.runtime = SimpleNamespace(
        dispatch_loop=dispatch_loop,
        dispatch_running=True,
        consumer_running=True,
    )
    return TestClient(app)


class TestManualScrapeEndpoint:
    def test_accepted(self, client: TestClient, dispatch_loop: MagicMock) -> None:
        target_id = uuid.uuid4()
        dispatch_loop.trigger_manual_scrape.return_value = True

        response = client.post(f"/targets/{target_id}/scrape")

        assert response.status_code == 202
        assert response.json() == {"target_id": str(target_id), "status": "published"}
        dispatch_loop.trigger_manual_scrape.assert_called_once_with(target_id)

    def test_not_dispatchable(self, client: TestClient, dispatch_loop: MagicMock) -> None:
        dispatch_loop.trigger_manual_scrape.return_value = False

        response = client.post(f"/targets/{uuid.uuid4()}/scrape")

        assert response.status_code == 404

    def test_invalid_id(self, client: TestClient) -> None:
        assert client.post("/targets/not-a-uuid/scrape").status_code == 422


class TestDispatchRunEndpoint:
    def test_returns_summary(self, client: TestClient, dispatch_loop: MagicMock) -> None:
        target_id = uuid.uuid4()
        dispatch_loop.run_cycle.return_value = DispatchCycleSummary(
            due=3,
            domains_processed=2,
            dispatched=1,
            rate_gated=1,
            missing_configuration=1,
            dispatched_target_ids=[target_id],
        )

        response = client.post("/dispatch/run")

        assert response.status_code == 200
        body = response.json()
        assert body["due"] == 3
        assert body["dispatched"] == 1
        assert body["dispatched_target_ids"] == [str(target_id)]

    def test_store_unavailable(self, client: TestClient, dispatch_loop: MagicMock) -> None:
        dispatch_loop.run_cycle.side_effect = OperationalError("SELECT", {}, Exception("down"))

        assert client.post("/dispatch/run").status_code == 503


class TestHealth:
    def test_reports_loop_state(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "dispatch_running": True, "consumer_running": True}

    def test_without_runtime(self) -> None:
        assert TestClient(create_app()).get("/health").status_code == 503
