"""Tests for the sync HTTP triggers and operational endpoints."""

from __future__ import annotations

from collections.abc import Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

from tests.fixtures.synthetic.vis_fixtures import TOURNAMENT_LIST
from vis_sync.api.dependencies import get_services
from vis_sync.api.main import app
from vis_sync.auth.credentials import Credentials, StaticCredentialProvider
from vis_sync.exceptions import ConfigurationError
from vis_sync.jobs.runner import SyncServices, build_services
from vis_sync.utils.config import get_service_configuration, get_settings

API_KEY = {"X-API-Key": "test-key"}


class TournamentListStub:
    """Serves the tournament list, or a fixed error status."""

    def __init__(self) -> None:
        self.status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.status != 200:
            return httpx.Response(self.status, text="unavailable")
        return httpx.Response(200, text=TOURNAMENT_LIST)


@pytest.fixture
def upstream() -> TournamentListStub:
    return TournamentListStub()


@pytest.fixture
def services(store, clock, sleep_recorder, upstream: TournamentListStub) -> SyncServices:
    return build_services(
        get_settings(),
        service_config=get_service_configuration(),
        store=store,
        credential_provider=StaticCredentialProvider(Credentials("sync-user", "pw", "secret")),
        transport=httpx.MockTransport(upstream),
        clock=clock,
        sleep=sleep_recorder,
    )


@pytest.fixture(name="client")
def client_fixture(services: SyncServices) -> Iterator[TestClient]:
    """Provide a FastAPI test client wired to isolated services."""

    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class TestApiKeys:
    """API key enforcement."""

    def test_missing_api_key(self, client: TestClient) -> None:
        response = client.post("/api/v1/sync/tournaments")

        assert response.status_code == 401
        assert response.json() == {"detail": "Missing API key."}

    def test_invalid_api_key(self, client: TestClient) -> None:
        response = client.get("/api/v1/sync/status", headers={"X-API-Key": "wrong"})

        assert response.status_code == 403
        assert response.json() == {"detail": "Invalid API key."}


class TestSyncTriggers:
    """Invocation contract over HTTP."""

    def test_tournament_sync_success(self, client: TestClient) -> None:
        response = client.post("/api/v1/sync/tournaments", headers=API_KEY)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["tournamentsProcessed"] == 2
        assert body["insertsCount"] == 2
        assert isinstance(body["duration"], int)

    def test_tournament_sync_critical_failure(
        self, client: TestClient, upstream: TournamentListStub
    ) -> None:
        upstream.status = 503

        response = client.post("/api/v1/sync/tournaments", headers=API_KEY)

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["tournamentsProcessed"] == 0
        assert body["errorsCount"] == 1

    def test_match_sync_without_candidates(self, client: TestClient) -> None:
        response = client.post("/api/v1/sync/matches", headers=API_KEY)

        assert response.status_code == 200
        assert response.json()["matchesProcessed"] == 0

    def test_live_scores_without_stored_running_matches(self, client: TestClient) -> None:
        client.post("/api/v1/sync/tournaments", headers=API_KEY)

        response = client.post("/api/v1/sync/live-scores", headers=API_KEY)

        assert response.status_code == 200
        body = response.json()
        assert body["matchesProcessed"] == 0
        assert body["details"] == [{"tournamentNo": "101", "liveMatches": 0}]


class TestOperationalEndpoints:
    """Status, statistics, dead letters and health."""

    def test_status_and_statistics(self, client: TestClient) -> None:
        client.post("/api/v1/sync/tournaments", headers=API_KEY)

        status_body = client.get("/api/v1/sync/status", headers=API_KEY).json()
        stats_body = client.get("/api/v1/sync/statistics", headers=API_KEY).json()

        assert [entity["entity_type"] for entity in status_body["entities"]] == ["tournaments"]
        assert stats_body["tournaments"]["total"] == 2
        assert stats_body["matches"]["total"] == 0
        assert stats_body["cache_ttl_policy"]["live"] == 30

    def test_history_summarizes_recent_runs(
        self, client: TestClient, upstream: TournamentListStub
    ) -> None:
        client.post("/api/v1/sync/matches", headers=API_KEY)
        client.post("/api/v1/sync/tournaments", headers=API_KEY)
        upstream.status = 503
        client.post("/api/v1/sync/tournaments", headers=API_KEY)

        body = client.get("/api/v1/sync/history", headers=API_KEY).json()
        tournaments_only = client.get(
            "/api/v1/sync/history",
            params={"hours": 1, "entity_type": "tournaments"},
            headers=API_KEY,
        ).json()

        assert body["total_records"] == 3
        assert body["summary"]["by_entity_type"] == {"tournaments": 2, "matches_schedule": 1}
        assert body["summary"]["by_status"] == {"success": 2, "failed": 1}
        assert body["time_range"]["hours"] == 24
        assert body["time_range"]["end"] == "2026-07-15T12:00:00+00:00"
        assert body["executions"][0]["completed_at"] is not None
        assert tournaments_only["total_records"] == 2
        assert {row["entity_type"] for row in tournaments_only["executions"]} == {"tournaments"}

    def test_history_rejects_non_positive_window(self, client: TestClient) -> None:
        response = client.get("/api/v1/sync/history", params={"hours": 0}, headers=API_KEY)

        assert response.status_code == 422

    def test_dead_letters_listed_after_failure(
        self, client: TestClient, upstream: TournamentListStub
    ) -> None:
        upstream.status = 503
        client.post("/api/v1/sync/tournaments", headers=API_KEY)

        body = client.get("/api/v1/dead-letters", headers=API_KEY).json()

        assert len(body["entries"]) == 1
        assert body["statistics"]["dead_letter_queue_size"] == 1

    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["service"] == "vis_sync"
        assert body["dead_letter_queue_size"] == 0
        assert body["active_hours"] is True

    def test_auth_status_hides_secrets(self, client: TestClient) -> None:
        body = client.get("/api/v1/auth/status", headers=API_KEY).json()

        assert body["username"] == "sync-user"
        assert body["has_signing_secret"] is True
        assert "secret" not in body.values()

    def test_metrics_endpoint(self, client: TestClient) -> None:
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "vis_sync" in response.text

    def test_service_errors_render_as_json(self, client: TestClient) -> None:
        def broken_services() -> SyncServices:
            raise ConfigurationError("Database URL is not configured")

        app.dependency_overrides[get_services] = broken_services

        response = client.get("/api/v1/sync/status", headers=API_KEY)

        assert response.status_code == 500
        assert response.json() == {
            "status": "error",
            "message": "Database URL is not configured",
            "error_type": "ConfigurationError",
        }


class TestMaintenanceEndpoints:
    """Alert evaluation, error log, dead-letter replay and auth checks."""

    def test_alert_evaluation_after_failure(
        self, client: TestClient, upstream: TournamentListStub
    ) -> None:
        upstream.status = 503
        client.post("/api/v1/sync/tournaments", headers=API_KEY)

        body = client.post("/api/v1/alerts/evaluate", headers=API_KEY).json()

        assert body["rules_evaluated"] == 6
        assert "Overall Sync Success Rate Drop" in [
            evaluation["rule_name"] for evaluation in body["evaluations"] if evaluation["triggered"]
        ]
        assert body["errors"] == []

    def test_test_channels_reports_dashboard(self, client: TestClient) -> None:
        body = client.post("/api/v1/alerts/test-channels", headers=API_KEY).json()

        assert body["channels"]["dashboard"] is True

    def test_errors_can_be_resolved_once(
        self, client: TestClient, upstream: TournamentListStub
    ) -> None:
        upstream.status = 503
        client.post("/api/v1/sync/tournaments", headers=API_KEY)

        errors = client.get(
            "/api/v1/alerts/errors", params={"unresolved_only": True}, headers=API_KEY
        ).json()["errors"]
        assert errors
        assert errors[0]["entity_type"] == "tournaments"
        error_id = errors[0]["id"]

        resolved = client.post(
            f"/api/v1/alerts/errors/{error_id}/resolve",
            json={"notes": "upstream recovered"},
            headers=API_KEY,
        )
        again = client.post(
            f"/api/v1/alerts/errors/{error_id}/resolve", json={}, headers=API_KEY
        )

        assert resolved.json() == {"id": error_id, "resolved": True}
        assert again.status_code == 404

    def test_dead_letter_replay(
        self, client: TestClient, upstream: TournamentListStub, services: SyncServices
    ) -> None:
        upstream.status = 503
        client.post("/api/v1/sync/tournaments", headers=API_KEY)
        upstream.status = 200

        response = client.post(
            "/api/v1/dead-letters/process", params={"force": True}, headers=API_KEY
        )

        assert response.json() == {"processed": 1, "resolved": 1, "still_failed": 0}
        listed = client.get(
            "/api/v1/dead-letters", params={"status": "RESOLVED"}, headers=API_KEY
        ).json()
        assert len(listed["entries"]) == 1
        assert services.tournament_sync.statistics()["total"] == 2

    def test_auth_check_uses_bearer_first(self, client: TestClient) -> None:
        body = client.post("/api/v1/auth/test", headers=API_KEY).json()

        assert body == {"success": True, "method": "jwt", "error": None}
