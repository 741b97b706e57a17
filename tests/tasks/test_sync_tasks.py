"""Tests for the Celery task wrappers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from tests.conftest import ManualClock
from tests.fixtures.synthetic.vis_fixtures import TOURNAMENT_LIST
from vis_sync.auth.credentials import Credentials, StaticCredentialProvider
from vis_sync.jobs.runner import SyncServices, build_services
from vis_sync.tasks import celery_app as celery_module
from vis_sync.tasks import sync as sync_tasks
from vis_sync.utils.config import get_settings


def make_services(store, clock, sleep_recorder) -> SyncServices:
    return build_services(
        get_settings(),
        store=store,
        credential_provider=StaticCredentialProvider(Credentials("u", "p", "s")),
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text=TOURNAMENT_LIST)),
        clock=clock,
        sleep=sleep_recorder,
    )


class TestBeatSchedule:
    """Periodic task registration."""

    def test_schedule_names_registered_tasks(self) -> None:
        schedule = celery_module.celery_app.conf.beat_schedule

        assert {entry["task"] for entry in schedule.values()} == {
            "vis_sync.sync_tournaments",
            "vis_sync.sync_matches",
            "vis_sync.sync_live_scores",
            "vis_sync.evaluate_alerts",
            "vis_sync.process_dead_letters",
        }
        assert sync_tasks.sync_matches.name == "vis_sync.sync_matches"
        assert schedule["sync-live-scores"]["schedule"] == timedelta(seconds=30)


class TestTasks:
    """Tasks delegate to the runner and render the invocation contract."""

    def test_sync_tournaments(
        self, monkeypatch: pytest.MonkeyPatch, store, clock, sleep_recorder
    ) -> None:
        services = make_services(store, clock, sleep_recorder)
        monkeypatch.setattr(sync_tasks, "_services", lambda: services)

        body = sync_tasks.sync_tournaments.run()

        assert body["httpStatus"] == 200
        assert body["tournamentsProcessed"] == 2

    def test_sync_matches_skipped_at_night(
        self, monkeypatch: pytest.MonkeyPatch, store, sleep_recorder
    ) -> None:
        night = ManualClock(datetime(2026, 7, 15, 3, 0, tzinfo=timezone.utc))
        services = make_services(store, night, sleep_recorder)
        monkeypatch.setattr(sync_tasks, "_services", lambda: services)

        assert sync_tasks.sync_matches.run() == {
            "status": "skipped",
            "reason": "outside active hours",
        }
        assert sync_tasks.sync_matches.run(force=True)["httpStatus"] == 200

    def test_maintenance_tasks(
        self, monkeypatch: pytest.MonkeyPatch, store, clock, sleep_recorder
    ) -> None:
        services = make_services(store, clock, sleep_recorder)
        monkeypatch.setattr(sync_tasks, "_services", lambda: services)

        assert sync_tasks.process_dead_letters.run() == {
            "processed": 0,
            "resolved": 0,
            "still_failed": 0,
        }
        assert sync_tasks.evaluate_alerts.run()["errors"] == []

    def test_sync_live_scores_follows_active_hours(
        self, monkeypatch: pytest.MonkeyPatch, store, sleep_recorder
    ) -> None:
        night = ManualClock(datetime(2026, 7, 15, 4, 30, tzinfo=timezone.utc))
        services = make_services(store, night, sleep_recorder)
        monkeypatch.setattr(sync_tasks, "_services", lambda: services)

        assert sync_tasks.sync_live_scores.run()["status"] == "skipped"

        body = sync_tasks.sync_live_scores.run(force=True)

        assert body["httpStatus"] == 200
        assert body["matchesProcessed"] == 0
