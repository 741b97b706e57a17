"""Tests for sync job orchestration and the invocation contract."""

from __future__ import annotations

import asyncio
import re
from datetime import timedelta

import httpx
import pytest

from tests.fixtures.synthetic.vis_fixtures import MATCH_LIST, TOURNAMENT_LIST, match_list
from vis_sync.auth.credentials import Credentials, StaticCredentialProvider
from vis_sync.cache.strategy import CacheStrategy
from vis_sync.exceptions import CredentialError
from vis_sync.jobs.runner import (
    TIMEOUT_MESSAGE,
    SyncServices,
    build_services,
    http_status,
    run_alert_evaluation,
    run_dead_letter_processing,
    run_live_score_sync,
    run_match_sync,
    run_tournament_sync,
)
from vis_sync.performance.governor import TournamentTier
from vis_sync.schemas.records import TournamentRow
from vis_sync.utils.config import GlobalSettings, SyncSettings, get_service_configuration

_TOURNAMENT_NO = re.compile(r'TournamentNo="(\w+)"')


class VisStub:
    """MockTransport handler serving canned VIS payloads.

    ``matches`` maps a tournament number to a payload, an HTTP status, or a
    number of seconds to stall before answering.
    """

    def __init__(self, *, tournaments: str | int = TOURNAMENT_LIST, matches=None) -> None:
        self.tournaments = tournaments
        self.matches = matches or {}
        self.bodies: list[str] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        body = request.content.decode("utf-8")
        self.bodies.append(body)
        if "GetBeachTournamentList" in body:
            answer = self.tournaments
        else:
            match = _TOURNAMENT_NO.search(body)
            answer = self.matches.get(match.group(1) if match else "", 404)
        if isinstance(answer, float):
            await asyncio.sleep(answer)
            return httpx.Response(200, text=match_list())
        if isinstance(answer, int):
            return httpx.Response(answer, text="upstream error")
        return httpx.Response(200, text=answer)


class FailingCredentialProvider:
    def get_credentials(self) -> Credentials:
        raise CredentialError("Unable to retrieve secret 'FIVB_API_CREDENTIALS'")


def make_services(store, clock, sleep, stub, *, provider=None, **sync) -> SyncServices:
    return build_services(
        GlobalSettings(sync=SyncSettings(**sync)),
        service_config=get_service_configuration(),
        store=store,
        credential_provider=provider
        or StaticCredentialProvider(Credentials("sync-user", "secret", "signing-secret")),
        transport=httpx.MockTransport(stub),
        clock=clock,
        sleep=sleep,
    )


def seed_running(services: SyncServices, clock, *numbers: str) -> None:
    today = clock().date()
    services.tournament_sync.process_batch(
        [
            TournamentRow(
                no=no,
                code=f"T{no}",
                name=f"City Open {no}",
                start_date=today - timedelta(days=int(no)),
                end_date=today + timedelta(days=1),
                status="Running",
                location="Somewhere",
                tournament_type=TournamentTier.LOCAL.value,
            )
            for no in numbers
        ]
    )


class TestTournamentSync:
    """Tournament list runs."""

    @pytest.mark.asyncio
    async def test_clean_run(self, store, clock, sleep_recorder) -> None:
        services = make_services(store, clock, sleep_recorder, VisStub())

        result = await run_tournament_sync(services)

        assert http_status(result) == 200
        body = result.to_response()
        assert body["success"] is True
        assert body["tournamentsProcessed"] == 2
        assert body["insertsCount"] == 2
        assert body["updatesCount"] == 0
        assert body["errorsCount"] == 0
        assert body["skippedCount"] == 2
        assert body["errors"] == []
        assert "matchesProcessed" not in body
        assert body["details"][0]["cache"]["live"] == 1

        executions = store.recent_executions("tournaments")
        assert len(executions) == 1
        assert executions[0].success is True
        assert executions[0].records_processed == 2
        assert store.get_sync_status("tournaments")["success_count"] == 1

    @pytest.mark.asyncio
    async def test_second_run_counts_updates(self, store, clock, sleep_recorder) -> None:
        services = make_services(store, clock, sleep_recorder, VisStub())

        await run_tournament_sync(services)
        result = await run_tournament_sync(services)

        assert (result.inserts_count, result.updates_count) == (0, 2)

    @pytest.mark.asyncio
    async def test_upstream_failure_is_critical(self, store, clock, sleep_recorder) -> None:
        services = make_services(store, clock, sleep_recorder, VisStub(tournaments=503))

        result = await run_tournament_sync(services)

        assert http_status(result) == 500
        assert result.success is False
        assert result.errors[0].startswith("Tournament list fetch failed")
        assert sleep_recorder.calls == [2.0, 4.0]
        assert services.executor.statistics()["dead_letter_queue_size"] == 1
        assert store.recent_executions("tournaments")[0].success is False

    @pytest.mark.asyncio
    async def test_unparseable_list_is_critical(self, store, clock, sleep_recorder) -> None:
        services = make_services(store, clock, sleep_recorder, VisStub(tournaments="<<<"))

        result = await run_tournament_sync(services)

        assert http_status(result) == 500
        assert result.errors[0].startswith("Unparseable tournament list")

    @pytest.mark.asyncio
    async def test_truncated_list_is_retried_with_backoff(
        self, store, clock, sleep_recorder
    ) -> None:
        stub = VisStub(tournaments="<Tournaments><Tournament><No>1</No><Code>X</Code></Tournaments>")
        services = make_services(store, clock, sleep_recorder, stub)

        result = await run_tournament_sync(services)

        assert sleep_recorder.calls == [2.0, 4.0]
        assert len(stub.bodies) == 3
        assert result.errors == [
            "Unparseable tournament list: Unbalanced <Tournament> elements: 1 opened, 0 closed"
        ]

    @pytest.mark.asyncio
    async def test_list_recovering_on_retry_is_stored(self, store, clock, sleep_recorder) -> None:
        stub = VisStub(tournaments="<Tournaments><Tournament>")

        async def _heal(seconds: float) -> None:
            await sleep_recorder(seconds)
            stub.tournaments = TOURNAMENT_LIST

        services = make_services(store, clock, _heal, stub)
        result = await run_tournament_sync(services)

        assert http_status(result) == 200
        assert result.processed == 2
        assert sleep_recorder.calls == [2.0]

    @pytest.mark.asyncio
    async def test_unexpected_failure_still_finalizes_the_run(
        self, store, clock, sleep_recorder, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        services = make_services(store, clock, sleep_recorder, VisStub())

        def _explode(self, rows):
            raise RuntimeError("cache statistics exploded")

        monkeypatch.setattr(CacheStrategy, "statistics", _explode)

        with pytest.raises(RuntimeError, match="exploded"):
            await run_tournament_sync(services)

        execution = store.recent_executions("tournaments")[0]
        assert execution.completed_at is not None
        assert execution.success is False
        assert "Unexpected failure: cache statistics exploded" in execution.error_message
        status = store.get_sync_status("tournaments")
        assert status["error_count"] == 1

    @pytest.mark.asyncio
    async def test_credential_failure_aborts(self, store, clock, sleep_recorder) -> None:
        services = make_services(
            store, clock, sleep_recorder, VisStub(), provider=FailingCredentialProvider()
        )

        result = await run_tournament_sync(services)

        assert http_status(result) == 500
        assert result.errors == [
            "Credential retrieval failed: Unable to retrieve secret 'FIVB_API_CREDENTIALS'"
        ]
        assert store.get_sync_status("tournaments")["error_count"] == 1


class TestMatchSync:
    """Per-tournament match runs."""

    @pytest.mark.asyncio
    async def test_running_tournament_is_synced(self, store, clock, sleep_recorder) -> None:
        stub = VisStub(matches={"101": MATCH_LIST})
        services = make_services(store, clock, sleep_recorder, stub)
        await run_tournament_sync(services)

        result = await run_match_sync(services)

        assert http_status(result) == 200
        body = result.to_response()
        assert body["matchesProcessed"] == 2
        assert body["skippedCount"] == 1
        detail = body["details"][0]
        assert detail["tournamentNo"] == "101"
        assert detail["cacheKey"] == "matches:tournament:101"
        assert detail["cacheTtlSeconds"] == 30

    @pytest.mark.asyncio
    async def test_status_change_produces_invalidation(self, store, clock, sleep_recorder) -> None:
        stub = VisStub(matches={"1": match_list(("9001", "Scheduled"))})
        services = make_services(store, clock, sleep_recorder, stub)
        seed_running(services, clock, "1")
        await run_match_sync(services)

        stub.matches["1"] = match_list(("9001", "Live"))
        result = await run_match_sync(services)

        invalidations = result.details[0]["invalidations"]
        assert [(i["key"], i["old_status"], i["new_status"]) for i in invalidations] == [
            ("9001", "Upcoming", "Running")
        ]

    @pytest.mark.asyncio
    async def test_minority_failure_is_partial(self, store, clock, sleep_recorder) -> None:
        stub = VisStub(
            matches={
                "1": match_list(("1001", "Finished")),
                "2": 500,
                "3": match_list(("3001", "Scheduled")),
            }
        )
        services = make_services(store, clock, sleep_recorder, stub)
        seed_running(services, clock, "1", "2", "3")

        result = await run_match_sync(services)

        assert http_status(result) == 207
        assert result.success is True
        assert result.processed == 2
        assert result.errors_count == 1
        assert result.errors[0].startswith("Tournament 2:")

    @pytest.mark.asyncio
    async def test_majority_failure_is_unsuccessful(self, store, clock, sleep_recorder) -> None:
        stub = VisStub(matches={"1": match_list(("1001", "Finished")), "2": 500, "3": 500})
        services = make_services(store, clock, sleep_recorder, stub)
        seed_running(services, clock, "1", "2", "3")

        result = await run_match_sync(services)

        assert http_status(result) == 207
        assert result.to_response()["success"] is False
        assert result.errors_count == 2

    @pytest.mark.asyncio
    async def test_timeout_keeps_completed_work(self, store, clock, sleep_recorder) -> None:
        # Running tournaments are ordered by start date, so "2" goes first.
        stub = VisStub(matches={"2": match_list(("2001", "Live")), "1": 5.0})
        services = make_services(
            store,
            clock,
            sleep_recorder,
            stub,
            concurrency_limit=1,
            max_processing_seconds=0.5,
        )
        seed_running(services, clock, "1", "2")

        result = await run_match_sync(services)

        assert result.timed_out is True
        assert result.processed == 1
        assert TIMEOUT_MESSAGE in result.errors
        assert http_status(result) == 207

    @pytest.mark.asyncio
    async def test_timeout_before_any_work_is_critical(
        self, store, clock, sleep_recorder
    ) -> None:
        stub = VisStub(matches={"1": 5.0})
        services = make_services(
            store, clock, sleep_recorder, stub, max_processing_seconds=0.2
        )
        seed_running(services, clock, "1")

        result = await run_match_sync(services)

        assert result.to_response()["timedOut"] is True
        assert http_status(result) == 500

    @pytest.mark.asyncio
    async def test_unrepresentable_score_keeps_the_tournament(
        self, store, clock, sleep_recorder
    ) -> None:
        attributes = 'TeamAName="A" TeamBName="B" LocalDate="2026-07-15" Status="Live"'
        payload = (
            "<BeachMatches>"
            f'<BeachMatch No="7001" {attributes} PointsTeamASet1="21" />'
            f'<BeachMatch No="7002" {attributes} PointsTeamASet1="Infinity" MatchPointsA="1e999" />'
            "</BeachMatches>"
        )
        services = make_services(store, clock, sleep_recorder, VisStub(matches={"1": payload}))
        seed_running(services, clock, "1")

        result = await run_match_sync(services)

        assert http_status(result) == 200
        assert result.processed == 2
        assert services.executor.statistics()["dead_letter_queue_size"] == 0
        stored = store.snapshot("matches_schedule", ["7001", "7002"])
        assert stored["7001"]["points_team_a_set1"] == 21
        assert stored["7002"]["points_team_a_set1"] is None
        assert stored["7002"]["match_points_a"] is None

    @pytest.mark.asyncio
    async def test_nothing_due(self, store, clock, sleep_recorder) -> None:
        stub = VisStub()
        services = make_services(store, clock, sleep_recorder, stub)

        result = await run_match_sync(services)

        assert http_status(result) == 200
        assert result.processed == 0
        assert stub.bodies == []


def scored_list(*matches: tuple[str, str, int, int]) -> str:
    elements = "".join(
        f'<BeachMatch No="{no}" TeamAName="Team A" TeamBName="Team B" '
        f'LocalDate="2026-07-15" LocalTime="10:00" Status="{status}" '
        f'PointsTeamASet1="{points_a}" PointsTeamBSet1="{points_b}" />'
        for no, status, points_a, points_b in matches
    )
    return f"<BeachMatches>{elements}</BeachMatches>"


class TestLiveScoreSync:
    """Score refreshes for matches stored as running."""

    @pytest.mark.asyncio
    async def test_only_moved_scores_are_written(self, store, clock, sleep_recorder) -> None:
        stub = VisStub(
            matches={
                "1": scored_list(
                    ("1001", "Live", 10, 8), ("1002", "Live", 5, 5), ("1003", "Scheduled", 0, 0)
                )
            }
        )
        services = make_services(store, clock, sleep_recorder, stub)
        seed_running(services, clock, "1")
        await run_match_sync(services)

        stub.matches["1"] = scored_list(
            ("1001", "Live", 12, 8), ("1002", "Live", 5, 5), ("1003", "Live", 1, 0)
        )
        result = await run_live_score_sync(services)

        assert http_status(result) == 200
        assert result.processed == 1
        assert result.updates_count == 1
        assert result.details == [
            {
                "tournamentNo": "1",
                "liveMatches": 2,
                "updated": 1,
                "unchanged": 1,
                "missing": [],
            }
        ]
        stored = store.snapshot("matches_schedule", ["1001", "1003"])
        assert stored["1001"]["points_team_a_set1"] == 12
        assert stored["1003"]["status"] == "Upcoming"

    @pytest.mark.asyncio
    async def test_finished_match_is_rewritten_and_vanished_match_reported(
        self, store, clock, sleep_recorder
    ) -> None:
        stub = VisStub(matches={"1": scored_list(("1001", "Live", 20, 18), ("1002", "Live", 3, 4))})
        services = make_services(store, clock, sleep_recorder, stub)
        seed_running(services, clock, "1")
        await run_match_sync(services)

        stub.matches["1"] = scored_list(("1001", "Finished", 21, 18))
        result = await run_live_score_sync(services)

        assert result.processed == 1
        assert result.details[0]["missing"] == ["1002"]
        assert store.live_match_snapshot("1").keys() == {"1002"}

    @pytest.mark.asyncio
    async def test_nothing_running(self, store, clock, sleep_recorder) -> None:
        stub = VisStub()
        services = make_services(store, clock, sleep_recorder, stub, live_interval_seconds=30)

        result = await run_live_score_sync(services)

        assert http_status(result) == 200
        assert result.processed == 0
        assert stub.bodies == []
        assert store.recent_executions("matches_live")[0].success is True
        assert store.get_sync_status("matches_live")["sync_frequency_minutes"] == 1

    @pytest.mark.asyncio
    async def test_upstream_failure_is_dead_lettered(self, store, clock, sleep_recorder) -> None:
        stub = VisStub(matches={"1": scored_list(("1001", "Live", 1, 0))})
        services = make_services(store, clock, sleep_recorder, stub)
        seed_running(services, clock, "1")
        await run_match_sync(services)

        stub.matches["1"] = 500
        result = await run_live_score_sync(services)

        assert http_status(result) == 207
        assert result.success is False
        assert result.errors[0].startswith("Tournament 1:")
        assert services.executor.statistics()["dead_letter_queue_size"] == 1


class TestMaintenanceJobs:
    """Alert evaluation and dead-letter replay."""

    @pytest.mark.asyncio
    async def test_failed_run_triggers_success_rate_alert(
        self, store, clock, sleep_recorder
    ) -> None:
        services = make_services(store, clock, sleep_recorder, VisStub(tournaments=503))
        await run_tournament_sync(services)

        summary = await run_alert_evaluation(services)

        triggered = [e.rule_name for e in summary.evaluations if e.triggered]
        assert "Overall Sync Success Rate Drop" in triggered
        assert summary.notifications_sent >= 1
        assert summary.errors == []

    @pytest.mark.asyncio
    async def test_dead_letters_are_replayed_when_forced(
        self, store, clock, sleep_recorder
    ) -> None:
        stub = VisStub(tournaments=503)
        services = make_services(store, clock, sleep_recorder, stub)
        await run_tournament_sync(services)
        assert services.tournament_sync.statistics()["total"] == 0

        stub.tournaments = TOURNAMENT_LIST
        report = await run_dead_letter_processing(services, force=True)

        assert report == {"processed": 1, "resolved": 1, "still_failed": 0}
        assert services.tournament_sync.statistics()["total"] == 2
        assert set(store.snapshot("tournaments", ["101", "102"])) == {"101", "102"}

    @pytest.mark.asyncio
    async def test_replayed_tournament_unit_stores_its_matches(
        self, store, clock, sleep_recorder
    ) -> None:
        stub = VisStub(matches={"1": 500})
        services = make_services(store, clock, sleep_recorder, stub)
        seed_running(services, clock, "1")
        first = await run_match_sync(services)
        assert first.processed == 0

        stub.matches["1"] = match_list(("1001", "Live"))
        report = await run_dead_letter_processing(services, force=True)

        assert report == {"processed": 1, "resolved": 1, "still_failed": 0}
        assert store.snapshot("matches_schedule", ["1001"])["1001"]["status"] == "Running"
