"""Tests for the performance governor."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from vis_sync.performance.governor import (
    PerformanceGovernor,
    TournamentTier,
    classify_tournament_tier,
    is_active_hours,
)


@pytest.fixture
def governor(clock) -> PerformanceGovernor:
    return PerformanceGovernor(max_calls=3, window=timedelta(seconds=60), clock=clock)


class TestPrioritization:
    """Tier scoring and ordering."""

    @pytest.mark.parametrize(
        ("name", "code", "tier"),
        [
            ("FIVB World Championship", None, TournamentTier.FIVB),
            ("Rome Open", "FIVB-ROM", TournamentTier.FIVB),
            ("European Championship", None, TournamentTier.CEV),
            ("Beach Pro Tour Elite16", None, TournamentTier.BPT),
            ("City Cup", "LOC1", TournamentTier.LOCAL),
            (None, None, TournamentTier.LOCAL),
        ],
    )
    def test_tier_classification(self, name, code, tier: TournamentTier) -> None:
        assert classify_tournament_tier(name, code) is tier

    def test_highest_score_first_and_ties_stable(self, governor: PerformanceGovernor) -> None:
        items = [
            {"no": "1", "name": "City Cup"},
            {"no": "2", "name": "CEV Masters"},
            {"no": "3", "name": "Town Open"},
            {"no": "4", "name": "FIVB Finals"},
        ]

        ranked = governor.prioritize_tournaments(items)

        assert [entry.item["no"] for entry in ranked] == ["4", "2", "1", "3"]
        assert [entry.score for entry in ranked] == [100, 85, 65, 65]


class TestRateLimiting:
    """Sliding-window call accounting."""

    def test_try_acquire_respects_window(self, governor: PerformanceGovernor, clock) -> None:
        assert all(governor.try_acquire("GetBeachMatchList") for _ in range(3))
        assert governor.try_acquire("GetBeachMatchList") is False
        assert governor.remaining_calls("GetBeachMatchList") == 0
        assert governor.try_acquire("GetBeachTournamentList") is True

        clock.advance(seconds=60)

        assert governor.can_process("GetBeachMatchList") is True
        assert governor.remaining_calls("GetBeachMatchList") == 3

    def test_seconds_until_available(self, governor: PerformanceGovernor, clock) -> None:
        assert governor.seconds_until_available("k") == 0.0

        governor.record_call("k")
        clock.advance(seconds=10)
        governor.record_call("k")
        governor.record_call("k")

        assert governor.seconds_until_available("k") == pytest.approx(50.0)
        assert governor.can_process("k") is False

    def test_max_calls_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            PerformanceGovernor(max_calls=0)


class TestMetrics:
    """Operation timing, bottlenecks and batch sizing."""

    def test_start_and_end_operation(self, governor: PerformanceGovernor, clock) -> None:
        token = governor.start_operation("tournament:fetch")
        clock.advance(seconds=2)
        governor.end_operation(token, success=False)

        metrics = governor.get_metrics()

        assert metrics.total_operations == 1
        assert metrics.average_operation_time == pytest.approx(2000.0)
        assert metrics.success_rate == 0.0

    def test_empty_metrics(self, governor: PerformanceGovernor) -> None:
        assert governor.get_metrics().to_dict() == {
            "total_operations": 0,
            "average_operation_time": 0.0,
            "success_rate": 1.0,
            "average_api_response_time": 0.0,
        }

    def test_bottlenecks(self, governor: PerformanceGovernor) -> None:
        governor.record_response_time(6000)
        governor.record_operation("match:sync", 45000, success=False)
        for _ in range(3):
            governor.record_call("GetBeachMatchList")

        report = governor.detect_bottlenecks()

        assert report.has_bottlenecks is True
        assert report.issues == [
            "High API response times detected",
            "Low success rate detected",
            "Slow operation performance detected",
            "Approaching API rate limits",
        ]
        assert len(report.recommendations) == 4

    def test_no_bottlenecks_when_idle(self, governor: PerformanceGovernor) -> None:
        assert governor.detect_bottlenecks().has_bottlenecks is False

    def test_batch_size_grows_when_fast(self, governor: PerformanceGovernor) -> None:
        governor.record_response_time(200)
        governor.record_operation("match:sync", 100, success=True)

        assert governor.optimal_batch_size(baseline=5, max_size=6) == 6

    def test_batch_size_shrinks_when_slow_and_failing(self, governor: PerformanceGovernor) -> None:
        governor.record_response_time(4000)
        governor.record_operation("match:sync", 100, success=False)

        assert governor.optimal_batch_size(baseline=5) == 2

    def test_cleanup_drops_expired_metrics(self, governor: PerformanceGovernor, clock) -> None:
        governor.record_operation("match:sync", 100, success=True)
        governor.record_call("k")
        clock.advance(minutes=10)

        governor.cleanup()

        assert governor.get_metrics().total_operations == 0
        assert governor.performance_report()["api_calls_per_minute"] == 0


class TestActiveHours:
    """Scheduling window checks."""

    def test_playing_hours_without_tournaments(self) -> None:
        assert is_active_hours(datetime(2026, 7, 15, 12, tzinfo=timezone.utc)) is True
        assert is_active_hours(datetime(2026, 7, 15, 3, tzinfo=timezone.utc)) is False

    def test_tournament_buffer(self) -> None:
        tournaments = [{"start_date": date(2026, 7, 16), "end_date": date(2026, 7, 18)}]

        assert is_active_hours(datetime(2026, 7, 15, 23, tzinfo=timezone.utc), tournaments)
        assert not is_active_hours(datetime(2026, 7, 15, 12, tzinfo=timezone.utc), tournaments)
        assert not is_active_hours(datetime(2026, 7, 20, 12, tzinfo=timezone.utc), tournaments)
