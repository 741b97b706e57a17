"""Tests for the adaptive cache strategy."""

from __future__ import annotations

from datetime import date, timedelta

import pytest
from pydantic import ValidationError

from vis_sync.cache.strategy import CacheStrategy, CacheTTLPolicy, InvalidationTrigger, TTLClass


@pytest.fixture
def strategy(clock) -> CacheStrategy:
    return CacheStrategy(clock=clock)


class TestPolicy:
    """TTL table parsing."""

    def test_text_durations(self) -> None:
        policy = CacheTTLPolicy(live="45 seconds", finished="2 days", scheduled=600)

        assert policy.live == timedelta(seconds=45)
        assert policy.finished == timedelta(days=2)
        assert policy.scheduled == timedelta(minutes=10)

    @pytest.mark.parametrize("value", ["-5 minutes", "soon", 0])
    def test_non_positive_or_invalid_durations_are_rejected(self, value) -> None:
        with pytest.raises(ValidationError):
            CacheTTLPolicy(live=value)

    def test_update_merges_overrides(self, strategy: CacheStrategy) -> None:
        policy = strategy.update_ttl_policy(live="10 seconds")

        assert policy.live == timedelta(seconds=10)
        assert policy.finished == timedelta(hours=24)


class TestClassification:
    """Per-record TTL classes."""

    def test_running_is_live(self, strategy: CacheStrategy) -> None:
        assert strategy.classify({"status": "Live"}) is TTLClass.LIVE
        assert strategy.record_ttl({"status": "Running"}) == timedelta(seconds=30)

    def test_upcoming_today_versus_later(self, strategy: CacheStrategy, clock) -> None:
        today = clock().date()

        assert strategy.classify({"status": "Upcoming", "local_date": today}) is TTLClass.TODAY
        assert (
            strategy.classify({"status": "Scheduled", "start_date": "2026-07-20"})
            is TTLClass.SCHEDULED
        )
        assert strategy.classify({"status": "Postponed", "start_date": today}) is TTLClass.SCHEDULED

    def test_finished_recency(self, strategy: CacheStrategy) -> None:
        recent = {"status": "Finished", "local_date": "2026-07-15", "local_time": "11:30"}
        older = {"status": "Finished", "local_date": "2026-07-15", "local_time": "09:00"}

        assert strategy.classify(recent) is TTLClass.RECENT_FINISHED
        assert strategy.classify(older) is TTLClass.FINISHED

    def test_cancelled_is_treated_as_finished(self, strategy: CacheStrategy) -> None:
        assert strategy.classify({"status": "Cancelled"}) is TTLClass.FINISHED


class TestBatchTTL:
    """Most conservative TTL wins."""

    def test_empty_batch_uses_default(self, strategy: CacheStrategy) -> None:
        assert strategy.batch_ttl([]) == timedelta(minutes=15)

    def test_live_record_dominates(self, strategy: CacheStrategy) -> None:
        records = [
            {"status": "Finished", "end_date": date(2026, 6, 1)},
            {"status": "Upcoming", "start_date": date(2026, 8, 1)},
            {"status": "Running"},
        ]

        assert strategy.batch_ttl(records) == timedelta(seconds=30)

    def test_only_old_finished_records(self, strategy: CacheStrategy) -> None:
        records = [{"status": "Finished", "end_date": date(2026, 6, 1)}]

        assert strategy.batch_ttl(records) == timedelta(hours=24)


class TestInvalidation:
    """Status-change triggers."""

    def test_triggers_only_for_changed_shared_keys(self, strategy: CacheStrategy) -> None:
        old = {"1": {"status": "Upcoming"}, "2": {"status": "Running"}, "3": {"status": "Finished"}}
        new = [
            {"no": "1", "status": "Running"},
            {"no": "2", "status": "Running"},
            {"no": "4", "status": "Upcoming"},
        ]

        triggers = strategy.invalidation_triggers(old, new)

        assert [(t.key, t.old_status, t.new_status) for t in triggers] == [
            ("1", "Upcoming", "Running")
        ]

    @pytest.mark.parametrize(
        ("old", "new", "expected"),
        [
            ("Upcoming", "Running", True),
            ("Running", "Finished", True),
            ("Upcoming", "Finished", True),
            ("Upcoming", "Cancelled", True),
            ("Postponed", "Upcoming", True),
            ("Upcoming", "Postponed", False),
            ("Finished", "Cancelled", False),
        ],
    )
    def test_significant_transitions(
        self, strategy: CacheStrategy, clock, old: str, new: str, expected: bool
    ) -> None:
        trigger = InvalidationTrigger(key="1", old_status=old, new_status=new, timestamp=clock())

        assert strategy.should_invalidate(trigger) is expected


class TestStatistics:
    """Cache efficiency reporting."""

    def test_live_records_make_efficiency_low(self, strategy: CacheStrategy, clock) -> None:
        stats = strategy.statistics([{"status": "Running"}, {"status": "Finished"}])

        assert stats["total"] == 2
        assert stats["live"] == 1
        assert stats["cache_efficiency"] == "Low"
        assert stats["recommended_ttl_seconds"] == 30
        assert stats["next_recommended_sync"] == (clock() + timedelta(seconds=30)).isoformat()

    def test_mostly_scheduled_is_medium(self, strategy: CacheStrategy) -> None:
        upcoming = {"status": "Upcoming", "start_date": "2026-09-01"}
        records = [upcoming] * 3 + [{"status": "Finished"}]

        assert strategy.statistics(records)["cache_efficiency"] == "Medium"

    def test_mostly_finished_is_high(self, strategy: CacheStrategy) -> None:
        records = [{"status": "Finished"}] * 3

        stats = strategy.statistics(records)

        assert stats["cache_efficiency"] == "High"
        assert stats["by_status"] == {"Finished": 3}

    def test_cache_key(self) -> None:
        assert CacheStrategy.cache_key("matches", "101") == "matches:tournament:101"
