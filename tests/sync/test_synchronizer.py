"""Tests for the generic entity synchronizer."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, time, timedelta

import pytest

from tests.fixtures.synthetic.vis_fixtures import MATCH_LIST, TOURNAMENT_LIST
from vis_sync.exceptions import PayloadParseError, StorageError
from vis_sync.performance.governor import TournamentTier
from vis_sync.schemas.records import MatchRow, TournamentRow
from vis_sync.sync.entities import MATCH_SPEC, TOURNAMENT_SPEC, normalize_match
from vis_sync.sync.normalize import SyncStatus
from vis_sync.sync.synchronizer import BatchResult, EntitySynchronizer


def tournament_row(
    no: str, *, status: str, start: date, end: date, name: str = "Open"
) -> TournamentRow:
    return TournamentRow(
        no=no,
        code=f"T{no}",
        name=name,
        start_date=start,
        end_date=end,
        status=status,
        location="Somewhere",
        tournament_type=TournamentTier.LOCAL.value,
    )


class FailingStore:
    """Store double whose upsert fails for chunks containing a given key."""

    def __init__(self, poisoned: str) -> None:
        self.poisoned = poisoned
        self.upserted: list[str] = []

    def existing_keys(self, entity_type, keys):
        return set()

    def upsert(self, entity_type, rows, synced_at):
        keys = [row.no for row in rows]
        if self.poisoned in keys:
            raise StorageError("Database upsert on tournaments failed: locked", transient=True)
        self.upserted.extend(keys)


class TestParsing:
    """Payload to typed records."""

    def test_tournament_records_skip_invalid_elements(self, store, clock) -> None:
        synchronizer = EntitySynchronizer(TOURNAMENT_SPEC, store, clock=clock)

        records = synchronizer.parse_external_payload(TOURNAMENT_LIST)

        assert [record.no for record in records] == ["101", "102"]
        report = synchronizer.last_parse_report
        assert report.total == 4
        assert report.parsed == 2
        assert report.skipped == 2
        assert report.reasons == {
            "non-numeric tournament No": 1,
            "missing required No or Code": 1,
        }

    def test_match_records_take_tournament_number(self, store, clock) -> None:
        synchronizer = EntitySynchronizer(MATCH_SPEC, store, clock=clock)

        records = synchronizer.parse_external_payload(MATCH_LIST, tournament_no="101")

        assert [record.no for record in records] == ["5001", "5002"]
        assert all(record.tournament_no == "101" for record in records)
        assert synchronizer.last_parse_report.reasons == {"missing both team names": 1}

    def test_unparseable_payload_raises(self, store, clock) -> None:
        synchronizer = EntitySynchronizer(MATCH_SPEC, store, clock=clock)

        with pytest.raises(PayloadParseError):
            synchronizer.parse_external_payload("<<<")


class TestNormalization:
    """Records to storage rows."""

    def test_tournament_rows(self, store, clock) -> None:
        synchronizer = EntitySynchronizer(TOURNAMENT_SPEC, store, clock=clock)
        first, second = [
            synchronizer.normalize(record)
            for record in synchronizer.parse_external_payload(TOURNAMENT_LIST)
        ]

        assert first.tournament_type == TournamentTier.FIVB.value
        assert first.status == SyncStatus.RUNNING.value
        assert second.start_date == date(2026, 8, 1)
        assert second.status == SyncStatus.UPCOMING.value
        assert second.tournament_type == TournamentTier.CEV.value
        assert second.location == "Unknown Location"

    def test_match_rows(self, store, clock) -> None:
        synchronizer = EntitySynchronizer(MATCH_SPEC, store, clock=clock)
        live, scheduled = [
            synchronizer.normalize(record)
            for record in synchronizer.parse_external_payload(MATCH_LIST, tournament_no="101")
        ]

        assert isinstance(live, MatchRow)
        assert live.status == SyncStatus.RUNNING.value
        assert live.local_time == time(10, 0)
        assert live.points_team_a_set1 == 21
        assert scheduled.local_date == date(2026, 7, 15)
        assert scheduled.local_time == time(14, 30)
        assert scheduled.team_b_name == "C <D>"


class TestProcessBatch:
    """Chunked upserts."""

    def test_insert_then_update_counts(self, store, clock) -> None:
        synchronizer = EntitySynchronizer(TOURNAMENT_SPEC, store, clock=clock)
        records = synchronizer.parse_external_payload(TOURNAMENT_LIST)

        first = synchronizer.process_batch(records)
        second = synchronizer.process_batch(records)

        assert (first.inserts, first.updates, first.errors) == (2, 0, 0)
        assert (second.inserts, second.updates, second.errors) == (0, 2, 0)
        assert synchronizer.statistics()["total"] == 2

    def test_duplicate_keys_in_a_chunk_keep_the_last(self, store, clock) -> None:
        synchronizer = EntitySynchronizer(TOURNAMENT_SPEC, store, clock=clock)
        today = clock().date()
        rows = [
            tournament_row("7", status="Upcoming", start=today, end=today),
            tournament_row("7", status="Running", start=today, end=today),
        ]

        result = synchronizer.process_batch(rows)

        assert result.processed == 1
        assert store.snapshot("tournaments", ["7"])["7"]["status"] == "Running"

    def test_failing_chunk_does_not_stop_later_chunks(self, clock) -> None:
        store = FailingStore(poisoned="2")
        synchronizer = EntitySynchronizer(TOURNAMENT_SPEC, store, clock=clock)
        today = clock().date()
        rows = [
            tournament_row(str(no), status="Upcoming", start=today, end=today)
            for no in range(1, 5)
        ]

        result = synchronizer.process_batch(rows, batch_size=2)

        assert result.processed == 2
        assert result.errors == 2
        assert result.failed_keys == ["1", "2"]
        assert store.upserted == ["3", "4"]
        assert isinstance(result.last_error, StorageError)

    def test_record_failing_normalization_is_dropped(self, store, clock) -> None:
        def picky_normalize(record, clock):
            if record.no == "5002":
                raise OverflowError("cannot convert float infinity to integer")
            return normalize_match(record, clock)

        synchronizer = EntitySynchronizer(
            replace(MATCH_SPEC, normalize=picky_normalize), store, clock=clock
        )
        records = synchronizer.parse_external_payload(MATCH_LIST, tournament_no="101")

        result = synchronizer.process_batch(records)

        assert result.processed == 1
        assert result.keys == ["5001"]
        assert result.errors == 1
        assert result.failed_keys == ["5002"]
        assert result.error_messages == ["Record 5002: cannot convert float infinity to integer"]

    def test_merge_accumulates(self) -> None:
        total = BatchResult(processed=1, inserts=1, keys=["1"])
        total.merge(
            BatchResult(processed=2, updates=2, errors=1, keys=["2", "3"], failed_keys=["4"])
        )

        assert (total.processed, total.inserts, total.updates, total.errors) == (3, 1, 2, 1)
        assert total.keys == ["1", "2", "3"]
        assert total.failed_keys == ["4"]


class TestDiscovery:
    """Selecting tournaments whose matches are due."""

    def test_candidates_are_ranked_and_throttled(self, store, clock) -> None:
        synchronizer = EntitySynchronizer(TOURNAMENT_SPEC, store, clock=clock)
        today = clock().date()
        day = timedelta(days=1)
        synchronizer.process_batch(
            [
                tournament_row("1", status="Upcoming", start=today + day, end=today + 3 * day),
                tournament_row("2", status="Upcoming", start=today, end=today + 2 * day),
                tournament_row("3", status="Running", start=today - day, end=today),
                tournament_row("4", status="Finished", start=today - 2 * day, end=today),
                tournament_row("5", status="Upcoming", start=today + 9 * day, end=today + 9 * day),
                tournament_row("6", status="Upcoming", start=today, end=today),
            ]
        )
        store.mark_matches_synced("6", clock() - timedelta(minutes=5))

        candidates = synchronizer.discover_candidates(frequency=timedelta(minutes=15))

        assert [candidate.no for candidate in candidates] == ["3", "2", "1"]

    def test_running_tournament_is_always_due(self, store, clock) -> None:
        synchronizer = EntitySynchronizer(TOURNAMENT_SPEC, store, clock=clock)
        today = clock().date()
        synchronizer.process_batch(
            [tournament_row("3", status="Running", start=today, end=today)]
        )
        store.mark_matches_synced("3", clock())

        assert [c.no for c in synchronizer.discover_candidates()] == ["3"]

    def test_cleanup_stale_removes_old_rows(self, store, clock) -> None:
        synchronizer = EntitySynchronizer(TOURNAMENT_SPEC, store, clock=clock)
        today = clock().date()
        synchronizer.process_batch([tournament_row("1", status="Finished", start=today, end=today)])

        clock.advance(days=91)

        assert synchronizer.cleanup_stale() == 1
        assert synchronizer.statistics()["total"] == 0
