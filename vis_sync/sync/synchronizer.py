"""Generic discover / parse / normalize / upsert engine shared by all entities."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Protocol

from pydantic import BaseModel, ValidationError

from ..exceptions import StorageError
from ..monitoring.metrics import record_sync_records
from ..schemas.records import SyncCandidate
from ..utils.logging import setup_logger
from ..utils.timeutils import Clock, utc_now
from .entities import EntitySpec
from .normalize import SyncStatus
from .parser import PayloadParser, RegexElementParser

logger = setup_logger(__name__, context={"component": "EntitySynchronizer"})

DEFAULT_STALE_AGE = timedelta(days=90)


class EntityStore(Protocol):
    """Storage port used by :class:`EntitySynchronizer`."""

    def find_sync_candidates(self, today: date, horizon: date) -> list[SyncCandidate]:
        ...

    def existing_keys(self, entity_type: str, keys: Sequence[str]) -> set[str]:
        ...

    def upsert(self, entity_type: str, rows: Sequence[BaseModel], synced_at: datetime) -> None:
        ...

    def snapshot(self, entity_type: str, keys: Sequence[str]) -> dict[str, dict[str, Any]]:
        ...

    def cleanup_stale(self, entity_type: str, cutoff: datetime) -> int:
        ...

    def statistics(self, entity_type: str) -> dict[str, Any]:
        ...


@dataclass(slots=True)
class ParseReport:
    total: int = 0
    parsed: int = 0
    skipped: int = 0
    reasons: dict[str, int] = field(default_factory=dict)

    def skip(self, reason: str) -> None:
        self.skipped += 1
        self.reasons[reason] = self.reasons.get(reason, 0) + 1


@dataclass(slots=True)
class BatchResult:
    processed: int = 0
    inserts: int = 0
    updates: int = 0
    errors: int = 0
    keys: list[str] = field(default_factory=list)
    failed_keys: list[str] = field(default_factory=list)
    error_messages: list[str] = field(default_factory=list)
    last_error: StorageError | None = field(default=None, repr=False)

    def merge(self, other: BatchResult) -> None:
        self.processed += other.processed
        self.inserts += other.inserts
        self.updates += other.updates
        self.errors += other.errors
        self.keys.extend(other.keys)
        self.failed_keys.extend(other.failed_keys)
        self.error_messages.extend(other.error_messages)
        if other.last_error is not None:
            self.last_error = other.last_error


def _candidate_rank(candidate: SyncCandidate, today: date) -> tuple[int, date]:
    start = candidate.start_date or today
    if candidate.status == SyncStatus.RUNNING.value:
        return 0, start
    end = candidate.end_date or start
    if start <= today <= end:
        return 1, start
    return 2, start


class EntitySynchronizer:
    """Runs one entity type through parsing, normalization and batched upsert.

    Args:
        spec: Entity descriptor (tournament or match).
        store: Storage port.
        parser: Element extractor; the regex parser unless overridden.
        clock: Time source for sync stamps and date fallbacks.
    """

    def __init__(
        self,
        spec: EntitySpec,
        store: EntityStore,
        *,
        parser: PayloadParser | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.spec = spec
        self._store = store
        self._parser = parser or RegexElementParser()
        self._clock = clock
        self.last_parse_report = ParseReport()

    @property
    def entity_type(self) -> str:
        return self.spec.entity_type

    def discover_candidates(
        self,
        now: datetime | None = None,
        *,
        frequency: timedelta = timedelta(minutes=15),
        lookahead_days: int = 1,
    ) -> list[SyncCandidate]:
        """Return tournaments whose matches are due, live first, then today, then upcoming."""

        now = now or self._clock()
        today = now.date()
        horizon = today + timedelta(days=lookahead_days)
        candidates = self._store.find_sync_candidates(today, horizon)

        due: list[SyncCandidate] = []
        for candidate in candidates:
            live = candidate.status == SyncStatus.RUNNING.value
            last_synced = candidate.last_synced
            if live or last_synced is None or now - last_synced >= frequency:
                due.append(candidate)

        due.sort(key=lambda candidate: _candidate_rank(candidate, today))
        logger.info(
            "Discovered %d sync candidates (%d stored in range)",
            len(due),
            len(candidates),
            extra={"entity_type": self.entity_type},
        )
        return due

    def parse_external_payload(self, raw: str | bytes, **extra: Any) -> list[BaseModel]:
        """Extract typed records, skipping elements that fail validation.

        Raises:
            PayloadParseError: When the payload is structurally unparseable.
        """

        payload = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        elements = self._parser.extract_elements(payload, self.spec.element_tag, self.spec.fields)

        report = ParseReport(total=len(elements))
        records: list[BaseModel] = []
        for index, values in enumerate(elements):
            reason = self.spec.validate(values)
            if reason is not None:
                self._log_skip(index, values, reason)
                report.skip(reason)
                continue
            try:
                records.append(self.spec.record_model.model_validate({**values, **extra}))
            except ValidationError as exc:
                reason = f"invalid record: {exc.error_count()} field errors"
                self._log_skip(index, values, reason)
                report.skip(reason)

        report.parsed = len(records)
        self.last_parse_report = report
        return records

    def _log_skip(self, index: int, values: Mapping[str, str | None], reason: str) -> None:
        logger.warning(
            "Skipping %s element %d (No=%r): %s",
            self.spec.element_tag,
            index,
            values.get("No"),
            reason,
            extra={"entity_type": self.entity_type, "status": "skipped"},
        )

    def normalize(self, record: BaseModel) -> BaseModel:
        return self.spec.normalize(record, self._clock)

    def normalize_records(
        self,
        records: Iterable[BaseModel],
        into: BatchResult | None = None,
    ) -> list[BaseModel]:
        """Return storage rows, dropping records whose normalization raises.

        Dropped records are counted as errors on ``into`` when given.
        """

        rows: list[BaseModel] = []
        for record in records:
            if isinstance(record, self.spec.row_model):
                rows.append(record)
                continue
            try:
                rows.append(self.normalize(record))
            except (ValueError, TypeError, OverflowError) as exc:
                key = str(getattr(record, "no", "?"))
                logger.warning(
                    "Dropping %s record %s: normalization failed: %s",
                    self.entity_type,
                    key,
                    exc,
                    extra={"entity_type": self.entity_type, "status": "skipped"},
                )
                if into is not None:
                    into.errors += 1
                    into.failed_keys.append(key)
                    into.error_messages.append(f"Record {key}: {exc}")
        return rows

    def process_batch(
        self,
        records: Sequence[BaseModel],
        batch_size: int | None = None,
    ) -> BatchResult:
        """Upsert records in chunks, counting inserts versus updates.

        A failing chunk marks all of its records as errors and the remaining
        chunks still run.
        """

        size = max(batch_size or self.spec.batch_size, 1)
        result = BatchResult()
        rows = self.normalize_records(records, result)

        for start in range(0, len(rows), size):
            # Last occurrence wins when a chunk repeats a key.
            chunk = rows[start : start + size]
            chunk_by_key = {str(row.no): row for row in chunk}  # type: ignore[attr-defined]
            keys = list(chunk_by_key)
            try:
                existing = self._store.existing_keys(self.entity_type, keys)
                self._store.upsert(self.entity_type, list(chunk_by_key.values()), self._clock())
            except StorageError as exc:
                result.errors += len(keys)
                result.failed_keys.extend(keys)
                result.error_messages.append(str(exc))
                result.last_error = exc
                logger.error(
                    "Chunk of %d %s records failed: %s",
                    len(keys),
                    self.entity_type,
                    exc,
                    extra={"entity_type": self.entity_type, "status": "error"},
                )
                continue

            inserts = sum(1 for key in keys if key not in existing)
            result.inserts += inserts
            result.updates += len(keys) - inserts
            result.processed += len(keys)
            result.keys.extend(keys)

        record_sync_records(
            self.entity_type,
            inserts=result.inserts,
            updates=result.updates,
            errors=result.errors,
        )
        return result

    def snapshot(self, keys: Sequence[str]) -> dict[str, dict[str, Any]]:
        return self._store.snapshot(self.entity_type, keys)

    def cleanup_stale(self, max_age: timedelta = DEFAULT_STALE_AGE) -> int:
        """Delete rows whose last sync is older than ``max_age``."""

        cutoff = self._clock() - max_age
        removed = self._store.cleanup_stale(self.entity_type, cutoff)
        if removed:
            logger.info(
                "Removed %d stale %s rows last synced before %s",
                removed,
                self.entity_type,
                cutoff.isoformat(),
                extra={"entity_type": self.entity_type},
            )
        return removed

    def statistics(self) -> dict[str, Any]:
        return self._store.statistics(self.entity_type)
