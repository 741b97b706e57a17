"""Adaptive cache lifetimes derived from entity status and timing."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from ..sync.normalize import SyncStatus, normalize_status, parse_date
from ..utils.logging import setup_logger
from ..utils.timeutils import Clock, parse_duration, utc_now

logger = setup_logger(__name__, context={"component": "CacheStrategy"})


class CacheTTLPolicy(BaseModel):
    """Status to TTL table. Strings such as ``"30 seconds"`` are accepted."""

    model_config = ConfigDict(frozen=True)

    live: timedelta = timedelta(seconds=30)
    today: timedelta = timedelta(minutes=5)
    scheduled: timedelta = timedelta(minutes=15)
    recent_finished: timedelta = timedelta(hours=1)
    finished: timedelta = timedelta(hours=24)
    default: timedelta = timedelta(minutes=15)
    recency_window: timedelta = timedelta(hours=1)

    @field_validator("*", mode="before")
    @classmethod
    def _parse_text(cls, value: Any) -> Any:
        if isinstance(value, (str, int, float)):
            # Unparseable text becomes zero and is rejected below.
            return parse_duration(value, default=timedelta(0))
        return value

    @field_validator("*")
    @classmethod
    def _positive(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("Cache durations must be positive")
        return value


class TTLClass(str, Enum):
    LIVE = "live"
    TODAY = "today"
    SCHEDULED = "scheduled"
    RECENT_FINISHED = "recent_finished"
    FINISHED = "finished"


# Batch TTL takes the first class present, in this order.
_PRECEDENCE: tuple[TTLClass, ...] = (
    TTLClass.LIVE,
    TTLClass.TODAY,
    TTLClass.SCHEDULED,
    TTLClass.RECENT_FINISHED,
    TTLClass.FINISHED,
)

_SCHEDULED_STATUSES = {
    SyncStatus.UPCOMING.value,
    SyncStatus.SUSPENDED.value,
    SyncStatus.POSTPONED.value,
}

_SIGNIFICANT_TRANSITIONS = {
    (SyncStatus.UPCOMING.value, SyncStatus.FINISHED.value),
    (SyncStatus.UPCOMING.value, SyncStatus.CANCELLED.value),
    (SyncStatus.POSTPONED.value, SyncStatus.UPCOMING.value),
}


@dataclass(frozen=True, slots=True)
class InvalidationTrigger:
    key: str
    old_status: str | None
    new_status: str | None
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "timestamp": self.timestamp.isoformat(),
        }


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _as_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return parse_date(value)
    return None


def _as_time(value: Any) -> time | None:
    if isinstance(value, time):
        return value
    if isinstance(value, str):
        try:
            return time.fromisoformat(value.strip())
        except ValueError:
            return None
    return None


class CacheStrategy:
    """Computes batch and record TTLs and decides on cache invalidation."""

    def __init__(self, policy: CacheTTLPolicy | None = None, *, clock: Clock = utc_now) -> None:
        self._policy = policy or CacheTTLPolicy()
        self._clock = clock

    @property
    def policy(self) -> CacheTTLPolicy:
        return self._policy

    def update_ttl_policy(self, **overrides: Any) -> CacheTTLPolicy:
        """Merge ``overrides`` into the policy; unspecified entries keep their values."""

        merged = {**self._policy.model_dump(), **overrides}
        self._policy = CacheTTLPolicy.model_validate(merged)
        logger.info("Cache TTL policy updated: %s", sorted(overrides))
        return self._policy

    def _status(self, record: Any) -> str:
        return normalize_status(_field(record, "status"), default=SyncStatus.UPCOMING)

    def _record_date(self, record: Any) -> date | None:
        for name in ("local_date", "start_date"):
            parsed = _as_date(_field(record, name))
            if parsed is not None:
                return parsed
        return None

    def _finished_at(self, record: Any) -> datetime | None:
        local_date = _as_date(_field(record, "local_date"))
        if local_date is not None:
            local_time = _as_time(_field(record, "local_time")) or time(0, 0)
            return datetime.combine(local_date, local_time, tzinfo=timezone.utc)
        end_date = _as_date(_field(record, "end_date"))
        if end_date is not None:
            return datetime.combine(end_date, time(23, 59, 59), tzinfo=timezone.utc)
        return None

    def classify(self, record: Any, now: datetime | None = None) -> TTLClass:
        now = now or self._clock()
        status = self._status(record)

        if status == SyncStatus.RUNNING.value:
            return TTLClass.LIVE
        if status in _SCHEDULED_STATUSES:
            if status == SyncStatus.UPCOMING.value and self._record_date(record) == now.date():
                return TTLClass.TODAY
            return TTLClass.SCHEDULED
        if status == SyncStatus.FINISHED.value:
            finished_at = self._finished_at(record)
            if finished_at is not None and now - finished_at <= self._policy.recency_window:
                return TTLClass.RECENT_FINISHED
        return TTLClass.FINISHED

    def _ttl_for(self, ttl_class: TTLClass) -> timedelta:
        return getattr(self._policy, ttl_class.value)

    def record_ttl(self, record: Any) -> timedelta:
        return self._ttl_for(self.classify(record))

    def batch_ttl(self, records: Iterable[Any]) -> timedelta:
        """Return the most conservative TTL implied by ``records``."""

        now = self._clock()
        present = {self.classify(record, now) for record in records}
        if not present:
            return self._policy.default
        for ttl_class in _PRECEDENCE:
            if ttl_class in present:
                return self._ttl_for(ttl_class)
        return self._policy.default

    def invalidation_triggers(
        self,
        old: Mapping[str, Any] | Iterable[Any],
        new: Mapping[str, Any] | Iterable[Any],
    ) -> list[InvalidationTrigger]:
        """Emit a trigger for every key present in both snapshots whose status changed."""

        old_by_key = self._index(old)
        new_by_key = self._index(new)
        now = self._clock()

        triggers: list[InvalidationTrigger] = []
        for key, new_record in new_by_key.items():
            if key not in old_by_key:
                continue
            old_status = _field(old_by_key[key], "status")
            new_status = _field(new_record, "status")
            if old_status != new_status:
                triggers.append(
                    InvalidationTrigger(
                        key=key,
                        old_status=old_status,
                        new_status=new_status,
                        timestamp=now,
                    )
                )
        return triggers

    @staticmethod
    def _index(records: Mapping[str, Any] | Iterable[Any]) -> dict[str, Any]:
        if isinstance(records, Mapping):
            return {str(key): value for key, value in records.items()}
        return {str(_field(record, "no")): record for record in records}

    def should_invalidate(self, trigger: InvalidationTrigger) -> bool:
        old = normalize_status(trigger.old_status, default=SyncStatus.UPCOMING)
        new = normalize_status(trigger.new_status, default=SyncStatus.UPCOMING)
        if old == new:
            return False
        if SyncStatus.RUNNING.value in (old, new):
            return True
        return (old, new) in _SIGNIFICANT_TRANSITIONS

    def statistics(self, records: Iterable[Any]) -> dict[str, Any]:
        items = list(records)
        now = self._clock()
        counts = {ttl_class.value: 0 for ttl_class in TTLClass}
        by_status: dict[str, int] = {}
        for record in items:
            counts[self.classify(record, now).value] += 1
            status = self._status(record)
            by_status[status] = by_status.get(status, 0) + 1

        total = len(items)
        scheduled = counts[TTLClass.TODAY.value] + counts[TTLClass.SCHEDULED.value]
        if counts[TTLClass.LIVE.value]:
            efficiency = "Low"
        elif scheduled > total * 0.5:
            efficiency = "Medium"
        else:
            efficiency = "High"

        recommended = self.batch_ttl(items)
        return {
            "total": total,
            "live": counts[TTLClass.LIVE.value],
            "scheduled": scheduled,
            "finished": counts[TTLClass.RECENT_FINISHED.value] + counts[TTLClass.FINISHED.value],
            "by_status": by_status,
            "recommended_ttl_seconds": int(recommended.total_seconds()),
            "cache_efficiency": efficiency,
            "next_recommended_sync": (now + recommended).isoformat(),
        }

    @staticmethod
    def cache_key(entity: str, key: str) -> str:
        return f"{entity}:tournament:{key}"
