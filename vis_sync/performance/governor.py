"""Prioritization, rate limiting and adaptive sizing for upstream work."""

from __future__ import annotations

import uuid
from collections import defaultdict, deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from threading import Lock
from typing import Any, Generic, TypeVar

from ..monitoring.metrics import record_rate_limit_rejection
from ..utils.logging import setup_logger
from ..utils.timeutils import Clock, utc_now

logger = setup_logger(__name__, context={"component": "PerformanceGovernor"})

ItemT = TypeVar("ItemT")

HIGH_LATENCY_MS = 5000.0
SLOW_RESPONSE_MS = 3000.0
FAST_RESPONSE_MS = 1000.0
MIN_SUCCESS_RATE = 0.9
LOW_SUCCESS_RATE = 0.85
HIGH_SUCCESS_RATE = 0.95
SLOW_OPERATION_MS = 30000.0
RATE_LIMIT_PRESSURE = 0.9

_MAX_RESPONSE_SAMPLES = 100
_TRIMMED_RESPONSE_SAMPLES = 50


class TournamentTier(str, Enum):
    FIVB = "FIVB"
    CEV = "CEV"
    BPT = "BPT"
    LOCAL = "LOCAL"


TIER_SCORES: dict[TournamentTier, int] = {
    TournamentTier.FIVB: 100,
    TournamentTier.CEV: 85,
    TournamentTier.BPT: 75,
    TournamentTier.LOCAL: 65,
}

# (tier, keywords matched against the name, keywords matched against the code)
_TIER_KEYWORDS: tuple[tuple[TournamentTier, tuple[str, ...], tuple[str, ...]], ...] = (
    (TournamentTier.FIVB, ("fivb", "world tour", "world championship"), ("fivb",)),
    (TournamentTier.CEV, ("cev", "european"), ("cev",)),
    (TournamentTier.BPT, ("bpt", "beach pro tour", "elite16", "elite 16"), ("bpt",)),
)


def _read(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def classify_tournament_tier(name: str | None, code: str | None = None) -> TournamentTier:
    """Return the federation tier implied by a tournament's name or code."""

    lowered_name = (name or "").lower()
    lowered_code = (code or "").lower()
    for tier, name_keywords, code_keywords in _TIER_KEYWORDS:
        if any(keyword in lowered_name for keyword in name_keywords):
            return tier
        if any(keyword in lowered_code for keyword in code_keywords):
            return tier
    return TournamentTier.LOCAL


@dataclass(slots=True)
class PrioritizedItem(Generic[ItemT]):
    item: ItemT
    score: int
    tier: TournamentTier


@dataclass(slots=True)
class OperationMetric:
    name: str
    started_at: datetime
    ended_at: datetime | None = None
    duration_ms: float = 0.0
    success: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return self.ended_at is not None


@dataclass(slots=True)
class PerformanceMetrics:
    total_operations: int
    average_operation_time: float
    success_rate: float
    average_api_response_time: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_operations": self.total_operations,
            "average_operation_time": self.average_operation_time,
            "success_rate": self.success_rate,
            "average_api_response_time": self.average_api_response_time,
        }


@dataclass(slots=True)
class BottleneckReport:
    has_bottlenecks: bool
    issues: list[str]
    recommendations: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_bottlenecks": self.has_bottlenecks,
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
        }


class PerformanceGovernor:
    """Shared, lock-guarded performance state for one sync invocation (or process).

    Args:
        max_calls: Calls allowed per key within ``window``.
        window: Sliding rate-limit window.
        retention: Horizon beyond which operation metrics are discarded.
        clock: Time source returning aware datetimes.
    """

    def __init__(
        self,
        *,
        max_calls: int = 10,
        window: timedelta = timedelta(seconds=60),
        retention: timedelta = timedelta(minutes=5),
        clock: Clock = utc_now,
    ) -> None:
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")
        self._max_calls = max_calls
        self._window = window
        self._retention = retention
        self._clock = clock
        self._calls: dict[str, deque[datetime]] = defaultdict(deque)
        self._response_times: list[float] = []
        self._operations: list[OperationMetric] = []
        self._pending: dict[str, OperationMetric] = {}
        self._lock = Lock()

    @property
    def max_calls(self) -> int:
        return self._max_calls

    def prioritize_tournaments(self, items: Iterable[ItemT]) -> list[PrioritizedItem[ItemT]]:
        """Score items by federation tier, highest first; ties keep input order."""

        scored: list[PrioritizedItem[ItemT]] = []
        for item in items:
            tier = classify_tournament_tier(_read(item, "name"), _read(item, "code"))
            scored.append(PrioritizedItem(item=item, score=TIER_SCORES[tier], tier=tier))
        # sorted() is stable, so equal scores keep their discovery order.
        return sorted(scored, key=lambda entry: entry.score, reverse=True)

    def _prune_calls(self, key: str, now: datetime) -> deque[datetime]:
        calls = self._calls[key]
        while calls and now - calls[0] >= self._window:
            calls.popleft()
        return calls

    def can_process(self, key: str) -> bool:
        """Return True while ``key`` has capacity left in the current window."""

        now = self._clock()
        with self._lock:
            allowed = len(self._prune_calls(key, now)) < self._max_calls
        if not allowed:
            record_rate_limit_rejection(key)
            logger.warning(
                "Rate limit reached for %s",
                key,
                extra={"status": "throttled"},
            )
        return allowed

    def try_acquire(self, key: str) -> bool:
        """Check capacity and record the call in one locked step."""

        now = self._clock()
        with self._lock:
            calls = self._prune_calls(key, now)
            if len(calls) < self._max_calls:
                calls.append(now)
                return True
        record_rate_limit_rejection(key)
        return False

    def record_call(self, key: str) -> None:
        now = self._clock()
        with self._lock:
            self._calls[key].append(now)

    def remaining_calls(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            return max(self._max_calls - len(self._prune_calls(key, now)), 0)

    def seconds_until_available(self, key: str) -> float:
        """Seconds until the oldest call of a saturated key leaves the window; 0 when free."""

        now = self._clock()
        with self._lock:
            calls = self._prune_calls(key, now)
            if len(calls) < self._max_calls:
                return 0.0
            return max((calls[0] + self._window - now).total_seconds(), 0.0)

    def record_response_time(self, duration_ms: float) -> None:
        with self._lock:
            self._response_times.append(max(float(duration_ms), 0.0))
            if len(self._response_times) > _MAX_RESPONSE_SAMPLES:
                self._response_times = self._response_times[-_TRIMMED_RESPONSE_SAMPLES:]

    def start_operation(self, name: str) -> str:
        """Begin timing an operation and return the token for :meth:`end_operation`."""

        token = f"{name}:{uuid.uuid4()}"
        metric = OperationMetric(name=name, started_at=self._clock())
        with self._lock:
            self._pending[token] = metric
            self._operations.append(metric)
        return token

    def end_operation(self, token: str, success: bool = True, **details: Any) -> None:
        now = self._clock()
        with self._lock:
            metric = self._pending.pop(token, None)
            if metric is None:
                return
            metric.ended_at = now
            metric.duration_ms = (now - metric.started_at).total_seconds() * 1000.0
            metric.success = success
            metric.details = details

    def record_operation(self, name: str, duration_ms: float, success: bool) -> None:
        """Record an already-timed operation."""

        now = self._clock()
        metric = OperationMetric(
            name=name,
            started_at=now - timedelta(milliseconds=duration_ms),
            ended_at=now,
            duration_ms=float(duration_ms),
            success=success,
        )
        with self._lock:
            self._operations.append(metric)

    def get_metrics(self) -> PerformanceMetrics:
        """Summarize operations started within the retention horizon."""

        now = self._clock()
        with self._lock:
            recent = [
                metric
                for metric in self._operations
                if metric.completed and now - metric.started_at < self._retention
            ]
            total = len(self._operations)
            response_times = list(self._response_times)

        average_operation = sum(m.duration_ms for m in recent) / len(recent) if recent else 0.0
        success_rate = sum(1 for m in recent if m.success) / len(recent) if recent else 1.0
        average_response = sum(response_times) / len(response_times) if response_times else 0.0
        return PerformanceMetrics(
            total_operations=total,
            average_operation_time=average_operation,
            success_rate=success_rate,
            average_api_response_time=average_response,
        )

    def detect_bottlenecks(self) -> BottleneckReport:
        metrics = self.get_metrics()
        issues: list[str] = []
        recommendations: list[str] = []

        if metrics.average_api_response_time > HIGH_LATENCY_MS:
            issues.append("High API response times detected")
            recommendations.append("Reduce concurrent requests or queue upstream calls")

        if metrics.success_rate < MIN_SUCCESS_RATE:
            issues.append("Low success rate detected")
            recommendations.append("Review classified errors and dead-letter entries")

        if metrics.average_operation_time > SLOW_OPERATION_MS:
            issues.append("Slow operation performance detected")
            recommendations.append("Reduce batch size and the concurrent tournament limit")

        now = self._clock()
        with self._lock:
            busiest = max(
                (len(self._prune_calls(key, now)) for key in list(self._calls)),
                default=0,
            )
        if busiest > self._max_calls * RATE_LIMIT_PRESSURE:
            issues.append("Approaching API rate limits")
            recommendations.append("Spread calls using tournament priority ordering")

        return BottleneckReport(
            has_bottlenecks=bool(issues),
            issues=issues,
            recommendations=recommendations,
        )

    def optimal_batch_size(self, baseline: int = 5, max_size: int | None = None) -> int:
        """Recommend a batch size from recent latency and success rate."""

        metrics = self.get_metrics()
        ceiling = max_size if max_size is not None else baseline + 3
        size = baseline

        if metrics.average_api_response_time > SLOW_RESPONSE_MS:
            size = max(2, int(size * 0.7))
        if metrics.success_rate < LOW_SUCCESS_RATE:
            size = max(1, int(size * 0.8))
        if (
            metrics.average_api_response_time < FAST_RESPONSE_MS
            and metrics.success_rate > HIGH_SUCCESS_RATE
        ):
            size = min(ceiling, size + 1)
        return max(size, 1)

    def cleanup(self) -> None:
        """Drop call timestamps outside the window and metrics beyond retention."""

        now = self._clock()
        with self._lock:
            for key in list(self._calls):
                if not self._prune_calls(key, now):
                    del self._calls[key]
            self._operations = [
                metric
                for metric in self._operations
                if now - metric.started_at < self._retention or not metric.completed
            ]

    def performance_report(
        self, *, concurrent_tournaments: int = 0, total_matches: int = 0
    ) -> dict[str, Any]:
        """Snapshot of resource usage suitable for logging."""

        metrics = self.get_metrics()
        now = self._clock()
        minute_ago = now - timedelta(minutes=1)
        with self._lock:
            recent_calls = sum(
                1 for calls in self._calls.values() for stamp in calls if stamp > minute_ago
            )
        return {
            "timestamp": now.isoformat(),
            "concurrent_tournaments": concurrent_tournaments,
            "total_matches": total_matches,
            "api_calls_per_minute": recent_calls,
            "average_response_time": metrics.average_api_response_time,
            "error_rate": 1 - metrics.success_rate,
        }


ACTIVE_START_HOUR = 6
ACTIVE_END_HOUR = 23
ACTIVE_BUFFER = timedelta(hours=2)


def is_active_hours(now: datetime, tournaments: Sequence[Any] | None = None) -> bool:
    """Return True when ``now`` falls inside playing hours (of any tournament, if given).

    A tournament is in range from two hours before its start date until two
    hours after the end of its last day; playing hours are 06:00-23:59 UTC.
    """

    if not ACTIVE_START_HOUR <= now.astimezone(timezone.utc).hour <= ACTIVE_END_HOUR:
        return False
    if tournaments is None:
        return True

    for tournament in tournaments:
        start = _read(tournament, "start_date")
        end = _read(tournament, "end_date")
        if not isinstance(start, date) or not isinstance(end, date):
            continue
        window_start = datetime.combine(start, time.min, tzinfo=timezone.utc) - ACTIVE_BUFFER
        window_end = datetime.combine(end, time(23, 59, 59), tzinfo=timezone.utc) + ACTIVE_BUFFER
        if window_start <= now <= window_end:
            return True
    return False
