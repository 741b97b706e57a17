"""In-memory dead-letter queue for operations that exhausted their retries."""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from threading import Lock
from typing import Any

from ..utils.timeutils import Clock, utc_now
from .classifier import Classification, ErrorCategory, ErrorSeverity


class DeadLetterStatus(str, Enum):
    FAILED = "FAILED"
    RESOLVED = "RESOLVED"


# Minimum wait before an entry is offered for reprocessing again.
_REPROCESS_DELAY: dict[ErrorCategory, timedelta] = {
    ErrorCategory.RATE_LIMIT: timedelta(minutes=60),
    ErrorCategory.NETWORK: timedelta(minutes=5),
    ErrorCategory.TIMEOUT: timedelta(minutes=5),
    ErrorCategory.DATABASE: timedelta(minutes=30),
}
_DEFAULT_REPROCESS_DELAY = timedelta(minutes=15)


def dead_letter_key(operation: str, entity_key: str | None) -> str:
    return f"{operation}:{entity_key or 'global'}"


@dataclass(slots=True)
class DeadLetterEntry:
    """A unit of work that failed terminally."""

    id: str
    operation: str
    entity_key: str | None
    status: DeadLetterStatus
    attempt_count: int
    category: ErrorCategory
    severity: ErrorSeverity
    retryable: bool
    error_message: str
    first_failure: datetime
    last_failure: datetime
    next_retry_at: datetime
    resolved_at: datetime | None = None
    replay: Callable[[], Awaitable[Any]] | None = field(default=None, repr=False)

    @property
    def key(self) -> str:
        return dead_letter_key(self.operation, self.entity_key)

    def to_dict(self) -> dict[str, Any]:
        """Return a serializable representation for API responses and logs."""

        return {
            "id": self.id,
            "operation": self.operation,
            "entity_key": self.entity_key,
            "status": self.status.value,
            "attempt_count": self.attempt_count,
            "category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "error_message": self.error_message,
            "first_failure": self.first_failure.isoformat(),
            "last_failure": self.last_failure.isoformat(),
            "next_retry_at": self.next_retry_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "replayable": self.replay is not None,
        }


class DeadLetterQueue:
    """Dead-letter entries keyed by ``<operation>:<entity key>``."""

    def __init__(self, *, clock: Clock = utc_now) -> None:
        self._entries: dict[str, DeadLetterEntry] = {}
        self._lock = Lock()
        self._clock = clock

    def record_failure(
        self,
        *,
        operation: str,
        entity_key: str | None,
        classification: Classification,
        error_message: str,
        attempts: int,
        replay: Callable[[], Awaitable[Any]] | None = None,
    ) -> DeadLetterEntry:
        """Create or update the FAILED entry for an operation."""

        now = self._clock()
        key = dead_letter_key(operation, entity_key)
        delay = _REPROCESS_DELAY.get(classification.category, _DEFAULT_REPROCESS_DELAY)
        next_retry_at = now + delay

        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.status is DeadLetterStatus.RESOLVED:
                entry = DeadLetterEntry(
                    id=str(uuid.uuid4()),
                    operation=operation,
                    entity_key=entity_key,
                    status=DeadLetterStatus.FAILED,
                    attempt_count=attempts,
                    category=classification.category,
                    severity=classification.severity,
                    retryable=classification.retryable,
                    error_message=error_message,
                    first_failure=now,
                    last_failure=now,
                    next_retry_at=next_retry_at,
                    replay=replay,
                )
                self._entries[key] = entry
                return entry

            entry.attempt_count += attempts
            entry.category = classification.category
            entry.severity = classification.severity
            entry.retryable = classification.retryable
            entry.error_message = error_message
            entry.last_failure = now
            entry.next_retry_at = next_retry_at
            if replay is not None:
                entry.replay = replay
            return entry

    def resolve(self, operation: str, entity_key: str | None) -> DeadLetterEntry | None:
        """Mark the entry for an operation as RESOLVED, if one is pending."""

        key = dead_letter_key(operation, entity_key)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.status is DeadLetterStatus.RESOLVED:
                return None
            entry.status = DeadLetterStatus.RESOLVED
            entry.resolved_at = self._clock()
            return entry

    def get(self, operation: str, entity_key: str | None) -> DeadLetterEntry | None:
        with self._lock:
            return self._entries.get(dead_letter_key(operation, entity_key))

    def entries(self, status: DeadLetterStatus | None = None) -> list[DeadLetterEntry]:
        with self._lock:
            values = list(self._entries.values())
        if status is None:
            return values
        return [entry for entry in values if entry.status is status]

    def failed_count(self) -> int:
        return len(self.entries(DeadLetterStatus.FAILED))

    def clear(self) -> None:
        """Drop every entry (primarily used in testing)."""

        with self._lock:
            self._entries.clear()
