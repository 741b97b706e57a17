"""Retry, dead-letter routing and per-item orchestration for sync operations."""

from __future__ import annotations

import asyncio
import random
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Generic, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from ..monitoring.metrics import (
    record_classified_error,
    record_retry_attempt,
    set_dead_letter_queue_size,
)
from ..utils.config import RetrySettings
from ..utils.logging import setup_logger
from ..utils.timeutils import Clock, ensure_aware, utc_now
from .classifier import (
    Classification,
    ErrorContext,
    ErrorSeverity,
    classify_error,
    context_for_exception,
    describe_exception,
)
from .dead_letter import DeadLetterEntry, DeadLetterQueue, DeadLetterStatus

logger = setup_logger(__name__, context={"component": "Resilience"})

T = TypeVar("T")
ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")

SleepFn = Callable[[float], Awaitable[None]]


class RetryPolicy(BaseModel):
    """Bounded exponential backoff configuration.

    ``max_retries`` bounds the total number of attempts, including the first one.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_retries: int = Field(default=3, ge=1)
    base_delay: float = Field(default=2.0, gt=0)
    max_delay: float = Field(default=30.0, gt=0)
    backoff_multiplier: float = Field(default=2.0, gt=0)
    jitter: float = Field(default=0.0, ge=0, le=1)

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
            backoff_multiplier=settings.backoff_multiplier,
        )

    def delay_for(self, attempt: int) -> float:
        """Return the wait in seconds after the given (1-based) failed attempt."""

        attempt = max(attempt, 1)
        delay = self.base_delay * (self.backoff_multiplier ** (attempt - 1))
        if self.jitter > 0:
            delay += random.uniform(0, self.jitter * delay)
        return min(delay, self.max_delay)


@dataclass(slots=True)
class ClassifiedFailure:
    """A single failed attempt together with its classification."""

    operation: str
    entity_key: str | None
    message: str
    error_type: str
    classification: Classification
    context: ErrorContext | None
    attempt: int
    occurred_at: datetime


class ErrorLogWriter(Protocol):
    def log_error(self, failure: ClassifiedFailure) -> None: ...


@dataclass(slots=True)
class FailedItem(Generic[ItemT]):
    item: ItemT
    key: str
    error: Exception
    classification: Classification
    dead_letter: DeadLetterEntry | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "error": describe_exception(self.error),
            "error_type": self.error.__class__.__name__,
            **self.classification.to_dict(),
        }


@dataclass(slots=True)
class ForEachResult(Generic[ItemT, ResultT]):
    """Partition of per-item outcomes."""

    successful: list[tuple[ItemT, ResultT]] = field(default_factory=list)
    failed: list[FailedItem[ItemT]] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.successful) + len(self.failed)


@dataclass(slots=True)
class DeadLetterReport:
    processed: int = 0
    resolved: int = 0
    still_failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "resolved": self.resolved,
            "still_failed": self.still_failed,
        }


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into consecutive chunks of at most ``size`` elements."""

    size = max(size, 1)
    return [list(items[index : index + size]) for index in range(0, len(items), size)]


async def _asyncio_sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


class ResilienceExecutor:
    """Run operations with classification-driven retries and dead-letter routing.

    Retry waits are awaited inside the calling task, so concurrent tasks keep
    running while one of them backs off.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        dead_letters: DeadLetterQueue | None = None,
        error_log: ErrorLogWriter | None = None,
        sleep: SleepFn = _asyncio_sleep,
        clock: Clock = utc_now,
    ) -> None:
        self._policy = policy or RetryPolicy()
        self._clock = clock
        self._dead_letters = dead_letters or DeadLetterQueue(clock=clock)
        self._error_log = error_log
        self._sleep = sleep
        self._errors_by_type: Counter[str] = Counter()
        self._total_errors = 0
        self._retryable_errors = 0
        self._critical_errors = 0

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def dead_letters(self) -> DeadLetterQueue:
        return self._dead_letters

    def _wait(self, retry_state: RetryCallState) -> float:
        return self._policy.delay_for(retry_state.attempt_number)

    def _record_attempt_failure(
        self,
        exc: Exception,
        *,
        name: str,
        entity_key: str | None,
        context: ErrorContext | None,
        attempt: int,
    ) -> ClassifiedFailure:
        effective_context = context or context_for_exception(exc)
        message = describe_exception(exc)
        classification = classify_error(message, effective_context)

        self._total_errors += 1
        self._errors_by_type[f"{classification.category.value}:{name}"] += 1
        if classification.retryable:
            self._retryable_errors += 1
        if classification.severity is ErrorSeverity.CRITICAL:
            self._critical_errors += 1
        record_classified_error(classification.category.value, classification.severity.value)

        logger.warning(
            "Attempt %s/%s of %s failed: %s",
            attempt,
            self._policy.max_retries,
            name,
            message,
            extra={
                "tournament_no": entity_key or "-",
                "status": "retrying" if classification.retryable else "failed",
                "category": classification.category.value,
            },
        )

        return ClassifiedFailure(
            operation=name,
            entity_key=entity_key,
            message=message,
            error_type=exc.__class__.__name__,
            classification=classification,
            context=effective_context,
            attempt=attempt,
            occurred_at=self._clock(),
        )

    def _write_error_log(self, failure: ClassifiedFailure) -> None:
        if self._error_log is None:
            return
        try:
            self._error_log.log_error(failure)
        except Exception:  # pragma: no cover - logging must never mask the original failure
            logger.exception(
                "Unable to persist classified error for %s",
                failure.operation,
                extra={"tournament_no": failure.entity_key or "-", "status": "error"},
            )

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        name: str,
        entity_key: str | None = None,
        context: ErrorContext | None = None,
    ) -> T:
        """Run ``operation`` with retries; re-raise the original error when it fails terminally.

        Args:
            operation: Zero-argument coroutine factory.
            name: Operation identifier used for statistics and dead-letter keys.
            entity_key: Optional entity key (e.g. tournament number).
            context: Optional typed context overriding the one derived from the error.

        Returns:
            The operation's result.
        """

        last_failure: ClassifiedFailure | None = None

        def _should_retry(exc: BaseException) -> bool:
            return last_failure is not None and last_failure.classification.retryable

        def _before_sleep(retry_state: RetryCallState) -> None:
            record_retry_attempt(name)
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                "Retrying %s in %.1fs (attempt %s/%s)",
                name,
                delay,
                retry_state.attempt_number + 1,
                self._policy.max_retries,
                extra={"tournament_no": entity_key or "-", "status": "retrying"},
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._policy.max_retries),
            wait=self._wait,
            retry=retry_if_exception(_should_retry),
            before_sleep=_before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    try:
                        result = await operation()
                    except Exception as exc:
                        last_failure = self._record_attempt_failure(
                            exc,
                            name=name,
                            entity_key=entity_key,
                            context=context,
                            attempt=attempt.retry_state.attempt_number,
                        )
                        raise
        except Exception:
            if last_failure is not None:
                self._route_to_dead_letter(last_failure, operation)
            raise

        if self._dead_letters.resolve(name, entity_key) is not None:
            set_dead_letter_queue_size(self._dead_letters.failed_count())
        return result

    def _route_to_dead_letter(
        self,
        failure: ClassifiedFailure,
        operation: Callable[[], Awaitable[Any]],
    ) -> DeadLetterEntry:
        entry = self._dead_letters.record_failure(
            operation=failure.operation,
            entity_key=failure.entity_key,
            classification=failure.classification,
            error_message=failure.message,
            attempts=failure.attempt,
            replay=operation,
        )
        set_dead_letter_queue_size(self._dead_letters.failed_count())
        self._write_error_log(failure)
        logger.error(
            "Operation %s moved to dead-letter queue after %s attempt(s)",
            failure.operation,
            failure.attempt,
            extra={
                "tournament_no": failure.entity_key or "-",
                "status": "dead_letter",
                "category": failure.classification.category.value,
            },
        )
        return entry

    async def execute_for_each(
        self,
        items: Iterable[ItemT],
        operation: Callable[[ItemT], Awaitable[ResultT]],
        label: str,
        *,
        key: Callable[[ItemT], str] = str,
        concurrency: int = 1,
        into: ForEachResult[ItemT, ResultT] | None = None,
    ) -> ForEachResult[ItemT, ResultT]:
        """Run ``execute`` for every item, partitioning successes and failures.

        Items are processed in chunks of ``concurrency``; the tasks of a chunk
        run in parallel. One item's terminal failure never stops the others.
        Passing ``into`` lets callers observe partial progress if the whole call
        is cancelled.
        """

        result: ForEachResult[ItemT, ResultT] = into if into is not None else ForEachResult()
        materialized = list(items)

        async def _run(item: ItemT) -> None:
            item_key = key(item)
            try:
                value = await self.execute(
                    lambda: operation(item),
                    name=label,
                    entity_key=item_key,
                )
            except Exception as exc:
                entry = self._dead_letters.get(label, item_key)
                result.failed.append(
                    FailedItem(
                        item=item,
                        key=item_key,
                        error=exc,
                        classification=classify_error(
                            describe_exception(exc), context_for_exception(exc)
                        ),
                        dead_letter=entry,
                    )
                )
                return
            result.successful.append((item, value))

        for chunk in chunked(materialized, concurrency):
            await asyncio.gather(*(_run(item) for item in chunk))

        logger.info(
            "%s finished: %s succeeded, %s failed",
            label,
            len(result.successful),
            len(result.failed),
            extra={"status": "success" if not result.failed else "partial"},
        )
        return result

    def dead_letter_entries(self, status: DeadLetterStatus | None = None) -> list[DeadLetterEntry]:
        return self._dead_letters.entries(status)

    async def process_dead_letter_queue(
        self,
        *,
        max_age: timedelta = timedelta(hours=24),
        force: bool = False,
    ) -> DeadLetterReport:
        """Replay FAILED entries once each.

        Entries whose reprocess time has not arrived are skipped unless ``force``.
        Entries older than ``max_age`` or without a replayable operation stay FAILED.
        """

        report = DeadLetterReport()
        now = self._clock()

        for entry in self._dead_letters.entries(DeadLetterStatus.FAILED):
            if not force and ensure_aware(entry.next_retry_at) > now:
                continue

            report.processed += 1
            too_old = now - ensure_aware(entry.first_failure) > max_age
            if too_old or entry.replay is None:
                report.still_failed += 1
                continue

            try:
                await entry.replay()
            except Exception as exc:
                message = describe_exception(exc)
                self._dead_letters.record_failure(
                    operation=entry.operation,
                    entity_key=entry.entity_key,
                    classification=classify_error(message, context_for_exception(exc)),
                    error_message=message,
                    attempts=1,
                )
                report.still_failed += 1
                continue

            self._dead_letters.resolve(entry.operation, entry.entity_key)
            report.resolved += 1

        set_dead_letter_queue_size(self._dead_letters.failed_count())
        logger.info(
            "Dead-letter reprocessing: %s processed, %s resolved, %s still failed",
            report.processed,
            report.resolved,
            report.still_failed,
            extra={"status": "success" if report.still_failed == 0 else "partial"},
        )
        return report

    def statistics(self) -> dict[str, Any]:
        """Return counters describing failures seen by this executor."""

        return {
            "total_errors": self._total_errors,
            "errors_by_type": dict(self._errors_by_type),
            "dead_letter_queue_size": self._dead_letters.failed_count(),
            "retryable_errors": self._retryable_errors,
            "critical_errors": self._critical_errors,
        }

    def reset_statistics(self) -> None:
        self._errors_by_type.clear()
        self._total_errors = 0
        self._retryable_errors = 0
        self._critical_errors = 0
