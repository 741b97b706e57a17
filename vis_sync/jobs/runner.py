"""Sync job orchestration: one run per entity type, raced against a time budget."""

from __future__ import annotations

import asyncio
import math
import resource
import sys
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache
from typing import Any, AsyncIterator

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..alerts.engine import AlertEngine, AlertRunSummary
from ..alerts.notifications import ChannelDispatcher, Mailer, build_dispatcher
from ..auth.authenticator import Authenticator
from ..auth.credentials import CredentialProvider, build_credential_provider
from ..cache.strategy import CacheStrategy, CacheTTLPolicy
from ..client.vis_client import MATCH_LIST_REQUEST, TOURNAMENT_LIST_REQUEST, VisApiClient
from ..exceptions import CredentialError, PayloadParseError, StorageError, VisSyncError
from ..models.repository import SyncStore
from ..monitoring.metrics import observe_run_duration, record_sync_run
from ..monitoring.tracing import generate_correlation_id, set_correlation_id, trace_span
from ..performance.governor import PerformanceGovernor
from ..resilience.classifier import describe_exception
from ..resilience.executor import ForEachResult, ResilienceExecutor, RetryPolicy, SleepFn
from ..schemas.records import SyncCandidate
from ..sync.entities import (
    LIVE_SCORE_ENTITY,
    LIVE_SCORE_FIELDS,
    MATCH_ENTITY,
    MATCH_SPEC,
    TOURNAMENT_ENTITY,
    TOURNAMENT_SPEC,
)
from ..sync.normalize import SyncStatus
from ..sync.synchronizer import BatchResult, EntitySynchronizer
from ..utils.config import (
    GlobalSettings,
    ServiceConfiguration,
    get_service_configuration,
    get_settings,
)
from ..utils.logging import log_sync_attempt, setup_logger
from ..utils.timeutils import Clock, utc_now

logger = setup_logger(__name__, context={"component": "SyncRunner"})

TIMEOUT_MESSAGE = "Sync timeout exceeded"
TOURNAMENT_SYNC_FREQUENCY_MINUTES = 24 * 60
MIN_RATE_LIMIT_WAIT = 0.05
MATCH_CACHE_NAMESPACE = "matches"


@dataclass(slots=True)
class SyncServices:
    """Long-lived collaborators shared by every run of one process.

    The authenticator is built on first use so that credential retrieval
    failures surface inside a run rather than at wiring time.
    """

    settings: GlobalSettings
    store: SyncStore
    credential_provider: CredentialProvider
    executor: ResilienceExecutor
    governor: PerformanceGovernor
    cache: CacheStrategy
    tournament_sync: EntitySynchronizer
    match_sync: EntitySynchronizer
    dispatcher: ChannelDispatcher
    alert_config: ServiceConfiguration | None = None
    clock: Clock = utc_now
    sleep: SleepFn = asyncio.sleep
    transport: httpx.AsyncBaseTransport | None = None
    _authenticator: Authenticator | None = None
    _alert_engine: AlertEngine | None = None
    _rules_seeded: bool = False

    @property
    def authenticator(self) -> Authenticator:
        """Return the shared authenticator, loading credentials on first access.

        Raises:
            CredentialError: When the credential provider cannot supply credentials.
        """

        if self._authenticator is None:
            upstream = self.settings.vis
            self._authenticator = Authenticator(
                self.credential_provider.get_credentials(),
                clock=self.clock,
                base_url=upstream.base_url,
                timeout=upstream.timeout_seconds,
                transport=self.transport,
            )
        return self._authenticator

    def load_credentials(self) -> None:
        """Resolve credentials before any unit runs so a retrieval failure aborts the run.

        Raises:
            CredentialError: When the credential provider cannot supply credentials.
        """

        self.authenticator

    @property
    def alert_engine(self) -> AlertEngine:
        if self._alert_engine is None:
            self._alert_engine = AlertEngine(
                self.store,
                self.store,
                self.dispatcher,
                rules=self.store,
                clock=self.clock,
            )
        return self._alert_engine

    async def ensure_alert_rules(self) -> None:
        """Seed configured alert rules once per process."""

        if self._rules_seeded or self.alert_config is None:
            return
        await asyncio.to_thread(self.store.seed_alert_rules, self.alert_config.alert_rules)
        self._rules_seeded = True

    @asynccontextmanager
    async def open_client(self) -> AsyncIterator[VisApiClient]:
        upstream = self.settings.vis
        client = VisApiClient(
            self.authenticator,
            base_url=upstream.base_url,
            timeout=upstream.timeout_seconds,
            transport=self.transport,
            response_observer=self.governor.record_response_time,
        )
        async with client:
            yield client


def build_services(
    settings: GlobalSettings | None = None,
    *,
    service_config: ServiceConfiguration | None = None,
    store: SyncStore | None = None,
    credential_provider: CredentialProvider | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    mailer: Mailer | None = None,
    clock: Clock = utc_now,
    sleep: SleepFn = asyncio.sleep,
) -> SyncServices:
    """Wire the sync collaborators from settings without touching the network."""

    settings = settings or get_settings()
    store = store or SyncStore()

    cache_policy = None
    if service_config is not None and service_config.cache_ttl:
        cache_policy = CacheTTLPolicy.model_validate(service_config.cache_ttl)

    return SyncServices(
        settings=settings,
        store=store,
        credential_provider=credential_provider or build_credential_provider(settings),
        executor=ResilienceExecutor(
            RetryPolicy.from_settings(settings.retry),
            error_log=store,
            sleep=sleep,
            clock=clock,
        ),
        governor=PerformanceGovernor(
            max_calls=settings.rate_limit.max_calls,
            window=timedelta(seconds=settings.rate_limit.window_seconds),
            clock=clock,
        ),
        cache=CacheStrategy(cache_policy, clock=clock),
        tournament_sync=EntitySynchronizer(TOURNAMENT_SPEC, store, clock=clock),
        match_sync=EntitySynchronizer(MATCH_SPEC, store, clock=clock),
        dispatcher=build_dispatcher(
            settings, sink=store, transport=transport, mailer=mailer, clock=clock
        ),
        alert_config=service_config,
        clock=clock,
        sleep=sleep,
        transport=transport,
    )


@lru_cache(maxsize=1)
def get_sync_services() -> SyncServices:
    """Return the process-wide services so the dead-letter queue outlives a single run."""

    settings = get_settings()
    return build_services(settings, service_config=get_service_configuration(settings))


def reset_sync_services() -> None:
    get_sync_services.cache_clear()


class SyncRunResult(BaseModel):
    """Outcome of one run; ``to_response`` renders the camelCase invocation contract."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    entity_type: str = Field(exclude=True)
    success: bool = False
    processed: int = Field(default=0, exclude=True)
    inserts_count: int = 0
    updates_count: int = 0
    errors_count: int = 0
    skipped_count: int = 0
    duration: int = 0
    errors: list[str] = Field(default_factory=list)
    timed_out: bool = False
    aborted: bool = Field(default=False, exclude=True)
    correlation_id: str | None = None
    details: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def processed_key(self) -> str:
        if self.entity_type == TOURNAMENT_ENTITY:
            return "tournamentsProcessed"
        return "matchesProcessed"

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": self.success,
            self.processed_key: self.processed,
        }
        body.update(self.model_dump(by_alias=True, mode="json", exclude={"success"}))
        return body


def http_status(result: SyncRunResult) -> int:
    """200 for a clean run, 500 when nothing could be processed, 207 otherwise."""

    if result.aborted:
        return 500
    if result.success and result.errors_count == 0 and not result.errors:
        return 200
    return 207


@dataclass(slots=True)
class _TournamentListOutcome:
    parsed: int
    skipped: int
    rows: list[BaseModel]
    batch: BatchResult


@dataclass(slots=True)
class _MatchUnitOutcome:
    batch: BatchResult
    skipped: int
    detail: dict[str, Any]


@dataclass(slots=True)
class _RunProgress:
    processed: int = 0
    inserts: int = 0
    updates: int = 0
    record_errors: int = 0
    unit_errors: int = 0
    units_attempted: int = 0
    units_failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    details: list[dict[str, Any]] = field(default_factory=list)
    units: ForEachResult[SyncCandidate, _MatchUnitOutcome] | None = None
    aborted: bool = False
    timed_out: bool = False

    def absorb(self, batch: BatchResult, *, label: str | None = None) -> None:
        self.processed += batch.processed
        self.inserts += batch.inserts
        self.updates += batch.updates
        self.record_errors += batch.errors
        prefix = f"{label}: " if label else ""
        self.errors.extend(f"{prefix}{message}" for message in batch.error_messages)

    def fold_units(self) -> None:
        """Copy per-tournament outcomes (possibly partial after a timeout) into the counters."""

        if self.units is None:
            return
        for candidate, outcome in self.units.successful:
            self.absorb(outcome.batch, label=f"Tournament {candidate.no}")
            self.skipped += outcome.skipped
            self.details.append(outcome.detail)
        self.units_attempted = self.units.attempted
        self.units_failed = len(self.units.failed)
        self.unit_errors += len(self.units.failed)
        for failure in self.units.failed:
            self.errors.append(f"Tournament {failure.key}: {describe_exception(failure.error)}")

    @property
    def errors_count(self) -> int:
        return self.record_errors + self.unit_errors


def _within_failure_budget(failed: int, attempted: int, max_ratio: float) -> bool:
    if attempted == 0:
        return True
    return failed / attempted < max_ratio


def _peak_memory_mb() -> float:
    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS and kilobytes elsewhere.
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return round(usage / divisor, 2)


async def _acquire_rate_limit(services: SyncServices, key: str) -> None:
    governor = services.governor
    while not governor.try_acquire(key):
        delay = max(governor.seconds_until_available(key), MIN_RATE_LIMIT_WAIT)
        logger.warning(
            "Rate limit reached for %s; waiting %.2fs",
            key,
            delay,
            extra={"status": "throttled"},
        )
        await services.sleep(delay)


RunBody = Callable[[SyncServices, _RunProgress], Awaitable[None]]


async def _run(
    services: SyncServices,
    entity_type: str,
    body: RunBody,
    *,
    frequency_minutes: int,
) -> SyncRunResult:
    correlation_id = generate_correlation_id()
    set_correlation_id(correlation_id)
    store = services.store
    timeout = services.settings.sync.max_processing_seconds

    started_at = services.clock()
    started = time.perf_counter()
    progress = _RunProgress()
    execution_id: int | None = None
    unexpected: Exception | None = None

    try:
        execution_id = await asyncio.to_thread(
            store.start_execution, entity_type, started_at, correlation_id
        )
        await asyncio.wait_for(body(services, progress), timeout=timeout)
    except asyncio.TimeoutError:
        progress.timed_out = True
        logger.error(
            "%s sync exceeded %.0fs budget; keeping completed work",
            entity_type,
            timeout,
            extra={"entity_type": entity_type, "status": "timeout"},
        )
    except CredentialError as exc:
        progress.aborted = True
        progress.unit_errors += 1
        progress.errors.append(f"Credential retrieval failed: {exc}")
        logger.error(
            "Aborting %s sync: %s",
            entity_type,
            exc,
            extra={"entity_type": entity_type, "status": "error"},
        )
    except StorageError as exc:
        progress.aborted = True
        progress.unit_errors += 1
        progress.errors.append(f"Storage unavailable: {exc}")
        logger.error(
            "Aborting %s sync: %s",
            entity_type,
            exc,
            extra={"entity_type": entity_type, "status": "error"},
        )
    except Exception as exc:
        unexpected = exc
        progress.aborted = True
        progress.unit_errors += 1
        progress.errors.append(f"Unexpected failure: {describe_exception(exc)}")
        logger.exception(
            "%s sync failed unexpectedly",
            entity_type,
            extra={"entity_type": entity_type, "status": "error"},
        )

    progress.fold_units()
    if progress.timed_out:
        progress.errors.append(TIMEOUT_MESSAGE)
        if progress.processed == 0:
            progress.aborted = True

    success = (
        not progress.aborted
        and not progress.timed_out
        and _within_failure_budget(
            progress.units_failed,
            progress.units_attempted,
            services.settings.sync.max_failure_ratio,
        )
    )
    duration_ms = int((time.perf_counter() - started) * 1000)
    await _record_outcome(
        services,
        entity_type,
        execution_id,
        progress,
        success=success,
        duration_ms=duration_ms,
        frequency_minutes=frequency_minutes,
        correlation_id=correlation_id,
    )
    if unexpected is not None:
        raise unexpected

    return SyncRunResult(
        entity_type=entity_type,
        success=success,
        processed=progress.processed,
        inserts_count=progress.inserts,
        updates_count=progress.updates,
        errors_count=progress.errors_count,
        skipped_count=progress.skipped,
        duration=duration_ms,
        errors=list(progress.errors),
        timed_out=progress.timed_out,
        aborted=progress.aborted,
        correlation_id=correlation_id,
        details=list(progress.details),
    )


async def _record_outcome(
    services: SyncServices,
    entity_type: str,
    execution_id: int | None,
    progress: _RunProgress,
    *,
    success: bool,
    duration_ms: int,
    frequency_minutes: int,
    correlation_id: str,
) -> None:
    store = services.store
    completed_at = services.clock()
    error_message = "; ".join(progress.errors[:5]) or None

    try:
        if execution_id is not None:
            await asyncio.to_thread(
                store.finish_execution,
                execution_id,
                completed_at=completed_at,
                success=success,
                records_processed=progress.processed,
                duration_ms=duration_ms,
                memory_mb=_peak_memory_mb(),
                error_message=error_message,
            )
        await asyncio.to_thread(
            store.update_sync_status,
            entity_type,
            run_at=completed_at,
            success=success,
            duration_seconds=duration_ms / 1000.0,
            frequency_minutes=frequency_minutes,
            error_message=error_message,
        )
    except StorageError as exc:
        logger.error(
            "Could not record %s sync outcome: %s",
            entity_type,
            exc,
            extra={"entity_type": entity_type, "status": "error"},
        )

    if success and progress.errors_count == 0:
        status = "success"
    elif success or progress.processed:
        status = "partial"
    else:
        status = "error"

    record_sync_run(entity_type, status)
    observe_run_duration(entity_type, duration_ms / 1000.0)

    governor = services.governor
    governor.cleanup()
    bottlenecks = governor.detect_bottlenecks()
    if bottlenecks.has_bottlenecks:
        logger.warning(
            "Performance bottlenecks detected: %s",
            "; ".join(bottlenecks.issues),
            extra={"entity_type": entity_type, "status": "degraded"},
        )

    log_sync_attempt(
        logger,
        entity_type,
        duration_ms,
        status,
        correlation_id=correlation_id,
        processed=progress.processed,
        inserts=progress.inserts,
        updates=progress.updates,
        errors=progress.errors_count,
        skipped=progress.skipped,
    )


# Tournament sync


async def _sync_tournament_list(services: SyncServices) -> _TournamentListOutcome:
    """Fetch, parse and upsert the full tournament list with a client of its own.

    The unit is self-contained so the dead-letter queue can replay it later.
    """

    synchronizer = services.tournament_sync

    await _acquire_rate_limit(services, TOURNAMENT_LIST_REQUEST)
    async with services.open_client() as client:
        with trace_span("sync.fetch", entity_type=TOURNAMENT_ENTITY):
            raw = await client.fetch_tournament_list()

    with trace_span("sync.parse", entity_type=TOURNAMENT_ENTITY) as span:
        records = synchronizer.parse_external_payload(raw)
        skipped = synchronizer.last_parse_report.skipped
        span.metadata["records"] = len(records)

    dropped = BatchResult()
    rows = synchronizer.normalize_records(records, dropped)
    with trace_span("sync.persist", entity_type=TOURNAMENT_ENTITY) as span:
        batch = await asyncio.to_thread(
            synchronizer.process_batch, rows, services.settings.sync.tournament_batch_size
        )
        span.metadata["records"] = batch.processed
    if rows and batch.processed == 0 and batch.last_error is not None:
        raise batch.last_error
    batch.merge(dropped)

    return _TournamentListOutcome(parsed=len(records), skipped=skipped, rows=rows, batch=batch)


async def _sync_tournaments(services: SyncServices, progress: _RunProgress) -> None:
    synchronizer = services.tournament_sync
    sync_settings = services.settings.sync

    services.load_credentials()
    try:
        outcome = await services.executor.execute(
            lambda: _sync_tournament_list(services),
            name=f"{TOURNAMENT_ENTITY}:fetch_list",
        )
    except (VisSyncError, httpx.HTTPError) as exc:
        progress.aborted = True
        progress.units_attempted = 1
        progress.units_failed = 1
        progress.unit_errors += 1
        if isinstance(exc, PayloadParseError):
            label = "Unparseable tournament list"
        elif isinstance(exc, StorageError):
            label = "Tournament list could not be stored"
        else:
            label = "Tournament list fetch failed"
        progress.errors.append(f"{label}: {describe_exception(exc)}")
        return

    batch = outcome.batch
    progress.skipped += outcome.skipped
    progress.absorb(batch)
    progress.units_attempted = batch.processed + batch.errors
    progress.units_failed = batch.errors

    detail: dict[str, Any] = {
        "request": TOURNAMENT_LIST_REQUEST,
        "parsed": outcome.parsed,
        "cache": services.cache.statistics(outcome.rows),
    }
    if sync_settings.cleanup_stale:
        try:
            detail["staleRemoved"] = await asyncio.to_thread(
                synchronizer.cleanup_stale, timedelta(days=sync_settings.stale_after_days)
            )
        except StorageError as exc:
            progress.errors.append(f"Stale cleanup failed: {exc}")
    progress.details.append(detail)


async def run_tournament_sync(services: SyncServices) -> SyncRunResult:
    """Fetch the full tournament list and upsert it."""

    return await _run(
        services,
        TOURNAMENT_ENTITY,
        _sync_tournaments,
        frequency_minutes=TOURNAMENT_SYNC_FREQUENCY_MINUTES,
    )


# Match sync


async def _sync_tournament_matches(
    services: SyncServices,
    candidate: SyncCandidate,
) -> _MatchUnitOutcome:
    """Sync one tournament's matches; replayable on its own from the dead-letter queue."""

    synchronizer = services.match_sync
    governor = services.governor
    cache = services.cache
    tournament_no = candidate.no

    await _acquire_rate_limit(services, MATCH_LIST_REQUEST)
    token = governor.start_operation("match_sync")
    try:
        async with services.open_client() as client:
            with trace_span("sync.fetch", tournament_no=tournament_no):
                raw = await client.fetch_match_list(tournament_no)
        with trace_span("sync.parse", tournament_no=tournament_no) as span:
            records = synchronizer.parse_external_payload(raw, tournament_no=tournament_no)
            skipped = synchronizer.last_parse_report.skipped
            span.metadata["records"] = len(records)

        dropped = BatchResult()
        rows = synchronizer.normalize_records(records, dropped)
        keys = [str(row.no) for row in rows]  # type: ignore[attr-defined]
        with trace_span("sync.persist", tournament_no=tournament_no) as span:
            previous = await asyncio.to_thread(synchronizer.snapshot, keys)
            batch = await asyncio.to_thread(
                synchronizer.process_batch, rows, services.settings.sync.match_batch_size
            )
            span.metadata["records"] = batch.processed
        if rows and batch.processed == 0 and batch.last_error is not None:
            raise batch.last_error
        batch.merge(dropped)

        current = {str(row.no): row.model_dump() for row in rows}  # type: ignore[attr-defined]
        triggers = [
            trigger
            for trigger in cache.invalidation_triggers(previous, current)
            if cache.should_invalidate(trigger)
        ]
        ttl = cache.batch_ttl(rows)
        await asyncio.to_thread(services.store.mark_matches_synced, tournament_no, services.clock())
    except BaseException:
        governor.end_operation(token, success=False)
        raise

    governor.end_operation(token, success=True, records=batch.processed)

    if triggers:
        logger.info(
            "Invalidating %s after %d significant status changes",
            cache.cache_key(MATCH_CACHE_NAMESPACE, tournament_no),
            len(triggers),
            extra={"tournament_no": tournament_no, "entity_type": MATCH_ENTITY},
        )

    detail = {
        "tournamentNo": tournament_no,
        "matches": batch.processed,
        "inserts": batch.inserts,
        "updates": batch.updates,
        "errors": batch.errors,
        "skipped": skipped,
        "cacheKey": cache.cache_key(MATCH_CACHE_NAMESPACE, tournament_no),
        "cacheTtlSeconds": int(ttl.total_seconds()),
        "invalidations": [trigger.to_dict() for trigger in triggers],
    }
    return _MatchUnitOutcome(batch=batch, skipped=skipped, detail=detail)


async def _sync_matches(services: SyncServices, progress: _RunProgress) -> None:
    synchronizer = services.match_sync
    sync_settings = services.settings.sync

    candidates = await asyncio.to_thread(
        synchronizer.discover_candidates,
        frequency=timedelta(minutes=sync_settings.frequency_minutes),
        lookahead_days=sync_settings.lookahead_days,
    )
    if not candidates:
        logger.info("No tournaments due for match sync", extra={"entity_type": MATCH_ENTITY})
        return

    services.load_credentials()
    prioritized = [entry.item for entry in services.governor.prioritize_tournaments(candidates)]
    concurrency = services.governor.optimal_batch_size(
        sync_settings.concurrency_limit, max_size=sync_settings.concurrency_limit
    )
    progress.units = ForEachResult()

    async def _one(candidate: SyncCandidate) -> _MatchUnitOutcome:
        return await _sync_tournament_matches(services, candidate)

    await services.executor.execute_for_each(
        prioritized,
        _one,
        f"{MATCH_ENTITY}:sync_tournament",
        key=lambda candidate: candidate.no,
        concurrency=concurrency,
        into=progress.units,
    )

    logger.info(
        "Match sync covered %d tournaments with concurrency %d",
        len(prioritized),
        concurrency,
        extra={"entity_type": MATCH_ENTITY},
    )


async def run_match_sync(services: SyncServices) -> SyncRunResult:
    """Sync the match schedule of every tournament that is due."""

    return await _run(
        services,
        MATCH_ENTITY,
        _sync_matches,
        frequency_minutes=services.settings.sync.frequency_minutes,
    )


# Live scores


def _score_changed(row: BaseModel, stored: dict[str, Any]) -> bool:
    return any(getattr(row, name) != stored.get(name) for name in LIVE_SCORE_FIELDS)


async def _sync_live_scores_for(
    services: SyncServices,
    candidate: SyncCandidate,
) -> _MatchUnitOutcome:
    """Rewrite the running matches of one tournament whose score or status moved."""

    synchronizer = services.match_sync
    governor = services.governor
    tournament_no = candidate.no

    stored = await asyncio.to_thread(services.store.live_match_snapshot, tournament_no)
    if not stored:
        detail = {"tournamentNo": tournament_no, "liveMatches": 0}
        return _MatchUnitOutcome(batch=BatchResult(), skipped=0, detail=detail)

    await _acquire_rate_limit(services, MATCH_LIST_REQUEST)
    token = governor.start_operation("live_score_sync")
    try:
        async with services.open_client() as client:
            with trace_span("sync.fetch", tournament_no=tournament_no):
                raw = await client.fetch_match_list(tournament_no)
        records = [
            record
            for record in synchronizer.parse_external_payload(raw, tournament_no=tournament_no)
            if str(record.no).strip() in stored  # type: ignore[attr-defined]
        ]

        dropped = BatchResult()
        rows = synchronizer.normalize_records(records, dropped)
        changed = [
            row
            for row in rows
            if _score_changed(row, stored[str(row.no)])  # type: ignore[attr-defined]
        ]
        batch = BatchResult()
        if changed:
            with trace_span("sync.persist", tournament_no=tournament_no) as span:
                batch = await asyncio.to_thread(
                    synchronizer.process_batch, changed, services.settings.sync.match_batch_size
                )
                span.metadata["records"] = batch.processed
            if batch.processed == 0 and batch.last_error is not None:
                raise batch.last_error
        batch.merge(dropped)
    except BaseException:
        governor.end_operation(token, success=False)
        raise

    governor.end_operation(token, success=True, records=batch.processed)

    seen = {str(row.no) for row in rows}  # type: ignore[attr-defined]
    detail = {
        "tournamentNo": tournament_no,
        "liveMatches": len(stored),
        "updated": batch.processed,
        "unchanged": len(rows) - len(changed),
        "missing": sorted(set(stored) - seen - set(dropped.failed_keys)),
    }
    return _MatchUnitOutcome(batch=batch, skipped=0, detail=detail)


async def _sync_live_scores(services: SyncServices, progress: _RunProgress) -> None:
    sync_settings = services.settings.sync
    today = services.clock().date()

    candidates = [
        candidate
        for candidate in await asyncio.to_thread(services.store.find_sync_candidates, today, today)
        if candidate.status == SyncStatus.RUNNING.value
    ]
    if not candidates:
        logger.info("No running tournaments", extra={"entity_type": LIVE_SCORE_ENTITY})
        return

    services.load_credentials()
    prioritized = [entry.item for entry in services.governor.prioritize_tournaments(candidates)]
    concurrency = services.governor.optimal_batch_size(
        sync_settings.concurrency_limit, max_size=sync_settings.concurrency_limit
    )
    progress.units = ForEachResult()

    async def _one(candidate: SyncCandidate) -> _MatchUnitOutcome:
        return await _sync_live_scores_for(services, candidate)

    await services.executor.execute_for_each(
        prioritized,
        _one,
        f"{LIVE_SCORE_ENTITY}:sync_tournament",
        key=lambda candidate: candidate.no,
        concurrency=concurrency,
        into=progress.units,
    )


async def run_live_score_sync(services: SyncServices) -> SyncRunResult:
    """Refresh scores of matches stored as running, writing only the ones that moved."""

    interval = services.settings.sync.live_interval_seconds
    return await _run(
        services,
        LIVE_SCORE_ENTITY,
        _sync_live_scores,
        frequency_minutes=max(1, math.ceil(interval / 60)),
    )


# Alerts and dead letters


async def run_alert_evaluation(services: SyncServices) -> AlertRunSummary:
    """Seed configured rules once per process, then evaluate every active rule."""

    await services.ensure_alert_rules()
    return await services.alert_engine.process_alerts()


async def run_dead_letter_processing(
    services: SyncServices,
    *,
    max_age: timedelta = timedelta(hours=24),
    force: bool = False,
) -> dict[str, int]:
    report = await services.executor.process_dead_letter_queue(max_age=max_age, force=force)
    return report.to_dict()
