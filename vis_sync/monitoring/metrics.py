"""Prometheus metrics definitions for vis_sync."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

SYNC_RUNS = Counter(
    "vis_sync_runs_total",
    "Total sync runs by entity type and outcome.",
    labelnames=("entity_type", "outcome"),
)

SYNC_RECORDS = Counter(
    "vis_sync_records_total",
    "Records handled by the synchronizer grouped by action.",
    labelnames=("entity_type", "action"),
)

SYNC_RUN_DURATION = Histogram(
    "vis_sync_run_duration_seconds",
    "Distribution of sync run durations in seconds.",
    labelnames=("entity_type",),
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600),
)

CLASSIFIED_ERRORS = Counter(
    "vis_sync_errors_total",
    "Classified failures grouped by category and severity.",
    labelnames=("category", "severity"),
)

RETRY_ATTEMPTS = Counter(
    "vis_sync_retry_attempts_total",
    "Retries scheduled by the resilience layer.",
    labelnames=("operation",),
)

DEAD_LETTER_QUEUE_SIZE = Gauge(
    "vis_sync_dead_letter_queue_size",
    "Number of FAILED entries currently held in the dead-letter queue.",
)

RATE_LIMIT_REJECTIONS = Counter(
    "vis_sync_rate_limit_rejections_total",
    "Calls rejected by the sliding-window rate limiter.",
    labelnames=("key",),
)

UPSTREAM_RESPONSE_TIME = Histogram(
    "vis_sync_upstream_response_seconds",
    "Upstream XML API response times in seconds.",
    labelnames=("request_type", "auth_method"),
    buckets=(0.1, 0.25, 0.5, 1, 2, 3, 5, 10, 30),
)

ALERTS_TRIGGERED = Counter(
    "vis_sync_alerts_triggered_total",
    "Alert rules that evaluated as triggered.",
    labelnames=("rule", "severity"),
)

NOTIFICATIONS_SENT = Counter(
    "vis_sync_notifications_total",
    "Notification attempts grouped by channel and outcome.",
    labelnames=("channel", "outcome"),
)

TRACE_SPAN_DURATION = Histogram(
    "vis_sync_trace_span_duration_seconds",
    "Distribution of trace span durations in seconds.",
    labelnames=("operation",),
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30),
)


def record_sync_run(entity_type: str, outcome: str) -> None:
    """Increment the sync run counter with the supplied labels."""

    SYNC_RUNS.labels(entity_type=entity_type, outcome=outcome).inc()


def record_sync_records(entity_type: str, *, inserts: int, updates: int, errors: int) -> None:
    """Add batch counters for a processed entity batch."""

    if inserts:
        SYNC_RECORDS.labels(entity_type=entity_type, action="insert").inc(inserts)
    if updates:
        SYNC_RECORDS.labels(entity_type=entity_type, action="update").inc(updates)
    if errors:
        SYNC_RECORDS.labels(entity_type=entity_type, action="error").inc(errors)


def observe_run_duration(entity_type: str, duration_seconds: float) -> None:
    """Record the sync run duration in seconds."""

    SYNC_RUN_DURATION.labels(entity_type=entity_type).observe(max(duration_seconds, 0.0))


def record_classified_error(category: str, severity: str) -> None:
    """Increment the classified error counter."""

    CLASSIFIED_ERRORS.labels(category=category, severity=severity).inc()


def record_retry_attempt(operation: str) -> None:
    RETRY_ATTEMPTS.labels(operation=operation).inc()


def set_dead_letter_queue_size(size: int) -> None:
    DEAD_LETTER_QUEUE_SIZE.set(max(size, 0))


def record_rate_limit_rejection(key: str) -> None:
    RATE_LIMIT_REJECTIONS.labels(key=key).inc()


def observe_upstream_response(request_type: str, auth_method: str, duration_seconds: float) -> None:
    """
    Record an upstream API response time.

    Args:
        request_type: VIS request type (e.g. GetBeachMatchList)
        auth_method: ``jwt`` or ``embedded``
        duration_seconds: Round-trip duration in seconds
    """
    UPSTREAM_RESPONSE_TIME.labels(request_type=request_type, auth_method=auth_method).observe(
        max(duration_seconds, 0.0)
    )


def record_alert_triggered(rule: str, severity: str) -> None:
    ALERTS_TRIGGERED.labels(rule=rule, severity=severity).inc()


def record_notification(channel: str, outcome: str) -> None:
    """
    Record a notification attempt.

    Args:
        channel: Notification channel (dashboard, webhook, email)
        outcome: ``sent``, ``skipped`` or ``failed``
    """
    NOTIFICATIONS_SENT.labels(channel=channel, outcome=outcome).inc()


def observe_trace_span_duration(operation: str, duration_seconds: float) -> None:
    """Record the duration of a trace span."""

    TRACE_SPAN_DURATION.labels(operation=operation).observe(max(duration_seconds, 0.0))
