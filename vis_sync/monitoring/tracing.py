"""Correlation ID propagation and lightweight trace spans for sync runs.

Every sync invocation gets a correlation ID that is attached to outbound
upstream requests and to log lines, so a single run can be followed from the
HTTP trigger through every tournament it touched.
"""

from __future__ import annotations

import contextvars
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from ..utils.logging import setup_logger
from .metrics import observe_trace_span_duration

logger = setup_logger(__name__, context={"component": "Tracing"})

_correlation_id_context: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)


@dataclass
class TraceSpan:
    """
    A single timed operation inside a run.

    Attributes:
        span_id: Unique identifier for this span
        correlation_id: Correlation ID linking related operations
        operation: Name of the operation being traced
        start_time: Timestamp when span began (seconds since epoch)
        end_time: Timestamp when span ended (optional)
        duration_ms: Duration in milliseconds (computed when span ends)
        metadata: Additional structured context
    """

    span_id: str
    correlation_id: str
    operation: str
    start_time: float
    end_time: float | None = None
    duration_ms: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def finish(self) -> None:
        """Mark the span as complete and calculate duration."""
        if self.end_time is None:
            self.end_time = time.time()
            self.duration_ms = int((self.end_time - self.start_time) * 1000)


def get_correlation_id() -> str | None:
    """Return the active correlation ID, if any."""
    return _correlation_id_context.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id_context.set(correlation_id)


def clear_correlation_id() -> None:
    """Clear the active correlation ID from the current context."""

    _correlation_id_context.set(None)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def ensure_correlation_id(provided_id: str | None = None) -> str:
    """
    Ensure a correlation ID exists, creating one if necessary.

    Args:
        provided_id: Optional correlation ID to use

    Returns:
        The provided ID, existing context ID, or newly generated ID
    """
    if provided_id:
        set_correlation_id(provided_id)
        return provided_id

    existing = get_correlation_id()
    if existing:
        return existing

    new_id = generate_correlation_id()
    set_correlation_id(new_id)
    return new_id


@contextmanager
def trace_span(operation: str, **metadata: Any) -> Iterator[TraceSpan]:
    """
    Time an operation and record its duration.

    Example:
        with trace_span("sync.persist", tournament_no="502") as span:
            span.metadata["records"] = 12
    """
    corr_id = ensure_correlation_id()
    span = TraceSpan(
        span_id=str(uuid.uuid4()),
        correlation_id=corr_id,
        operation=operation,
        start_time=time.time(),
        metadata=metadata,
    )

    try:
        yield span
    finally:
        span.finish()
        observe_trace_span_duration(operation, (span.duration_ms or 0) / 1000.0)
        logger.debug(
            "Trace span completed: %s (duration: %dms)",
            operation,
            span.duration_ms or 0,
            extra={
                "correlation_id": corr_id,
                "duration_ms": span.duration_ms,
                "span_id": span.span_id,
            },
        )


def extract_correlation_id_from_headers(headers: dict[str, str]) -> str | None:
    """Extract correlation ID from HTTP headers (case-insensitive)."""

    header_candidates = ["x-correlation-id", "x-request-id", "correlation-id"]

    headers_lower = {k.lower(): v for k, v in headers.items()}
    for candidate in header_candidates:
        if candidate in headers_lower:
            return headers_lower[candidate]

    return None


def inject_correlation_id_into_headers(
    headers: dict[str, str],
    correlation_id: str | None = None,
) -> dict[str, str]:
    """Return a copy of ``headers`` carrying ``X-Correlation-ID``."""

    corr_id = correlation_id or ensure_correlation_id()
    result = dict(headers)
    result["X-Correlation-ID"] = corr_id
    return result


__all__ = [
    "TraceSpan",
    "clear_correlation_id",
    "ensure_correlation_id",
    "extract_correlation_id_from_headers",
    "generate_correlation_id",
    "get_correlation_id",
    "inject_correlation_id_into_headers",
    "set_correlation_id",
    "trace_span",
]
