"""Tests for correlation IDs and trace spans."""

from __future__ import annotations

import time

import pytest

from vis_sync.monitoring.tracing import (
    TraceSpan,
    ensure_correlation_id,
    extract_correlation_id_from_headers,
    generate_correlation_id,
    get_correlation_id,
    inject_correlation_id_into_headers,
    set_correlation_id,
    trace_span,
)


class TestCorrelationID:
    """Tests for correlation ID management."""

    def test_generate_correlation_id_returns_uuid(self) -> None:
        corr_id = generate_correlation_id()
        assert len(corr_id) == 36
        assert corr_id.count("-") == 4

    def test_ensure_correlation_id_uses_provided(self) -> None:
        """A provided ID replaces whatever is in context."""
        set_correlation_id("older")
        assert ensure_correlation_id("run-123") == "run-123"
        assert get_correlation_id() == "run-123"

    def test_ensure_correlation_id_keeps_existing(self) -> None:
        set_correlation_id("existing-1")
        assert ensure_correlation_id() == "existing-1"

    def test_ensure_correlation_id_generates_when_none(self) -> None:
        result = ensure_correlation_id()
        assert len(result) == 36
        assert get_correlation_id() == result


class TestHeaders:
    """Header extraction and injection."""

    @pytest.mark.parametrize(
        "headers",
        [
            {"X-Correlation-ID": "abc"},
            {"x-correlation-id": "abc"},
            {"X-Request-ID": "abc"},
        ],
    )
    def test_extract(self, headers: dict[str, str]) -> None:
        assert extract_correlation_id_from_headers(headers) == "abc"

    def test_extract_returns_none_when_absent(self) -> None:
        assert extract_correlation_id_from_headers({"Content-Type": "application/xml"}) is None

    def test_inject_does_not_mutate(self) -> None:
        headers = {"Content-Type": "application/xml"}
        result = inject_correlation_id_into_headers(headers, "inject-123")
        assert result == {"Content-Type": "application/xml", "X-Correlation-ID": "inject-123"}
        assert "X-Correlation-ID" not in headers

    def test_inject_uses_context(self) -> None:
        set_correlation_id("context-789")
        assert inject_correlation_id_into_headers({})["X-Correlation-ID"] == "context-789"


class TestTraceSpan:
    """Span timing."""

    def test_finish_is_idempotent(self) -> None:
        span = TraceSpan(
            span_id="s", correlation_id="c", operation="sync.fetch", start_time=time.time() - 0.2
        )
        span.finish()
        first_end = span.end_time
        span.finish()

        assert span.end_time == first_end
        assert span.duration_ms is not None
        assert span.duration_ms >= 200

    def test_context_manager_records_metadata(self) -> None:
        set_correlation_id("run-1")
        with trace_span("sync.persist", tournament_no="101") as span:
            span.metadata["records"] = 12
            assert span.end_time is None

        assert span.correlation_id == "run-1"
        assert span.metadata == {"tournament_no": "101", "records": 12}
        assert span.duration_ms is not None

    def test_span_finishes_on_exception(self) -> None:
        with pytest.raises(ValueError):
            with trace_span("sync.parse") as span:
                raise ValueError("bad payload")

        assert span.end_time is not None
