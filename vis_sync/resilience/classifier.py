"""Deterministic error classification for sync failures.

``classify_error`` maps an error message plus an optional typed context to a
category, a severity and a retry decision. It performs no I/O and keeps no
state, so callers can classify the same failure repeatedly and always obtain
the same answer.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

import httpx
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError

from ..exceptions import VisSyncError


class ErrorCategory(str, Enum):
    """Failure taxonomy used across the sync engine."""

    NETWORK = "NETWORK"
    AUTHENTICATION = "AUTHENTICATION"
    API_RESPONSE = "API_RESPONSE"
    DATABASE = "DATABASE"
    DATA_VALIDATION = "DATA_VALIDATION"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"


class ErrorSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True, slots=True)
class NetworkContext:
    url: str | None = None
    method: str | None = None
    timeout: bool = False
    kind: Literal["network"] = "network"


@dataclass(frozen=True, slots=True)
class AuthContext:
    method: str | None = None
    username: str | None = None
    kind: Literal["auth"] = "auth"


@dataclass(frozen=True, slots=True)
class ApiContext:
    request_type: str | None = None
    status_code: int | None = None
    response_text: str | None = None
    transient: bool | None = None
    kind: Literal["api"] = "api"


@dataclass(frozen=True, slots=True)
class DatabaseContext:
    operation: str | None = None
    table: str | None = None
    transient: bool | None = None
    kind: Literal["database"] = "database"


ErrorContext = NetworkContext | AuthContext | ApiContext | DatabaseContext


@dataclass(frozen=True, slots=True)
class Classification:
    """Outcome of classifying a single failure."""

    category: ErrorCategory
    severity: ErrorSeverity
    retryable: bool
    recovery_suggestion: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "recovery_suggestion": self.recovery_suggestion,
        }


# Keyword tables, checked in this order. The first hit decides the category.
_KEYWORDS: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (
        ErrorCategory.NETWORK,
        (
            "fetch failed",
            "network",
            "connection",
            "timeout",
            "etimedout",
            "enotfound",
            "econnreset",
            "econnrefused",
            "socket",
        ),
    ),
    (
        ErrorCategory.AUTHENTICATION,
        (
            "unauthorized",
            "401",
            "authentication",
            "invalid token",
            "expired token",
            "invalid credentials",
            "access denied",
        ),
    ),
    (ErrorCategory.API_RESPONSE, ("api request failed", "http", "response", "status")),
    (
        ErrorCategory.DATABASE,
        (
            "database",
            "sql",
            "constraint",
            "relation",
            "column",
            "unique violation",
            "foreign key",
            "deadlock",
        ),
    ),
    (
        ErrorCategory.DATA_VALIDATION,
        (
            "validation",
            "invalid",
            "malformed",
            "parse error",
            "schema",
            "required field",
            "format error",
        ),
    ),
    (ErrorCategory.TIMEOUT, ("time out", "timed out", "deadline exceeded", "time limit exceeded")),
    (ErrorCategory.RATE_LIMIT, ("rate limit", "too many requests", "quota exceeded", "throttl")),
)

_STATUS_CODE_PATTERN = re.compile(r"\b([1-5]\d{2})\b")
_TRANSIENT_DATABASE_MARKERS = ("connection", "timeout", "temporary", "deadlock", "locked")
_FATAL_DATABASE_MARKERS = ("disk full", "out of memory", "corrupt")
_STRUCTURAL_VALIDATION_MARKERS = ("schema", "required field", "parse error")

_RECOVERY_SUGGESTIONS: dict[ErrorCategory, str] = {
    ErrorCategory.NETWORK: (
        "Check upstream API availability and network connectivity; "
        "the operation is retried automatically."
    ),
    ErrorCategory.AUTHENTICATION: (
        "Verify the configured VIS credentials and signing secret; "
        "retrying will not help until they are fixed."
    ),
    ErrorCategory.API_RESPONSE: (
        "Inspect the upstream response; server-side failures are retried, "
        "client errors need a request fix."
    ),
    ErrorCategory.DATABASE: (
        "Check database connectivity and constraints; transient failures are retried."
    ),
    ErrorCategory.DATA_VALIDATION: (
        "Review the upstream payload for malformed records; the affected records were skipped."
    ),
    ErrorCategory.TIMEOUT: "Reduce batch size or concurrency, or raise the processing time budget.",
    ErrorCategory.RATE_LIMIT: (
        "Back off and reduce request frequency; the rate-limit window will recover on its own."
    ),
}


def _match_keywords(message: str) -> ErrorCategory | None:
    for category, keywords in _KEYWORDS:
        if any(keyword in message for keyword in keywords):
            return category
    if _STATUS_CODE_PATTERN.search(message):
        return ErrorCategory.API_RESPONSE
    return None


def _status_from_message(message: str) -> int | None:
    match = _STATUS_CODE_PATTERN.search(message)
    return int(match.group(1)) if match else None


def _category_from_context(context: ErrorContext) -> ErrorCategory:
    match context:
        case NetworkContext():
            return ErrorCategory.NETWORK
        case AuthContext():
            return ErrorCategory.AUTHENTICATION
        case ApiContext():
            return ErrorCategory.API_RESPONSE
        case DatabaseContext():
            return ErrorCategory.DATABASE


def _default_severity(category: ErrorCategory) -> ErrorSeverity:
    if category in (ErrorCategory.AUTHENTICATION, ErrorCategory.DATABASE):
        return ErrorSeverity.HIGH
    if category in (ErrorCategory.DATA_VALIDATION, ErrorCategory.RATE_LIMIT):
        return ErrorSeverity.LOW
    return ErrorSeverity.MEDIUM


def _build(category: ErrorCategory, severity: ErrorSeverity, retryable: bool) -> Classification:
    return Classification(
        category=category,
        severity=severity,
        retryable=retryable,
        recovery_suggestion=_RECOVERY_SUGGESTIONS[category],
    )


def _classify_status(category: ErrorCategory, status_code: int) -> Classification | None:
    """Apply HTTP status overrides; ``None`` when the status says nothing definitive."""

    if status_code in (401, 403):
        return _build(ErrorCategory.AUTHENTICATION, ErrorSeverity.HIGH, False)
    if status_code == 429:
        return _build(ErrorCategory.RATE_LIMIT, ErrorSeverity.LOW, True)
    if status_code >= 500:
        if category in (ErrorCategory.AUTHENTICATION, ErrorCategory.DATA_VALIDATION):
            category = ErrorCategory.API_RESPONSE
        return _build(category, _default_severity(category), True)
    if status_code >= 400:
        if category in (ErrorCategory.NETWORK, ErrorCategory.TIMEOUT, ErrorCategory.RATE_LIMIT):
            category = ErrorCategory.API_RESPONSE
        return _build(category, _default_severity(category), False)
    return None


def classify_error(message: str, context: ErrorContext | None = None) -> Classification:
    """Classify a failure message, letting a typed context settle ambiguity.

    Args:
        message: Human readable error message (case is ignored).
        context: Optional typed context describing where the failure happened.

    Returns:
        Classification with category, severity, retry decision and a recovery hint.
    """

    lowered = (message or "").lower()
    keyword_category = _match_keywords(lowered)
    transient_api = isinstance(context, ApiContext) and context.transient is True
    if transient_api and keyword_category is ErrorCategory.DATA_VALIDATION:
        # A garbled upstream body is a response problem, not a bad record.
        keyword_category = ErrorCategory.API_RESPONSE
    category = keyword_category
    if category is None and context is not None:
        category = _category_from_context(context)
    if category is None:
        category = ErrorCategory.API_RESPONSE

    status_code: int | None = None
    if isinstance(context, ApiContext) and context.status_code is not None:
        status_code = context.status_code
    elif category is ErrorCategory.API_RESPONSE:
        status_code = _status_from_message(lowered)

    if status_code is not None:
        overridden = _classify_status(category, status_code)
        if overridden is not None:
            return overridden

    if category is ErrorCategory.AUTHENTICATION:
        return _build(category, ErrorSeverity.HIGH, False)

    if category is ErrorCategory.DATA_VALIDATION:
        severity = (
            ErrorSeverity.MEDIUM
            if any(marker in lowered for marker in _STRUCTURAL_VALIDATION_MARKERS)
            else ErrorSeverity.LOW
        )
        return _build(category, severity, False)

    if category is ErrorCategory.DATABASE:
        if any(marker in lowered for marker in _FATAL_DATABASE_MARKERS):
            return _build(category, ErrorSeverity.CRITICAL, False)
        transient = context.transient if isinstance(context, DatabaseContext) else None
        if transient is None:
            transient = any(marker in lowered for marker in _TRANSIENT_DATABASE_MARKERS)
        return _build(category, ErrorSeverity.HIGH, transient)

    if category is ErrorCategory.API_RESPONSE:
        # Without a status we cannot tell a server hiccup from a bad request,
        # unless the context already says the response was transiently broken.
        return _build(category, ErrorSeverity.MEDIUM, transient_api)

    # NETWORK, TIMEOUT and RATE_LIMIT are transient by nature.
    return _build(category, _default_severity(category), True)


def context_from_mapping(data: dict[str, Any] | None) -> ErrorContext | None:
    """Build a typed context from a loosely shaped mapping (e.g. a stored blob)."""

    if not data:
        return None

    kind = str(data.get("kind") or "").lower()
    if kind == "network" or (not kind and ("url" in data or "host" in data)):
        return NetworkContext(
            url=data.get("url") or data.get("host"),
            method=data.get("method"),
            timeout=bool(data.get("timeout", False)),
        )
    if kind == "api" or (not kind and ("status_code" in data or "status" in data)):
        raw_status = data.get("status_code", data.get("status"))
        try:
            status_code = int(raw_status) if raw_status is not None else None
        except (TypeError, ValueError):
            status_code = None
        api_transient = data.get("transient")
        return ApiContext(
            request_type=data.get("request_type"),
            status_code=status_code,
            response_text=data.get("response_text"),
            transient=bool(api_transient) if api_transient is not None else None,
        )
    if kind == "database" or (not kind and ("table" in data or "query" in data)):
        transient = data.get("transient")
        return DatabaseContext(
            operation=data.get("operation"),
            table=data.get("table"),
            transient=bool(transient) if transient is not None else None,
        )
    if kind == "auth" or (not kind and ("username" in data or "auth_method" in data)):
        return AuthContext(
            method=data.get("method") or data.get("auth_method"),
            username=data.get("username"),
        )
    return None


def context_for_exception(exc: BaseException) -> ErrorContext | None:
    """Derive the typed context carried by (or implied by) an exception."""

    if isinstance(exc, VisSyncError):
        return exc.error_context
    if isinstance(exc, httpx.HTTPStatusError):
        return ApiContext(
            request_type=None,
            status_code=exc.response.status_code,
            response_text=exc.response.text[:500] or None,
        )
    if isinstance(exc, httpx.TimeoutException):
        return NetworkContext(url=str(exc.request.url) if _has_request(exc) else None, timeout=True)
    if isinstance(exc, httpx.TransportError):
        return NetworkContext(url=str(exc.request.url) if _has_request(exc) else None)
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return NetworkContext(timeout=True)
    if isinstance(exc, OperationalError):
        return DatabaseContext(operation=None, table=None, transient=True)
    if isinstance(exc, DBAPIError):
        return DatabaseContext(transient=bool(exc.connection_invalidated))
    if isinstance(exc, SQLAlchemyError):
        return DatabaseContext()
    return None


def _has_request(exc: httpx.RequestError) -> bool:
    try:
        exc.request
    except RuntimeError:
        return False
    return True


def describe_exception(exc: BaseException) -> str:
    """Return the text used for keyword classification of an exception."""

    message = str(exc)
    return message if message else exc.__class__.__name__


def classify_exception(exc: BaseException) -> Classification:
    """Classify an exception using its message and derived context."""

    return classify_error(describe_exception(exc), context_for_exception(exc))
