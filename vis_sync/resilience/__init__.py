"""Error classification, retry and dead-letter handling."""

from .classifier import (
    ApiContext,
    AuthContext,
    Classification,
    DatabaseContext,
    ErrorCategory,
    ErrorSeverity,
    NetworkContext,
    classify_error,
    classify_exception,
    context_for_exception,
    context_from_mapping,
)
from .dead_letter import DeadLetterEntry, DeadLetterQueue, DeadLetterStatus
from .executor import ForEachResult, ResilienceExecutor, RetryPolicy

__all__ = [
    "ApiContext",
    "AuthContext",
    "Classification",
    "DatabaseContext",
    "DeadLetterEntry",
    "DeadLetterQueue",
    "DeadLetterStatus",
    "ErrorCategory",
    "ErrorSeverity",
    "ForEachResult",
    "NetworkContext",
    "ResilienceExecutor",
    "RetryPolicy",
    "classify_error",
    "classify_exception",
    "context_for_exception",
    "context_from_mapping",
]
