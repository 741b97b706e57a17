"""Custom exceptions for vis_sync."""

from __future__ import annotations

from typing import TYPE_CHECKING


if TYPE_CHECKING:  # pragma: no cover - type checking only
    from vis_sync.resilience.classifier import ApiContext, DatabaseContext, ErrorContext


class VisSyncError(Exception):
    """Base exception for all vis_sync errors."""

    #: Typed classification context attached by subclasses that know their origin.
    error_context: ErrorContext | None = None


class ConfigurationError(VisSyncError):
    """Raised when configuration is invalid or missing."""

    pass


class CredentialError(VisSyncError):
    """Raised when upstream credentials cannot be retrieved.

    Credential failures abort the current run; the next scheduled run starts over.
    """

    pass


class AuthenticationError(VisSyncError):
    """Raised when a bearer token cannot be produced or upstream rejects our identity."""

    def __init__(self, message: str, *, method: str = "jwt") -> None:
        super().__init__(message)
        self.method = method

    @property
    def error_context(self) -> ErrorContext:  # type: ignore[override]
        from vis_sync.resilience.classifier import AuthContext

        return AuthContext(method=self.method)


class UpstreamError(VisSyncError):
    """Raised when the upstream XML API answers with a non-success status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        request_type: str | None = None,
        response_text: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.request_type = request_type
        self.response_text = response_text

    @property
    def error_context(self) -> ApiContext:  # type: ignore[override]
        from vis_sync.resilience.classifier import ApiContext

        return ApiContext(
            request_type=self.request_type,
            status_code=self.status_code,
            response_text=(self.response_text or "")[:500] or None,
        )


class PayloadParseError(VisSyncError):
    """Raised when an upstream payload is structurally unparseable.

    Truncated or garbled bodies are usually an upstream hiccup, so the
    attached context marks the failure as transient and the executor retries it.
    """

    def __init__(self, message: str, *, request_type: str | None = None) -> None:
        super().__init__(message)
        self.request_type = request_type

    @property
    def error_context(self) -> ApiContext:  # type: ignore[override]
        from vis_sync.resilience.classifier import ApiContext

        return ApiContext(request_type=self.request_type, transient=True)


class StorageError(VisSyncError):
    """Raised when a storage operation fails."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        table: str | None = None,
        transient: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.table = table
        self.transient = transient

    @property
    def error_context(self) -> DatabaseContext:  # type: ignore[override]
        from vis_sync.resilience.classifier import DatabaseContext

        return DatabaseContext(operation=self.operation, table=self.table, transient=self.transient)


