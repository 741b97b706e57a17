"""HTTP client for the federation VIS XML endpoint."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import httpx

from ..auth.authenticator import DEFAULT_BASE_URL, Authenticator, build_request
from ..exceptions import AuthenticationError, UpstreamError
from ..monitoring.metrics import observe_upstream_response
from ..monitoring.tracing import inject_correlation_id_into_headers
from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "VisClient"})

TOURNAMENT_LIST_REQUEST = "GetBeachTournamentList"
MATCH_LIST_REQUEST = "GetBeachMatchList"

_REJECTED_STATUSES = frozenset({401, 403})

ResponseObserver = Callable[[float], None]


class VisApiClient:
    """Send XML requests, preferring bearer auth and falling back to embedded credentials."""

    def __init__(
        self,
        authenticator: Authenticator,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        response_observer: ResponseObserver | None = None,
    ) -> None:
        self._authenticator = authenticator
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport
        self._response_observer = response_observer
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> VisApiClient:
        self._ensure_client()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    def _open_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("VisApiClient is closed; use it as an async context manager")
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(
        self, request_type: str, body: str, headers: dict[str, str], method: str
    ) -> httpx.Response:
        client = self._open_client()
        started = time.perf_counter()
        response = await client.post(
            self._base_url,
            content=body.encode("utf-8"),
            headers=inject_correlation_id_into_headers(
                {"Content-Type": "application/xml", **headers}
            ),
        )
        elapsed = time.perf_counter() - started
        observe_upstream_response(request_type, method, elapsed)
        if self._response_observer is not None:
            self._response_observer(elapsed * 1000.0)
        return response

    async def fetch(self, request_type: str, params: dict[str, Any] | None = None) -> str:
        """Return the raw XML body for a VIS request.

        Raises:
            UpstreamError: If the embedded-credential fallback also fails.
            httpx.HTTPError: On transport failures (classified as network errors upstream).
        """

        try:
            token = self._authenticator.get_token()
        except AuthenticationError as exc:
            logger.debug("Bearer token unavailable, using embedded credentials: %s", exc)
            token = None

        if token is not None:
            response = await self._post(
                request_type,
                build_request(request_type, params),
                {"Authorization": f"Bearer {token}"},
                "jwt",
            )
            if response.is_success:
                return response.text
            logger.warning(
                "Bearer request rejected with HTTP %s, retrying with embedded credentials",
                response.status_code,
                extra={"status": "fallback"},
            )
            if response.status_code in _REJECTED_STATUSES:
                self._authenticator.clear_cache()

        response = await self._post(
            request_type,
            self._authenticator.build_embedded_credential_request(request_type, params),
            {},
            "embedded",
        )
        if not response.is_success:
            raise UpstreamError(
                f"API request failed: {response.status_code} {response.reason_phrase}".strip(),
                status_code=response.status_code,
                request_type=request_type,
                response_text=response.text,
            )
        return response.text

    async def fetch_tournament_list(self, **filters: Any) -> str:
        return await self.fetch(TOURNAMENT_LIST_REQUEST, filters or None)

    async def fetch_match_list(self, tournament_no: str | int) -> str:
        return await self.fetch(MATCH_LIST_REQUEST, {"TournamentNo": str(tournament_no)})
