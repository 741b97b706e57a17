"""Bearer-token and embedded-credential authentication for the VIS XML API."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock
from typing import Any
from xml.sax.saxutils import escape

import httpx
import jwt
from cachetools import TTLCache

from ..exceptions import AuthenticationError
from ..utils.logging import setup_logger
from ..utils.timeutils import Clock, utc_now
from .credentials import Credentials

logger = setup_logger(__name__, context={"component": "Authenticator"})

DEFAULT_BASE_URL = "https://www.fivb.org/Vis2009/XmlRequest.asmx"
TOKEN_AUDIENCE = "fivb-vis-api"
TOKEN_ISSUER = "tournament-sync-service"
TOKEN_LIFETIME_SECONDS = 3600

_TOKEN_SLOT = "token"
_CHECK_REQUEST_TYPE = "GetBeachTournamentList"
_CHECK_PARAMS = {"MaxResults": "1"}
_CHECK_MARKERS = ("<Tournament", "<Tournaments")


def _attr(value: Any) -> str:
    return escape(str(value), {'"': "&quot;"})


def build_request(request_type: str, params: dict[str, Any] | None = None) -> str:
    """Return a single ``<Request Type=".." k="v" />`` envelope."""

    attributes = [f'Type="{_attr(request_type)}"']
    for key, value in (params or {}).items():
        if value is None:
            continue
        attributes.append(f'{key}="{_attr(value)}"')
    return f"<Request {' '.join(attributes)} />"


@dataclass(slots=True)
class AuthResult:
    success: bool
    method: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "method": self.method, "error": self.error}


@dataclass(slots=True)
class _CachedToken:
    token: str
    expires_at: datetime


class Authenticator:
    """Issue and cache signed bearer tokens; build embedded-credential envelopes.

    The token cache holds a single slot and is guarded by a lock, so one
    instance can be shared by the concurrent tasks of a run.
    """

    def __init__(
        self,
        credentials: Credentials,
        *,
        clock: Clock = utc_now,
        token_lifetime: int = TOKEN_LIFETIME_SECONDS,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials
        self._clock = clock
        self._token_lifetime = token_lifetime
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport
        self._cache: TTLCache[str, _CachedToken] = TTLCache(
            maxsize=1,
            ttl=token_lifetime,
            timer=lambda: self._clock().timestamp(),
        )
        self._lock = Lock()

    @property
    def username(self) -> str:
        return self._credentials.username

    def get_token(self) -> str:
        """Return a valid bearer token, signing a new one when the cached one expired.

        Raises:
            AuthenticationError: If no signing secret is configured.
        """

        with self._lock:
            cached = self._cache.get(_TOKEN_SLOT)
            if cached is not None:
                return cached.token

            secret = self._credentials.signing_secret
            if not secret:
                raise AuthenticationError("No JWT signing secret configured", method="jwt")

            issued_at = self._clock()
            expires_at = issued_at + timedelta(seconds=self._token_lifetime)
            payload = {
                "sub": self._credentials.username,
                "aud": TOKEN_AUDIENCE,
                "iss": TOKEN_ISSUER,
                "iat": int(issued_at.timestamp()),
                "exp": int(expires_at.timestamp()),
            }
            token = jwt.encode(payload, secret, algorithm="HS256")
            self._cache[_TOKEN_SLOT] = _CachedToken(token=token, expires_at=expires_at)

        logger.debug("Issued new bearer token", extra={"status": "success"})
        return token

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
        logger.info("Authentication cache cleared")

    def auth_status(self) -> dict[str, Any]:
        """Describe credential availability and the cached token slot."""

        with self._lock:
            cached = self._cache.get(_TOKEN_SLOT)
        return {
            "username": self._credentials.username,
            "has_credentials": bool(self._credentials.username and self._credentials.password),
            "has_signing_secret": bool(self._credentials.signing_secret),
            "has_cached_token": cached is not None,
            "token_expires_at": cached.expires_at.isoformat() if cached else None,
        }

    def build_embedded_credential_request(
        self,
        request_type: str,
        params: dict[str, Any] | None = None,
    ) -> str:
        """Wrap a request in ``<Requests Username=.. Password=..>`` for credential-in-body auth."""

        return (
            f'<Requests Username="{_attr(self._credentials.username)}" '
            f'Password="{_attr(self._credentials.password)}">'
            f"{build_request(request_type, params)}"
            "</Requests>"
        )

    async def test_authentication(self, client: httpx.AsyncClient | None = None) -> AuthResult:
        """Check the upstream API with bearer auth first, then embedded credentials."""

        if client is None:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as owned:
                return await self._check(owned)
        return await self._check(client)

    async def _check(self, client: httpx.AsyncClient) -> AuthResult:
        errors: list[str] = []

        try:
            token = self.get_token()
        except AuthenticationError as exc:
            errors.append(f"jwt: {exc}")
        else:
            outcome = await self._check_once(
                client,
                build_request(_CHECK_REQUEST_TYPE, _CHECK_PARAMS),
                {"Authorization": f"Bearer {token}"},
            )
            if outcome is None:
                logger.info("JWT authentication test succeeded", extra={"status": "success"})
                return AuthResult(success=True, method="jwt")
            errors.append(f"jwt: {outcome}")

        outcome = await self._check_once(
            client,
            self.build_embedded_credential_request(_CHECK_REQUEST_TYPE, _CHECK_PARAMS),
            {},
        )
        if outcome is None:
            logger.info(
                "Embedded-credential authentication test succeeded", extra={"status": "success"}
            )
            return AuthResult(success=True, method="embedded")
        errors.append(f"embedded: {outcome}")

        logger.error("All authentication methods failed", extra={"status": "error"})
        return AuthResult(success=False, error="; ".join(errors))

    async def _check_once(
        self,
        client: httpx.AsyncClient,
        body: str,
        headers: dict[str, str],
    ) -> str | None:
        """Return ``None`` on success, otherwise a short failure description."""

        try:
            response = await client.post(
                self._base_url,
                content=body.encode("utf-8"),
                headers={"Content-Type": "application/xml", **headers},
            )
        except httpx.HTTPError as exc:
            return str(exc) or exc.__class__.__name__

        if response.is_success and any(marker in response.text for marker in _CHECK_MARKERS):
            return None
        return f"HTTP {response.status_code}"
