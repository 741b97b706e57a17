"""Credential providers for the federation XML API."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from ..exceptions import ConfigurationError, CredentialError
from ..utils.config import GlobalSettings, _fetch_secret_payload
from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "Credentials"})

DEFAULT_SECRET_NAME = "FIVB_API_CREDENTIALS"


@dataclass(frozen=True, slots=True)
class Credentials:
    username: str
    password: str
    signing_secret: str | None = None

    def __repr__(self) -> str:
        masked = "***" if self.signing_secret else None
        return f"Credentials(username={self.username!r}, password='***', signing_secret={masked})"


class CredentialProvider(Protocol):
    def get_credentials(self) -> Credentials: ...


def credentials_from_mapping(payload: dict[str, Any], *, source: str) -> Credentials:
    """Build credentials from a secret payload, accepting common key spellings."""

    username = payload.get("username") or payload.get("Username")
    password = payload.get("password") or payload.get("Password")
    signing_secret = (
        payload.get("signingSecret")
        or payload.get("signing_secret")
        or payload.get("jwtSecret")
        or payload.get("jwt_secret")
    )
    if not username or not password:
        raise CredentialError(f"Credentials from {source} are missing username or password")
    return Credentials(
        username=str(username),
        password=str(password),
        signing_secret=str(signing_secret) if signing_secret else None,
    )


class StaticCredentialProvider:
    """Provider returning a fixed credential set (tests, local runs)."""

    def __init__(self, credentials: Credentials) -> None:
        self._credentials = credentials

    def get_credentials(self) -> Credentials:
        return self._credentials


class EnvironmentCredentialProvider:
    """Read credentials from ``VIS_SYNC_VIS__USERNAME`` style settings."""

    def __init__(self, settings: GlobalSettings) -> None:
        self._settings = settings

    def get_credentials(self) -> Credentials:
        upstream = self._settings.vis
        return credentials_from_mapping(
            {
                "username": upstream.username,
                "password": upstream.password,
                "signing_secret": upstream.jwt_secret,
            },
            source="environment",
        )


class SecretsManagerCredentialProvider:
    """Look up a named JSON secret in AWS Secrets Manager.

    The secret holds ``{"username": ..., "password": ..., "jwtSecret": ...}``.
    The value is fetched once per provider instance.
    """

    def __init__(
        self,
        secret_name: str = DEFAULT_SECRET_NAME,
        *,
        region: str | None = None,
        profile: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        self._secret_name = secret_name
        self._region = region
        self._profile = profile
        self._endpoint_url = endpoint_url
        self._cached: Credentials | None = None

    def get_credentials(self) -> Credentials:
        if self._cached is not None:
            return self._cached

        try:
            payload = _fetch_secret_payload(
                secret_name=self._secret_name,
                region=self._region,
                profile=self._profile,
                endpoint_url=self._endpoint_url,
            )
        except ConfigurationError as exc:
            raise CredentialError(str(exc)) from exc

        self._cached = credentials_from_mapping(payload, source=f"secret '{self._secret_name}'")
        logger.info(
            "Loaded VIS credentials from Secrets Manager",
            extra={"status": "success"},
        )
        return self._cached


def build_credential_provider(settings: GlobalSettings) -> CredentialProvider:
    """Prefer a named secret when configured, otherwise use the environment."""

    upstream = settings.vis
    if upstream.credential_secret_name:
        return SecretsManagerCredentialProvider(
            upstream.credential_secret_name,
            region=settings.secrets_manager.region or settings.aws.region,
            profile=settings.secrets_manager.profile,
            endpoint_url=settings.secrets_manager.endpoint_url,
        )
    return EnvironmentCredentialProvider(settings)
