"""Tests for credential providers."""

from __future__ import annotations

import pytest

from vis_sync.auth import credentials as credentials_module
from vis_sync.auth.credentials import (
    Credentials,
    EnvironmentCredentialProvider,
    SecretsManagerCredentialProvider,
    build_credential_provider,
    credentials_from_mapping,
)
from vis_sync.exceptions import ConfigurationError, CredentialError
from vis_sync.utils.config import GlobalSettings, UpstreamSettings


class TestCredentialMapping:
    """Secret payload parsing."""

    def test_accepts_alternative_key_spellings(self) -> None:
        creds = credentials_from_mapping(
            {"Username": "u", "Password": "p", "jwtSecret": "s"}, source="test"
        )

        assert creds == Credentials(username="u", password="p", signing_secret="s")

    def test_missing_password_raises(self) -> None:
        with pytest.raises(CredentialError, match="missing username or password"):
            credentials_from_mapping({"username": "u"}, source="test")

    def test_repr_masks_secrets(self) -> None:
        text = repr(Credentials(username="u", password="hunter2", signing_secret="s"))

        assert "hunter2" not in text
        assert "'***'" in text


class TestProviders:
    """Environment and Secrets Manager providers."""

    def test_environment_provider(self) -> None:
        settings = GlobalSettings(vis=UpstreamSettings(username="u", password="p", jwt_secret="s"))

        creds = EnvironmentCredentialProvider(settings).get_credentials()

        assert creds.signing_secret == "s"

    def test_environment_provider_without_values(self) -> None:
        with pytest.raises(CredentialError):
            EnvironmentCredentialProvider(GlobalSettings()).get_credentials()

    def test_secrets_manager_provider_caches(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list[str] = []

        def fake_fetch(*, secret_name, region, profile=None, endpoint_url=None):
            calls.append(secret_name)
            return {"username": "u", "password": "p", "signingSecret": "s"}

        monkeypatch.setattr(credentials_module, "_fetch_secret_payload", fake_fetch)
        provider = SecretsManagerCredentialProvider("FIVB_API_CREDENTIALS", region="eu-west-1")

        assert provider.get_credentials().username == "u"
        assert provider.get_credentials().username == "u"
        assert calls == ["FIVB_API_CREDENTIALS"]

    def test_secrets_manager_failure_becomes_credential_error(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def failing_fetch(**kwargs):
            raise ConfigurationError("Unable to retrieve secret")

        monkeypatch.setattr(credentials_module, "_fetch_secret_payload", failing_fetch)

        with pytest.raises(CredentialError, match="Unable to retrieve secret"):
            SecretsManagerCredentialProvider().get_credentials()

    def test_build_provider_prefers_named_secret(self) -> None:
        named = GlobalSettings(vis=UpstreamSettings(credential_secret_name="vis/creds"))

        assert isinstance(build_credential_provider(named), SecretsManagerCredentialProvider)
        provider = build_credential_provider(GlobalSettings())
        assert isinstance(provider, EnvironmentCredentialProvider)
