"""Credential retrieval and upstream authentication."""

from .authenticator import Authenticator, AuthResult, build_request
from .credentials import (
    CredentialProvider,
    Credentials,
    EnvironmentCredentialProvider,
    SecretsManagerCredentialProvider,
    StaticCredentialProvider,
    build_credential_provider,
)

__all__ = [
    "AuthResult",
    "Authenticator",
    "CredentialProvider",
    "Credentials",
    "EnvironmentCredentialProvider",
    "SecretsManagerCredentialProvider",
    "StaticCredentialProvider",
    "build_credential_provider",
    "build_request",
]
