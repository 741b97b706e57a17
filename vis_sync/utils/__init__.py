"""Utilities package initialization."""
from .config import (
    GlobalSettings,
    ServiceConfiguration,
    ensure_runtime_configuration,
    get_service_configuration,
    get_settings,
    load_runtime_secrets,
    load_yaml_config,
)
from .logging import log_sync_attempt, setup_logger
from .timeutils import parse_duration, utc_now

__all__ = [
    "GlobalSettings",
    "ServiceConfiguration",
    "ensure_runtime_configuration",
    "get_settings",
    "get_service_configuration",
    "load_runtime_secrets",
    "load_yaml_config",
    "log_sync_attempt",
    "parse_duration",
    "setup_logger",
    "utc_now",
]
