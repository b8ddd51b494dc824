"""Configuration loading and validation package."""

from .loader import CONFIG_PATH_ENV, SettingsStore, load_app_config, resolve_config_path
from .models import (
    AppConfig,
    BackoffConfig,
    ExchangeCredentials,
    MarketsConfig,
    TelegramConfig,
    TelemetryConfig,
    WatchConfig,
)

__all__ = [
    "AppConfig",
    "BackoffConfig",
    "CONFIG_PATH_ENV",
    "ExchangeCredentials",
    "MarketsConfig",
    "SettingsStore",
    "TelegramConfig",
    "TelemetryConfig",
    "WatchConfig",
    "load_app_config",
    "resolve_config_path",
]
