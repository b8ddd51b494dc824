"""Typed configuration models for the watchdog.

The config subsystem relies on pydantic to validate the YAML settings file and
to provide strongly-typed objects to the rest of the runtime. ``WatchConfig`` is
also the desired state consumed by the reconciliation engine, so value equality
of these models decides whether a configuration change needs any work.
"""
from __future__ import annotations

import hashlib
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, field_validator

from coin_watchdog.core.enums import ErrorClass, ExchangeMode, StreamKind


class ExchangeCredentials(BaseModel):
    """API key/secret (and optional passphrase) for the configured exchange."""

    api_key: str = Field(..., min_length=1)
    secret: str = Field(..., min_length=1)
    passphrase: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    def fingerprint(self, exchange_id: str) -> str:
        """Digest identifying these credentials without exposing them in logs."""

        material = "\x1f".join((exchange_id, self.api_key, self.secret, self.passphrase or ""))
        return hashlib.sha256(material.encode("utf-8")).hexdigest()


class MarketsConfig(BaseModel):
    """Watch-list edited by the user (``markets.watch_symbols``)."""

    watch_symbols: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @field_validator("watch_symbols")
    @classmethod
    def _dedupe_symbols(cls, value: List[str]) -> List[str]:
        """Strip blanks and duplicates while keeping the user's order."""

        seen: dict[str, None] = {}
        for symbol in value:
            cleaned = symbol.strip()
            if cleaned:
                seen.setdefault(cleaned, None)
        return list(seen)


class BackoffConfig(BaseModel):
    """Retry intervals (seconds) per error class.

    ``ticker_retry_sec`` and ``positions_retry_sec`` cover unrecognized errors
    of the respective stream; rate-limit and network intervals are shared.
    """

    ticker_retry_sec: PositiveFloat = 3.0
    positions_retry_sec: PositiveFloat = 15.0
    rate_limit_sec: PositiveFloat = 30.0
    network_sec: PositiveFloat = 10.0

    model_config = ConfigDict(frozen=True)

    def delay_for(self, error_class: ErrorClass, stream: StreamKind) -> float:
        if error_class is ErrorClass.TRANSIENT_BACKPRESSURE:
            return self.rate_limit_sec
        if error_class is ErrorClass.TRANSIENT_NETWORK:
            return self.network_sec
        if stream is StreamKind.POSITIONS:
            return self.positions_retry_sec
        return self.ticker_retry_sec


class TelemetryConfig(BaseModel):
    """Logging switches."""

    log_level: str = Field("INFO")
    console_level: str = Field("WARNING")
    log_dir: str = Field("data/logs")


class TelegramConfig(BaseModel):
    """Telegram bot token and chat id used for notifications and commands."""

    bot_token: str = Field(..., min_length=10)
    chat_id: int


class WatchConfig(BaseModel):
    """Desired watcher state: exchange identity, credentials and watch-list."""

    exchange_id: str = Field(..., min_length=1)
    mode: ExchangeMode = ExchangeMode.LIVE
    proxy_url: Optional[str] = None
    credentials: Optional[ExchangeCredentials] = None
    markets: MarketsConfig = Field(default_factory=MarketsConfig)

    model_config = ConfigDict(frozen=True)

    @field_validator("exchange_id")
    @classmethod
    def _normalize_exchange_id(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def watch_symbols(self) -> List[str]:
        return list(self.markets.watch_symbols)

    def credentials_fingerprint(self) -> str | None:
        if self.credentials is None:
            return None
        return self.credentials.fingerprint(self.exchange_id)

    def with_watch_symbols(self, symbols: List[str]) -> "WatchConfig":
        return self.model_copy(update={"markets": MarketsConfig(watch_symbols=symbols)})


class AppConfig(WatchConfig):
    """Full settings file: the desired watcher state plus runtime knobs."""

    backoff: BackoffConfig = Field(default_factory=BackoffConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
    telegram: Optional[TelegramConfig] = None
    config_poll_interval_sec: PositiveFloat = 5.0

    def watch_config(self) -> WatchConfig:
        """Project the settings onto the fields reconciliation cares about."""

        return WatchConfig(
            exchange_id=self.exchange_id,
            mode=self.mode,
            proxy_url=self.proxy_url,
            credentials=self.credentials,
            markets=self.markets,
        )
