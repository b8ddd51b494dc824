"""Enumerations shared across watchdog subsystems."""
from __future__ import annotations

from enum import Enum


class Side(str, Enum):
    """Direction of a position."""

    LONG = "long"
    SHORT = "short"


class MarginMode(str, Enum):
    """Margin mode reported for leveraged positions."""

    ISOLATED = "isolated"
    CROSS = "cross"


class ExchangeMode(str, Enum):
    """Account mode; ``demo`` switches the ccxt client into sandbox mode."""

    LIVE = "live"
    DEMO = "demo"


class WatchState(str, Enum):
    """Lifecycle of a single watch loop."""

    IDLE = "idle"
    STREAMING = "streaming"
    SUSPENDED = "suspended"  # waiting out a retry backoff
    STOPPED = "stopped"  # cancelled
    FAILED = "failed"  # stopped by a fatal error


class ErrorClass(str, Enum):
    """Retry policy buckets for stream and session failures."""

    FATAL_AUTH = "fatal_auth"
    FATAL_CONFIG = "fatal_config"
    TRANSIENT_BACKPRESSURE = "transient_backpressure"
    TRANSIENT_NETWORK = "transient_network"
    TRANSIENT_UNKNOWN = "transient_unknown"

    @property
    def fatal(self) -> bool:
        return self in (ErrorClass.FATAL_AUTH, ErrorClass.FATAL_CONFIG)


class StreamKind(str, Enum):
    """Which watcher a backoff interval applies to."""

    TICKER = "ticker"
    POSITIONS = "positions"
