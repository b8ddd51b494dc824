"""Error hierarchy shared by the watchdog subsystems.

Centralizing exception types lets the watch loops and the reconciliation
engine tell configuration problems (fail closed) apart from stream failures
(classified and retried). Submodules should raise the most specific error
available.
"""
from __future__ import annotations


class CoreError(Exception):
    """Base class for all custom exceptions in the application."""


class ConfigurationError(CoreError):
    """Raised when configuration files are missing or invalid."""


class ExchangeConfigError(ConfigurationError):
    """Raised when an exchange session cannot be built from the configuration."""

    def __init__(self, exchange_id: str, message: str) -> None:
        super().__init__(message)
        self.exchange_id = exchange_id


class UnsupportedExchangeError(ExchangeConfigError):
    """Raised for exchange identifiers unknown to ccxt.pro."""

    def __init__(self, exchange_id: str) -> None:
        super().__init__(exchange_id, f"Exchange '{exchange_id}' is not supported")


class MissingCapabilityError(ExchangeConfigError):
    """Raised when an exchange lacks a required streaming capability."""

    def __init__(self, exchange_id: str, capability: str) -> None:
        super().__init__(
            exchange_id,
            f"Exchange '{exchange_id}' does not support {capability}. Please choose a different exchange.",
        )
        self.capability = capability


class UnknownSymbolError(CoreError):
    """Raised when a symbol is absent from the session market metadata."""

    def __init__(self, exchange_id: str, symbol: str) -> None:
        super().__init__(f"Symbol {symbol} not found in {exchange_id} markets")
        self.exchange_id = exchange_id
        self.symbol = symbol


class SessionError(CoreError):
    """Raised when an operation needs an exchange session and none is active."""


class SinkError(CoreError):
    """Raised when an update cannot be delivered to the display sink."""
