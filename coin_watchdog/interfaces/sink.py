"""Boundary towards the display layer.

The watchers publish through :class:`UpdateSink` (data plane) and report
user-visible conditions through :class:`Notifier`. Both are protocols so the
renderer can live anywhere; :class:`JsonLinesSink` is the default transport
and writes one ``{"command": ..., "data": ...}`` message per line, using the
command names the display expects (``updatePrices``, ``updatePositions``,
``searchResults``, ``updateExchangeId``).
"""
from __future__ import annotations

import json
import logging
import sys
import threading
from typing import Any, Mapping, Protocol, Sequence, TextIO

from coin_watchdog.core.errors import SinkError
from coin_watchdog.exchange.models import Position, SearchResult, Ticker

LOGGER = logging.getLogger(__name__)


class UpdateSink(Protocol):
    """Receives full snapshots; implementations must not block the event loop."""

    def update_prices(self, tickers: Mapping[str, Ticker]) -> None: ...

    def update_positions(self, positions: Sequence[Position]) -> None: ...

    def search_results(self, results: Sequence[SearchResult]) -> None: ...

    def update_exchange_id(self, exchange_id: str) -> None: ...


class Notifier(Protocol):
    """User-visible notifications (info toast, warning, error)."""

    async def info(self, message: str) -> None: ...

    async def warning(self, message: str) -> None: ...

    async def error(self, message: str) -> None: ...


class JsonLinesSink:
    """Serialize sink calls as JSON lines onto a text stream."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout
        self._lock = threading.Lock()

    def update_prices(self, tickers: Mapping[str, Ticker]) -> None:
        self._emit("updatePrices", {symbol: ticker.to_dict() for symbol, ticker in tickers.items()})

    def update_positions(self, positions: Sequence[Position]) -> None:
        self._emit("updatePositions", [position.to_dict() for position in positions])

    def search_results(self, results: Sequence[SearchResult]) -> None:
        self._emit("searchResults", [result.to_dict() for result in results])

    def update_exchange_id(self, exchange_id: str) -> None:
        self._emit("updateExchangeId", exchange_id)

    def _emit(self, command: str, data: Any) -> None:
        line = json.dumps({"command": command, "data": data}, ensure_ascii=False, default=str)
        try:
            with self._lock:
                self._stream.write(line + "\n")
                self._stream.flush()
        except (OSError, ValueError) as exc:
            raise SinkError(f"Failed to write {command} message: {exc}") from exc


class LoggingNotifier:
    """Notifier for headless runs: every notification becomes a log record."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    async def info(self, message: str) -> None:
        self._logger.info(message, extra={"notification": "info"})

    async def warning(self, message: str) -> None:
        self._logger.warning(message, extra={"notification": "warning"})

    async def error(self, message: str) -> None:
        self._logger.error(message, extra={"notification": "error"})


__all__ = ["JsonLinesSink", "LoggingNotifier", "Notifier", "UpdateSink"]
