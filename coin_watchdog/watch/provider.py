"""Explicitly owned provider tying the watchers together.

:class:`WatchProvider` is constructed once by the entry point and passed to
whoever needs it (Telegram commands, the config poller). It owns the
subscription manager, the position watcher and the reconciliation engine, and
is the single writer of the watch-entry set and the session reference.

Control-plane messages use the display's command names::

    {"command": "addCoin", "symbol": "BTC/USDT"}
    {"command": "removeCoin", "symbol": "BTC/USDT"}
    {"command": "searchCoins", "query": "btc"}
"""
from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

from coin_watchdog.config.models import BackoffConfig, WatchConfig
from coin_watchdog.core.errors import ConfigurationError, SinkError
from coin_watchdog.exchange.models import Position, SearchResult, Ticker
from coin_watchdog.exchange.session import ExchangeSession, SessionFactory
from coin_watchdog.interfaces.sink import Notifier, UpdateSink

from .cancellation import Clock, SystemClock
from .positions import PositionWatcher
from .reconciliation import ReconciliationEngine, ReconciliationResult
from .subscriptions import SubscriptionManager

LOGGER = logging.getLogger(__name__)


class WatchlistStore(Protocol):
    """Persistence for watch-list edits (see ``config.loader.SettingsStore``)."""

    def add_watch_symbol(self, symbol: str) -> list[str]: ...

    def remove_watch_symbol(self, symbol: str) -> list[str]: ...


class WatchProvider:
    def __init__(
        self,
        *,
        sink: UpdateSink,
        notifier: Notifier,
        backoff: BackoffConfig | None = None,
        factory: SessionFactory | None = None,
        clock: Clock | None = None,
        watchlist: WatchlistStore | None = None,
    ) -> None:
        clock = clock or SystemClock()
        self._sink = sink
        self._notifier = notifier
        self._watchlist = watchlist
        self._desired: WatchConfig | None = None
        self.subscriptions = SubscriptionManager(sink=sink, notifier=notifier, backoff=backoff, clock=clock)
        self.positions = PositionWatcher(sink=sink, notifier=notifier, backoff=backoff, clock=clock)
        self.engine = ReconciliationEngine(
            factory=factory or SessionFactory(),
            subscriptions=self.subscriptions,
            positions=self.positions,
            sink=sink,
            notifier=notifier,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def session(self) -> ExchangeSession | None:
        return self.engine.session

    @property
    def exchange_id(self) -> str | None:
        session = self.engine.session
        return session.exchange_id if session else None

    @property
    def desired(self) -> WatchConfig | None:
        return self._desired

    def prices(self) -> dict[str, Ticker]:
        return self.subscriptions.snapshot()

    def current_positions(self) -> list[Position]:
        return self.positions.positions

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    async def apply_config(self, config: WatchConfig) -> ReconciliationResult:
        """Full reconciliation against ``config``, remembered as the desired state."""

        self._desired = config
        return await self.engine.reconcile(config)

    async def reset(self) -> ReconciliationResult | None:
        """Drop the session and every loop, then rebuild from the desired state."""

        if self._desired is None:
            await self.engine.teardown()
            return None
        return await self.engine.rebuild(self._desired)

    async def close(self) -> None:
        await self.engine.teardown()
        await self.subscriptions.join()
        await self.positions.join()

    # ------------------------------------------------------------------
    # Control plane
    # ------------------------------------------------------------------
    async def handle_message(self, message: Mapping[str, Any]) -> None:
        command = message.get("command")
        if command == "searchCoins":
            self.search(str(message.get("query") or ""))
        elif command == "addCoin":
            await self.add_symbol(str(message.get("symbol") or ""))
        elif command == "removeCoin":
            await self.remove_symbol(str(message.get("symbol") or ""))
        else:
            LOGGER.warning("Unknown control message", extra={"command": command})

    async def add_symbol(self, symbol: str) -> bool:
        symbol = symbol.strip()
        if not symbol or symbol in self.subscriptions:
            return False
        async with self.engine.lock:
            if not self.subscriptions.add(symbol):
                return False
            if self._desired is not None and symbol not in self._desired.watch_symbols:
                self._desired = self._desired.with_watch_symbols([*self._desired.watch_symbols, symbol])
            await self._persist(symbol, added=True)
            return True

    async def remove_symbol(self, symbol: str) -> bool:
        symbol = symbol.strip()
        if not symbol:
            return False
        async with self.engine.lock:
            if self._desired is not None:
                self._desired = self._desired.with_watch_symbols(
                    [entry for entry in self._desired.watch_symbols if entry != symbol]
                )
            await self._persist(symbol, added=False)
            return self.subscriptions.remove(symbol)

    def search(self, query: str) -> list[SearchResult]:
        session = self.engine.session
        results = session.search(query) if session is not None and query else []
        try:
            self._sink.search_results(results)
        except SinkError as exc:
            LOGGER.warning("Failed to publish search results", extra={"error": str(exc)})
        return results

    async def _persist(self, symbol: str, *, added: bool) -> None:
        if self._watchlist is None:
            return
        try:
            if added:
                self._watchlist.add_watch_symbol(symbol)
            else:
                self._watchlist.remove_watch_symbol(symbol)
        except (ConfigurationError, FileNotFoundError, ValueError) as exc:
            LOGGER.warning("Failed to persist watch-list edit", extra={"symbol": symbol, "error": str(exc)})
            await self._notifier.warning(f"Watch-list change for {symbol} was not saved: {exc}")


__all__ = ["WatchProvider", "WatchlistStore"]
