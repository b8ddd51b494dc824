"""Per-symbol ticker watch loops.

:class:`SubscriptionManager` owns the live set of :class:`WatchEntry` cells,
one per watched symbol. Each entry is driven by its own asyncio task through
``IDLE -> STREAMING -> (SUSPENDED -> STREAMING)* -> STOPPED | FAILED``:

* ``STREAMING`` blocks on :meth:`ExchangeSession.stream_ticker`; every ticker
  goes through :func:`should_notify` and, when accepted, replaces the entry's
  snapshot and publishes the full price map to the sink.
* Stream errors are classified. Transient ones suspend the loop for the
  configured backoff, fatal ones (bad credentials, unsupported stream) end the
  loop with one user-visible notification. A failed entry stays in the set so
  reconciliation does not restart it in a tight loop.
* Removing an entry fires its :class:`CancelToken`. The loop checks the token
  before each stream call, after the call returns or raises, and after the
  backoff wait, so an in-flight call is never aborted but its result is
  discarded.

Each entry remembers the session it was started against; loops of a replaced
session keep draining against the old one and never touch the new session.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict

from coin_watchdog.config.models import BackoffConfig
from coin_watchdog.core.enums import StreamKind, WatchState
from coin_watchdog.core.errors import SinkError, UnknownSymbolError
from coin_watchdog.exchange.errors import classify_stream_error, describe_error
from coin_watchdog.exchange.models import Ticker
from coin_watchdog.exchange.session import ExchangeSession
from coin_watchdog.interfaces.sink import Notifier, UpdateSink

from .cancellation import CancelToken, Clock, SystemClock
from .change_detector import should_notify

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class WatchEntry:
    """Mutable cell owned by exactly one watch loop."""

    symbol: str
    session: ExchangeSession
    ticker: Ticker
    token: CancelToken = field(default_factory=CancelToken)
    state: WatchState = WatchState.IDLE
    delivered: bool = False
    stream_calls: int = 0
    task: asyncio.Task | None = None

    @property
    def last_delivered(self) -> Ticker | None:
        return self.ticker if self.delivered else None


class SubscriptionManager:
    def __init__(
        self,
        *,
        sink: UpdateSink,
        notifier: Notifier,
        backoff: BackoffConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._sink = sink
        self._notifier = notifier
        self._backoff = backoff or BackoffConfig()
        self._clock = clock or SystemClock()
        self._session: ExchangeSession | None = None
        self._entries: Dict[str, WatchEntry] = {}
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Session binding
    # ------------------------------------------------------------------
    @property
    def session(self) -> ExchangeSession | None:
        return self._session

    def attach(self, session: ExchangeSession) -> None:
        self._session = session

    def detach(self) -> list[str]:
        """Cancel every loop and forget the session; return removed symbols."""

        removed = [symbol for symbol in list(self._entries) if self.remove(symbol, publish=False)]
        self._session = None
        if removed:
            self._publish()
        return removed

    # ------------------------------------------------------------------
    # Watch-list operations
    # ------------------------------------------------------------------
    def add(self, symbol: str) -> bool:
        """Start watching ``symbol``; return ``False`` when nothing was started."""

        if symbol in self._entries:
            return False
        session = self._session
        if session is None:
            LOGGER.warning("No exchange session, cannot watch symbol", extra={"symbol": symbol})
            return False
        try:
            session.require_market(symbol)
        except UnknownSymbolError as exc:
            LOGGER.error(str(exc), extra={"symbol": symbol, "exchange_id": session.exchange_id})
            return False

        entry = WatchEntry(symbol=symbol, session=session, ticker=Ticker.placeholder(symbol))
        self._entries[symbol] = entry
        task = asyncio.create_task(self._watch(entry), name=f"watch-ticker:{symbol}")
        entry.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        LOGGER.info("Started watching symbol", extra={"symbol": symbol, "exchange_id": session.exchange_id})
        return True

    def remove(self, symbol: str, *, publish: bool = True) -> bool:
        entry = self._entries.pop(symbol, None)
        if entry is None:
            return False
        entry.token.cancel("removed")
        LOGGER.info("Removed symbol from watch-list", extra={"symbol": symbol})
        if publish:
            self._publish()
        return True

    def list_symbols(self) -> list[str]:
        return list(self._entries)

    def entry(self, symbol: str) -> WatchEntry | None:
        return self._entries.get(symbol)

    def snapshot(self) -> Dict[str, Ticker]:
        return {symbol: entry.ticker for symbol, entry in self._entries.items()}

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def join(self) -> None:
        """Wait for every loop, including ones still draining after removal."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Watch loop
    # ------------------------------------------------------------------
    async def _watch(self, entry: WatchEntry) -> None:
        token = entry.token
        entry.state = WatchState.STREAMING
        while not token.cancelled:
            try:
                entry.stream_calls += 1
                ticker = await entry.session.stream_ticker(entry.symbol)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if token.cancelled:
                    break
                error_class = classify_stream_error(exc)
                if error_class.fatal:
                    entry.state = WatchState.FAILED
                    LOGGER.error(
                        "Ticker stream failed permanently",
                        extra={"symbol": entry.symbol, "error_class": error_class.value, "error": describe_error(exc)},
                    )
                    await self._notifier.error(f"Stopped watching {entry.symbol}: {describe_error(exc)}")
                    return
                delay = self._backoff.delay_for(error_class, StreamKind.TICKER)
                LOGGER.warning(
                    "Error watching symbol, retrying",
                    extra={
                        "symbol": entry.symbol,
                        "error_class": error_class.value,
                        "retry_in_sec": delay,
                        "error": describe_error(exc),
                    },
                )
                entry.state = WatchState.SUSPENDED
                if await self._clock.sleep(delay, token):
                    break
                entry.state = WatchState.STREAMING
                continue

            if token.cancelled:
                break
            if should_notify(entry.last_delivered, ticker):
                entry.ticker = ticker
                entry.delivered = True
                self._publish()

        entry.state = WatchState.STOPPED
        LOGGER.info("Stopped watching symbol", extra={"symbol": entry.symbol, "reason": token.reason})

    def _publish(self) -> None:
        try:
            self._sink.update_prices(self.snapshot())
        except SinkError as exc:
            LOGGER.warning("Failed to publish prices", extra={"error": str(exc)})


__all__ = ["SubscriptionManager", "WatchEntry"]
