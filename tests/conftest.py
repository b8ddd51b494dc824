from __future__ import annotations

import asyncio
from collections import Counter
from typing import Any, Callable, Dict, Iterable, Mapping, Sequence

import pytest

from coin_watchdog.config.models import BackoffConfig, ExchangeCredentials, MarketsConfig, WatchConfig
from coin_watchdog.exchange.models import Position, SearchResult, Ticker
from coin_watchdog.watch.cancellation import CancelToken

DEFAULT_MARKETS: Dict[str, Dict[str, Any]] = {
    "BTC/USDT": {"symbol": "BTC/USDT", "base": "BTC", "quote": "USDT", "info": {"instType": "SPOT"}},
    "ETH/USDT": {"symbol": "ETH/USDT", "base": "ETH", "quote": "USDT", "info": {"instType": "SPOT"}},
    "SOL/USDT": {"symbol": "SOL/USDT", "base": "SOL", "quote": "USDT", "info": {"instType": "SPOT"}},
    "BTC/USDT:USDT": {"symbol": "BTC/USDT:USDT", "base": "BTC", "quote": "USDT", "info": {"instType": "SWAP"}},
    "ETH/BTC": {"symbol": "ETH/BTC", "base": "ETH", "quote": "BTC", "info": {"instType": "SPOT"}},
}


class FakeExchange:
    """Scripted stand-in for a ccxt.pro client.

    ``watch_ticker`` and ``watch_positions`` block until the test pushes a
    payload (or an exception, which is raised) onto the matching queue.
    """

    def __init__(
        self,
        options: Mapping[str, Any] | None = None,
        *,
        exchange_id: str = "okx",
        has: Mapping[str, bool] | None = None,
        markets: Mapping[str, Mapping[str, Any]] | None = None,
        load_markets_error: BaseException | None = None,
        credentials_error: BaseException | None = None,
    ) -> None:
        self.options = dict(options or {})
        self.id = exchange_id
        self.has = dict(has if has is not None else {"watchTicker": True, "watchPositions": True})
        self._markets = dict(markets if markets is not None else DEFAULT_MARKETS)
        self.markets: Dict[str, Any] = {}
        self.load_markets_error = load_markets_error
        self.credentials_error = credentials_error
        self.sandbox = False
        self.closed = False
        self.ticker_calls: Counter[str] = Counter()
        self.positions_calls = 0
        self._ticker_queues: Dict[str, asyncio.Queue] = {}
        self._positions_queue: asyncio.Queue | None = None

    # ccxt surface -------------------------------------------------------
    async def load_markets(self) -> Dict[str, Any]:
        if self.load_markets_error is not None:
            raise self.load_markets_error
        self.markets = dict(self._markets)
        return self.markets

    def check_required_credentials(self) -> None:
        if self.credentials_error is not None:
            raise self.credentials_error

    def set_sandbox_mode(self, enabled: bool) -> None:
        self.sandbox = enabled

    async def watch_ticker(self, symbol: str) -> Any:
        self.ticker_calls[symbol] += 1
        return await self._next(self._ticker_queue(symbol))

    async def watch_positions(self) -> Any:
        self.positions_calls += 1
        return await self._next(self._positions())

    async def close(self) -> None:
        await asyncio.sleep(0)
        self.closed = True
        for queue in [*self._ticker_queues.values(), self._positions()]:
            queue.put_nowait(ConnectionError("connection closed"))

    # scripting ----------------------------------------------------------
    def push_ticker(self, symbol: str, *items: Any) -> None:
        for item in items:
            self._ticker_queue(symbol).put_nowait(item)

    def push_positions(self, *items: Any) -> None:
        for item in items:
            self._positions().put_nowait(item)

    def _ticker_queue(self, symbol: str) -> asyncio.Queue:
        if symbol not in self._ticker_queues:
            self._ticker_queues[symbol] = asyncio.Queue()
        return self._ticker_queues[symbol]

    def _positions(self) -> asyncio.Queue:
        if self._positions_queue is None:
            self._positions_queue = asyncio.Queue()
        return self._positions_queue

    @staticmethod
    async def _next(queue: asyncio.Queue) -> Any:
        item = await queue.get()
        if isinstance(item, BaseException):
            raise item
        return item


class FakeRegistry:
    """Mimics the ``ccxt.pro`` module: an ``exchanges`` list plus one class per id."""

    def __init__(self, specs: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        specs = specs if specs is not None else {"okx": {}, "bybit": {}}
        self.exchanges = list(specs)
        self.instances: list[FakeExchange] = []
        for exchange_id, spec in specs.items():
            setattr(self, exchange_id, self._exchange_class(exchange_id, dict(spec)))

    def _exchange_class(self, exchange_id: str, spec: Dict[str, Any]) -> Callable[[Mapping[str, Any]], FakeExchange]:
        def build(options: Mapping[str, Any]) -> FakeExchange:
            client = FakeExchange(options, exchange_id=exchange_id, **spec)
            self.instances.append(client)
            return client

        return build

    def latest(self, exchange_id: str | None = None) -> FakeExchange:
        candidates = [client for client in self.instances if exchange_id is None or client.id == exchange_id]
        assert candidates, f"no client built for {exchange_id}"
        return candidates[-1]


class FakeClock:
    """Backoff clock under test control.

    With ``auto_advance`` every wait elapses immediately; otherwise a wait only
    ends when its token fires, which models a backoff interrupted by removal.
    """

    def __init__(self, auto_advance: bool = True) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self.auto_advance = auto_advance

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float, token: CancelToken) -> bool:
        self.sleeps.append(seconds)
        if not self.auto_advance:
            await token.wait()
            return True
        self.now += seconds
        await asyncio.sleep(0)
        return token.cancelled


class RecordingSink:
    def __init__(self) -> None:
        self.prices: list[Dict[str, Ticker]] = []
        self.positions: list[list[Position]] = []
        self.searches: list[list[SearchResult]] = []
        self.exchange_ids: list[str] = []

    def update_prices(self, tickers: Mapping[str, Ticker]) -> None:
        self.prices.append(dict(tickers))

    def update_positions(self, positions: Sequence[Position]) -> None:
        self.positions.append(list(positions))

    def search_results(self, results: Sequence[SearchResult]) -> None:
        self.searches.append(list(results))

    def update_exchange_id(self, exchange_id: str) -> None:
        self.exchange_ids.append(exchange_id)

    def last_prices(self) -> Dict[str, float]:
        if not self.prices:
            return {}
        return {symbol: ticker.last for symbol, ticker in self.prices[-1].items()}

    def deliveries(self, symbol: str) -> list[float]:
        """Distinct price values seen for ``symbol`` in publish order."""

        values: list[float] = []
        for snapshot in self.prices:
            ticker = snapshot.get(symbol)
            if ticker is None or ticker.last == 0:
                continue
            if not values or values[-1] != ticker.last:
                values.append(ticker.last)
        return values


class RecordingNotifier:
    def __init__(self) -> None:
        self.infos: list[str] = []
        self.warnings: list[str] = []
        self.errors: list[str] = []

    async def info(self, message: str) -> None:
        self.infos.append(message)

    async def warning(self, message: str) -> None:
        self.warnings.append(message)

    async def error(self, message: str) -> None:
        self.errors.append(message)


async def eventually(predicate: Callable[[], bool], *, rounds: int = 500) -> None:
    """Yield to the event loop until ``predicate`` holds."""

    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    assert predicate(), "condition not reached"


async def settle(rounds: int = 50) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def ticker_payload(last: float, percentage: float = 0.0, inst_type: str = "SPOT") -> Dict[str, Any]:
    return {"last": last, "percentage": percentage, "info": {"instType": inst_type}}


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def backoff() -> BackoffConfig:
    return BackoffConfig(ticker_retry_sec=3, positions_retry_sec=15, rate_limit_sec=30, network_sec=10)


@pytest.fixture
def watch_config_factory() -> Callable[..., WatchConfig]:
    def _factory(
        exchange_id: str = "okx",
        symbols: Iterable[str] = (),
        *,
        api_key: str | None = None,
        secret: str = "secret",
        **overrides: Any,
    ) -> WatchConfig:
        credentials = ExchangeCredentials(api_key=api_key, secret=secret) if api_key else None
        return WatchConfig(
            exchange_id=exchange_id,
            credentials=credentials,
            markets=MarketsConfig(watch_symbols=list(symbols)),
            **overrides,
        )

    return _factory
