from __future__ import annotations

import ccxt
import pytest

from coin_watchdog.config.models import BackoffConfig
from coin_watchdog.core.enums import WatchState
from coin_watchdog.exchange.session import ExchangeSession, SessionIdentity
from coin_watchdog.watch.subscriptions import SubscriptionManager
from conftest import FakeClock, FakeExchange, RecordingNotifier, RecordingSink, eventually, settle, ticker_payload


async def _session(client: FakeExchange) -> ExchangeSession:
    session = ExchangeSession(client, SessionIdentity(client.id))
    await session.connect()
    return session


async def _shutdown(manager: SubscriptionManager, session: ExchangeSession) -> None:
    manager.detach()
    await session.close()
    await manager.join()


@pytest.fixture
def client() -> FakeExchange:
    return FakeExchange()


@pytest.fixture
def manager(sink: RecordingSink, notifier: RecordingNotifier, backoff: BackoffConfig, clock: FakeClock) -> SubscriptionManager:
    return SubscriptionManager(sink=sink, notifier=notifier, backoff=backoff, clock=clock)


@pytest.mark.asyncio
async def test_add_should_reject_duplicates_unknown_symbols_and_missing_session(
    manager: SubscriptionManager, client: FakeExchange
) -> None:
    assert manager.add("BTC/USDT") is False

    session = await _session(client)
    manager.attach(session)
    assert manager.add("BTC/USDT") is True
    assert manager.add("BTC/USDT") is False
    assert manager.add("DOGE/USDT") is False
    assert manager.list_symbols() == ["BTC/USDT"]
    assert manager.snapshot()["BTC/USDT"].last == 0

    await _shutdown(manager, session)


@pytest.mark.asyncio
async def test_watch_loop_should_suppress_unchanged_tickers(
    manager: SubscriptionManager, client: FakeExchange, sink: RecordingSink
) -> None:
    session = await _session(client)
    manager.attach(session)
    manager.add("BTC/USDT")
    client.push_ticker("BTC/USDT", ticker_payload(100), ticker_payload(100), ticker_payload(101))

    await eventually(lambda: client.ticker_calls["BTC/USDT"] == 4)

    assert len(sink.prices) == 2
    assert sink.deliveries("BTC/USDT") == [100, 101]
    assert manager.entry("BTC/USDT").state is WatchState.STREAMING

    await _shutdown(manager, session)


@pytest.mark.asyncio
async def test_watch_loop_should_deliver_first_value_even_when_zero(
    manager: SubscriptionManager, client: FakeExchange, sink: RecordingSink
) -> None:
    session = await _session(client)
    manager.attach(session)
    manager.add("ETH/USDT")
    client.push_ticker("ETH/USDT", ticker_payload(0), ticker_payload(0))

    await eventually(lambda: client.ticker_calls["ETH/USDT"] == 3)

    assert len(sink.prices) == 1
    assert manager.entry("ETH/USDT").delivered is True

    await _shutdown(manager, session)


@pytest.mark.asyncio
async def test_watch_loop_should_back_off_on_transient_errors(
    manager: SubscriptionManager, client: FakeExchange, sink: RecordingSink, clock: FakeClock, notifier: RecordingNotifier
) -> None:
    session = await _session(client)
    manager.attach(session)
    manager.add("BTC/USDT")
    client.push_ticker(
        "BTC/USDT",
        RuntimeError("unexpected frame"),
        ccxt.RateLimitExceeded("too many requests"),
        ccxt.NetworkError("connection reset"),
        ticker_payload(105),
    )

    await eventually(lambda: sink.last_prices() == {"BTC/USDT": 105})

    assert clock.sleeps == [3, 30, 10]
    assert notifier.errors == []

    await _shutdown(manager, session)


@pytest.mark.asyncio
async def test_watch_loop_should_stop_on_fatal_error_and_keep_entry(
    manager: SubscriptionManager, client: FakeExchange, clock: FakeClock, notifier: RecordingNotifier
) -> None:
    session = await _session(client)
    manager.attach(session)
    manager.add("BTC/USDT")
    client.push_ticker("BTC/USDT", ccxt.AuthenticationError("Invalid API-key"))

    entry = manager.entry("BTC/USDT")
    await eventually(lambda: entry.state is WatchState.FAILED)
    await settle()

    assert client.ticker_calls["BTC/USDT"] == 1
    assert clock.sleeps == []
    assert notifier.errors == ["Stopped watching BTC/USDT: Invalid API-key"]
    assert "BTC/USDT" in manager
    assert manager.add("BTC/USDT") is False

    await _shutdown(manager, session)


@pytest.mark.asyncio
async def test_remove_should_interrupt_backoff(
    sink: RecordingSink, notifier: RecordingNotifier, backoff: BackoffConfig, client: FakeExchange
) -> None:
    clock = FakeClock(auto_advance=False)
    manager = SubscriptionManager(sink=sink, notifier=notifier, backoff=backoff, clock=clock)
    session = await _session(client)
    manager.attach(session)
    manager.add("SOL/USDT")
    entry = manager.entry("SOL/USDT")
    client.push_ticker("SOL/USDT", RuntimeError("boom"))

    await eventually(lambda: entry.state is WatchState.SUSPENDED)
    assert manager.remove("SOL/USDT") is True
    await manager.join()

    assert entry.state is WatchState.STOPPED
    assert entry.token.reason == "removed"
    assert clock.sleeps == [3]
    assert client.ticker_calls["SOL/USDT"] == 1
    assert sink.prices[-1] == {}

    await session.close()


@pytest.mark.asyncio
async def test_remove_should_discard_in_flight_result(
    manager: SubscriptionManager, client: FakeExchange, sink: RecordingSink
) -> None:
    session = await _session(client)
    manager.attach(session)
    manager.add("BTC/USDT")
    entry = manager.entry("BTC/USDT")
    await eventually(lambda: client.ticker_calls["BTC/USDT"] == 1)

    manager.remove("BTC/USDT")
    client.push_ticker("BTC/USDT", ticker_payload(99))
    await manager.join()

    assert entry.state is WatchState.STOPPED
    assert entry.delivered is False
    assert sink.deliveries("BTC/USDT") == []
    assert "BTC/USDT" not in manager

    await session.close()


@pytest.mark.asyncio
async def test_re_add_should_not_receive_updates_from_draining_loop(
    manager: SubscriptionManager, client: FakeExchange, sink: RecordingSink
) -> None:
    session = await _session(client)
    manager.attach(session)
    manager.add("BTC/USDT")
    old_entry = manager.entry("BTC/USDT")
    await eventually(lambda: client.ticker_calls["BTC/USDT"] == 1)

    manager.remove("BTC/USDT")
    assert manager.add("BTC/USDT") is True
    new_entry = manager.entry("BTC/USDT")
    await eventually(lambda: client.ticker_calls["BTC/USDT"] == 2)

    # the draining loop is first in line for the queue and takes 50
    client.push_ticker("BTC/USDT", ticker_payload(50), ticker_payload(60))
    await eventually(lambda: sink.last_prices() == {"BTC/USDT": 60})
    await eventually(lambda: old_entry.state is WatchState.STOPPED)

    assert new_entry is not old_entry
    assert old_entry.delivered is False
    assert sink.deliveries("BTC/USDT") == [60]
    assert manager.snapshot()["BTC/USDT"].last == 60

    await _shutdown(manager, session)


@pytest.mark.asyncio
async def test_detach_should_cancel_all_loops_and_publish_once(
    manager: SubscriptionManager, client: FakeExchange, sink: RecordingSink
) -> None:
    session = await _session(client)
    manager.attach(session)
    for symbol in ("BTC/USDT", "ETH/USDT", "SOL/USDT"):
        manager.add(symbol)

    removed = manager.detach()
    await session.close()
    await manager.join()

    assert removed == ["BTC/USDT", "ETH/USDT", "SOL/USDT"]
    assert manager.session is None
    assert len(manager) == 0
    assert sink.prices == [{}]
