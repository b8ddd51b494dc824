from __future__ import annotations

import io
import json
import logging

import pytest

from coin_watchdog.core.enums import Side
from coin_watchdog.core.errors import SinkError
from coin_watchdog.exchange.models import Position, SearchResult, Ticker
from coin_watchdog.interfaces.sink import JsonLinesSink, LoggingNotifier


def _messages(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines()]


def test_json_lines_sink_should_emit_display_commands() -> None:
    stream = io.StringIO()
    sink = JsonLinesSink(stream)

    sink.update_prices({"BTC/USDT": Ticker("BTC/USDT", 65000.0, 1.5, {"instType": "SPOT"})})
    sink.update_positions([Position("ETH/USDT:USDT", Side.SHORT, None, 3.0, raw={"instType": "SWAP"})])
    sink.search_results([SearchResult("SOL/USDT", "SOL", "USDT", False)])
    sink.update_exchange_id("okx")

    messages = _messages(stream)
    assert [message["command"] for message in messages] == [
        "updatePrices",
        "updatePositions",
        "searchResults",
        "updateExchangeId",
    ]
    assert messages[0]["data"]["BTC/USDT"]["last"] == 65000.0
    assert messages[0]["data"]["BTC/USDT"]["isPerp"] is False
    assert messages[1]["data"][0]["side"] == "short"
    assert messages[1]["data"][0]["displaySymbol"] == "ETH Perp"
    assert messages[2]["data"] == [{"symbol": "SOL/USDT", "base": "SOL", "quote": "USDT", "isPerp": False}]
    assert messages[3]["data"] == "okx"


def test_json_lines_sink_should_raise_sink_error_on_closed_stream() -> None:
    stream = io.StringIO()
    stream.close()
    with pytest.raises(SinkError):
        JsonLinesSink(stream).update_exchange_id("okx")


@pytest.mark.asyncio
async def test_logging_notifier_should_log_by_level(caplog: pytest.LogCaptureFixture) -> None:
    notifier = LoggingNotifier(logging.getLogger("coin_watchdog.notify_test"))
    with caplog.at_level(logging.INFO, logger="coin_watchdog.notify_test"):
        await notifier.info("connected")
        await notifier.warning("no positions")
        await notifier.error("bad key")

    assert [(record.levelname, record.getMessage()) for record in caplog.records] == [
        ("INFO", "connected"),
        ("WARNING", "no positions"),
        ("ERROR", "bad key"),
    ]
