"""Value objects parsed from ccxt.pro payloads.

Tickers and positions are immutable snapshots: watch loops replace them
wholesale instead of mutating fields. The ``raw`` mapping keeps the exchange's
``info`` payload; derived flags such as ``is_perp`` are recomputed from it on
every access and never stored.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping

from coin_watchdog.core.enums import MarginMode, Side
from coin_watchdog.core.types import JSONLike

PERPETUAL_INST_TYPE = "SWAP"
QUOTE_FILTER = "/USDT"

_SYMBOL_SUFFIX = re.compile(r"[:/].*$")


def is_perpetual(raw: JSONLike | None) -> bool:
    """Perpetual swaps are flagged by ``instType == "SWAP"`` in the raw info."""

    if not raw:
        return False
    return raw.get("instType") == PERPETUAL_INST_TYPE


def _as_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_enum(enum_cls: Any, value: Any) -> Any:
    if not value:
        return None
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        return None


def _raw_info(payload: JSONLike) -> Dict[str, Any]:
    info = payload.get("info")
    return dict(info) if isinstance(info, Mapping) else {}


@dataclass(frozen=True, slots=True)
class Ticker:
    """Latest price observation; ``last == 0`` means nothing received yet."""

    symbol: str
    last: float = 0.0
    percentage: float = 0.0
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def placeholder(cls, symbol: str) -> "Ticker":
        return cls(symbol=symbol)

    @classmethod
    def from_ccxt(cls, symbol: str, payload: JSONLike) -> "Ticker":
        return cls(
            symbol=symbol,
            last=_as_float(payload.get("last")) or 0.0,
            percentage=_as_float(payload.get("percentage")) or 0.0,
            raw=_raw_info(payload),
        )

    @property
    def is_perp(self) -> bool:
        return is_perpetual(self.raw)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "last": self.last,
            "percentage": self.percentage,
            "info": self.raw or None,
            "isPerp": self.is_perp,
        }


@dataclass(frozen=True, slots=True)
class Position:
    """Open leveraged holding as reported by ``watch_positions``."""

    symbol: str
    side: Side | None
    margin_mode: MarginMode | None
    contracts: float
    contract_size: float | None = None
    notional: float | None = None
    entry_price: float | None = None
    mark_price: float | None = None
    liquidation_price: float | None = None
    leverage: float | None = None
    initial_margin: float | None = None
    maintenance_margin: float | None = None
    maintenance_margin_percentage: float | None = None
    unrealized_pnl: float | None = None
    percentage: float | None = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_ccxt(cls, payload: JSONLike) -> "Position":
        return cls(
            symbol=str(payload.get("symbol") or ""),
            side=_parse_enum(Side, payload.get("side")),
            margin_mode=_parse_enum(MarginMode, payload.get("marginMode")),
            contracts=_as_float(payload.get("contracts")) or 0.0,
            contract_size=_as_float(payload.get("contractSize")),
            notional=_as_float(payload.get("notional")),
            entry_price=_as_float(payload.get("entryPrice")),
            mark_price=_as_float(payload.get("markPrice")),
            liquidation_price=_as_float(payload.get("liquidationPrice")),
            leverage=_as_float(payload.get("leverage")),
            initial_margin=_as_float(payload.get("initialMargin")),
            maintenance_margin=_as_float(payload.get("maintenanceMargin")),
            maintenance_margin_percentage=_as_float(payload.get("maintenanceMarginPercentage")),
            unrealized_pnl=_as_float(payload.get("unrealizedPnl")),
            percentage=_as_float(payload.get("percentage")),
            raw=_raw_info(payload),
        )

    @property
    def is_active(self) -> bool:
        return self.contracts > 0

    @property
    def is_perp(self) -> bool:
        return is_perpetual(self.raw)

    @property
    def display_symbol(self) -> str:
        """``BTC/USDT:USDT`` renders as ``BTC Perp``-style labels for swaps."""

        if not self.is_perp:
            return self.symbol
        return f"{_SYMBOL_SUFFIX.sub('', self.symbol)} Perp"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "displaySymbol": self.display_symbol,
            "side": self.side.value if self.side else None,
            "marginMode": self.margin_mode.value if self.margin_mode else None,
            "contracts": self.contracts,
            "contractSize": self.contract_size,
            "notional": self.notional,
            "entryPrice": self.entry_price,
            "markPrice": self.mark_price,
            "liquidationPrice": self.liquidation_price,
            "leverage": self.leverage,
            "initialMargin": self.initial_margin,
            "maintenanceMargin": self.maintenance_margin,
            "maintenanceMarginPercentage": self.maintenance_margin_percentage,
            "unrealizedPnl": self.unrealized_pnl,
            "percentage": self.percentage,
            "info": self.raw or None,
            "isPerp": self.is_perp,
        }


def active_positions(payloads: Any) -> list[Position]:
    """Parse a ``watch_positions`` array and drop closed (``contracts <= 0``) entries."""

    positions = [Position.from_ccxt(item) for item in payloads or () if isinstance(item, Mapping)]
    return [position for position in positions if position.is_active]


@dataclass(frozen=True, slots=True)
class MarketInfo:
    """Subset of ccxt market metadata used for validation and search."""

    symbol: str
    base: str
    quote: str
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_ccxt(cls, symbol: str, payload: JSONLike) -> "MarketInfo":
        return cls(
            symbol=symbol,
            base=str(payload.get("base") or ""),
            quote=str(payload.get("quote") or ""),
            raw=_raw_info(payload),
        )

    @property
    def is_perp(self) -> bool:
        return is_perpetual(self.raw)


@dataclass(frozen=True, slots=True)
class SearchResult:
    symbol: str
    base: str
    quote: str
    is_perp: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"symbol": self.symbol, "base": self.base, "quote": self.quote, "isPerp": self.is_perp}


def search_markets(markets: Mapping[str, MarketInfo], query: str) -> list[SearchResult]:
    """Case-insensitive lookup over ``/USDT`` markets by symbol or base asset."""

    if not query or not markets:
        return []
    needle = query.lower()
    results: list[SearchResult] = []
    for symbol, market in markets.items():
        if QUOTE_FILTER not in symbol:
            continue
        if needle in symbol.lower() or needle in market.base.lower():
            results.append(SearchResult(symbol=symbol, base=market.base, quote=market.quote, is_perp=market.is_perp))
    return results


__all__ = [
    "MarketInfo",
    "Position",
    "SearchResult",
    "Ticker",
    "active_positions",
    "is_perpetual",
    "search_markets",
]
