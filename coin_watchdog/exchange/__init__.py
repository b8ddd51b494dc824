"""Exchange adapter: ccxt.pro session, value objects and error classification."""

from .errors import classify_stream_error
from .models import MarketInfo, Position, SearchResult, Ticker, active_positions, is_perpetual, search_markets
from .session import ExchangeSession, SessionFactory, SessionIdentity

__all__ = [
    "ExchangeSession",
    "MarketInfo",
    "Position",
    "SearchResult",
    "SessionFactory",
    "SessionIdentity",
    "Ticker",
    "active_positions",
    "classify_stream_error",
    "is_perpetual",
    "search_markets",
]
