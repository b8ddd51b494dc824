"""ccxt.pro session wrapper and capability-checked factory.

One :class:`ExchangeSession` wraps one ccxt.pro client and is shared by every
watch loop of a provider. Sessions are identified by
:class:`SessionIdentity`; when the identity of the desired configuration
differs, the reconciliation engine builds a new session instead of mutating the
existing one.

Building is split in two steps so that configuration problems can be reported
without touching a running session:

* :meth:`SessionFactory.build` is offline. It resolves the exchange class from
  the registry (``ccxt.pro`` by default), instantiates it with credentials and
  proxy settings, and verifies the ``watchTicker`` capability. Failures raise
  :class:`~coin_watchdog.core.errors.ExchangeConfigError`.
* :meth:`ExchangeSession.connect` hits the network: it loads market metadata
  and verifies that the credentials required by the exchange are present.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping

import ccxt.pro as ccxtpro

from coin_watchdog.config.models import WatchConfig
from coin_watchdog.core.enums import ExchangeMode
from coin_watchdog.core.errors import MissingCapabilityError, SessionError, UnknownSymbolError, UnsupportedExchangeError

from .models import MarketInfo, Position, SearchResult, Ticker, active_positions, search_markets
from .proxy import apply_proxy_config

LOGGER = logging.getLogger(__name__)

TICKER_CAPABILITY = "watchTicker"
POSITIONS_CAPABILITY = "watchPositions"


@dataclass(frozen=True, slots=True)
class SessionIdentity:
    """Everything baked into a ccxt client at construction time.

    Exchange id, credentials digest, demo/live mode and proxy URL. A change in
    any of them needs a new client.
    """

    exchange_id: str
    credentials_fingerprint: str | None = None
    mode: ExchangeMode = ExchangeMode.LIVE
    proxy_url: str | None = None

    @classmethod
    def from_config(cls, config: WatchConfig) -> "SessionIdentity":
        return cls(
            exchange_id=config.exchange_id,
            credentials_fingerprint=config.credentials_fingerprint(),
            mode=config.mode,
            proxy_url=config.proxy_url,
        )

    @property
    def authenticated(self) -> bool:
        return self.credentials_fingerprint is not None


class ExchangeSession:
    """Shared connection to one exchange exposing the two streaming primitives."""

    def __init__(self, client: Any, identity: SessionIdentity) -> None:
        self._client = client
        self.identity = identity
        self._markets: Dict[str, MarketInfo] = {}
        self._connected = False
        self._closed = False

    @property
    def exchange_id(self) -> str:
        return self.identity.exchange_id

    @property
    def authenticated(self) -> bool:
        return self.identity.authenticated

    @property
    def connected(self) -> bool:
        return self._connected and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def markets(self) -> Mapping[str, MarketInfo]:
        return self._markets

    def supports(self, capability: str) -> bool:
        has = getattr(self._client, "has", None) or {}
        return bool(has.get(capability))

    @property
    def supports_positions(self) -> bool:
        return self.supports(POSITIONS_CAPABILITY)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def connect(self) -> None:
        """Load markets and check credentials; raises ccxt errors on failure."""

        if self._closed:
            raise SessionError(f"Session for '{self.exchange_id}' is already closed")
        raw_markets = await self._client.load_markets()
        if raw_markets is None:
            raw_markets = getattr(self._client, "markets", None) or {}
        if self.authenticated:
            self._client.check_required_credentials()
        self._markets = {
            symbol: MarketInfo.from_ccxt(symbol, payload)
            for symbol, payload in raw_markets.items()
            if isinstance(payload, Mapping)
        }
        self._connected = True
        LOGGER.info(
            "Exchange session connected",
            extra={"exchange_id": self.exchange_id, "markets": len(self._markets), "authenticated": self.authenticated},
        )

    async def close(self) -> None:
        """Release the client's sockets; in-flight stream calls will raise."""

        if self._closed:
            return
        self._closed = True
        try:
            await self._client.close()
        except Exception as exc:  # pragma: no cover - depends on client internals
            LOGGER.warning("Failed to close exchange client", extra={"exchange_id": self.exchange_id, "error": str(exc)})
        LOGGER.info("Exchange session closed", extra={"exchange_id": self.exchange_id})

    # ------------------------------------------------------------------
    # Market metadata
    # ------------------------------------------------------------------
    def has_market(self, symbol: str) -> bool:
        return symbol in self._markets

    def require_market(self, symbol: str) -> MarketInfo:
        market = self._markets.get(symbol)
        if market is None:
            raise UnknownSymbolError(self.exchange_id, symbol)
        return market

    def search(self, query: str) -> list[SearchResult]:
        return search_markets(self._markets, query)

    # ------------------------------------------------------------------
    # Streaming primitives
    # ------------------------------------------------------------------
    async def stream_ticker(self, symbol: str) -> Ticker:
        """Block until the next ticker for ``symbol`` arrives."""

        payload = await self._client.watch_ticker(symbol)
        return Ticker.from_ccxt(symbol, payload or {})

    async def stream_positions(self) -> list[Position]:
        """Block until the next full position array arrives; closed ones dropped."""

        payloads = await self._client.watch_positions()
        return active_positions(payloads)


class SessionFactory:
    """Construct-by-identifier, then verify capabilities.

    ``registry`` is any object exposing an ``exchanges`` list and one
    attribute per exchange class, which is exactly what ``ccxt.pro`` provides.
    """

    def __init__(self, registry: Any = None) -> None:
        self._registry = registry if registry is not None else ccxtpro

    def is_supported(self, exchange_id: str) -> bool:
        return exchange_id in getattr(self._registry, "exchanges", ())

    def build(self, config: WatchConfig) -> ExchangeSession:
        exchange_id = config.exchange_id
        if not self.is_supported(exchange_id):
            raise UnsupportedExchangeError(exchange_id)
        exchange_class = getattr(self._registry, exchange_id, None)
        if exchange_class is None:
            raise UnsupportedExchangeError(exchange_id)

        options: Dict[str, Any] = {"enableRateLimit": True}
        if config.credentials is not None:
            options["apiKey"] = config.credentials.api_key
            options["secret"] = config.credentials.secret
            # Some exchanges (e.g. OKX) require a passphrase.
            if config.credentials.passphrase:
                options["password"] = config.credentials.passphrase

        client = exchange_class(options)
        if config.mode is ExchangeMode.DEMO:
            client.set_sandbox_mode(True)
        apply_proxy_config(client, config.proxy_url)

        session = ExchangeSession(client, SessionIdentity.from_config(config))
        if not session.supports(TICKER_CAPABILITY):
            raise MissingCapabilityError(exchange_id, "real-time ticker watching")
        return session


__all__ = ["ExchangeSession", "SessionFactory", "SessionIdentity", "POSITIONS_CAPABILITY", "TICKER_CAPABILITY"]
