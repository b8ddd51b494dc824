"""Bring the running watchers in line with the desired configuration.

Reconciliation runs in two phases under one lock:

1. **Identity check.** When there is no session, or the desired
   :class:`SessionIdentity` (exchange id, credentials fingerprint, mode, proxy)
   differs from the active one, the candidate session is built offline
   first. A configuration error at this point (unknown exchange, missing
   ``watchTicker``) is reported and leaves the current session and its loops
   untouched. Otherwise every loop is cancelled, the old session is closed,
   and the candidate is connected. A connect failure leaves the provider
   without a session.
2. **Set diff.** Symbols watched but no longer desired are removed, desired
   symbols not yet watched are added. Each operation touches a distinct
   symbol, so their order does not matter, and a second pass with the same
   desired set does nothing.

:meth:`ReconciliationEngine.rebuild` runs a teardown and both phases inside
one critical section, so control-plane edits queue behind it.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable

from coin_watchdog.config.models import WatchConfig
from coin_watchdog.core.errors import ExchangeConfigError, SinkError
from coin_watchdog.exchange.errors import classify_stream_error, describe_error
from coin_watchdog.exchange.session import ExchangeSession, SessionFactory, SessionIdentity
from coin_watchdog.interfaces.sink import Notifier, UpdateSink

from .positions import PositionWatcher
from .subscriptions import SubscriptionManager

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ReconciliationResult:
    """Outcome of one reconciliation pass (removals include teardown)."""

    session_replaced: bool = False
    removed: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def changed(self) -> bool:
        return self.session_replaced or bool(self.removed) or bool(self.added)


class ReconciliationEngine:
    def __init__(
        self,
        *,
        factory: SessionFactory,
        subscriptions: SubscriptionManager,
        positions: PositionWatcher,
        sink: UpdateSink,
        notifier: Notifier,
    ) -> None:
        self._factory = factory
        self._subscriptions = subscriptions
        self._positions = positions
        self._sink = sink
        self._notifier = notifier
        self._session: ExchangeSession | None = None
        self._lock = asyncio.Lock()

    @property
    def session(self) -> ExchangeSession | None:
        return self._session

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def subscriptions(self) -> SubscriptionManager:
        return self._subscriptions

    @property
    def positions(self) -> PositionWatcher:
        return self._positions

    def diff(self, desired: Iterable[str]) -> tuple[list[str], list[str]]:
        """Return ``(removals, additions)`` between the watched and desired sets."""

        desired_list = list(dict.fromkeys(desired))
        desired_set = set(desired_list)
        actual = self._subscriptions.list_symbols()
        actual_set = set(actual)
        removals = [symbol for symbol in actual if symbol not in desired_set]
        additions = [symbol for symbol in desired_list if symbol not in actual_set]
        return removals, additions

    async def reconcile(self, config: WatchConfig) -> ReconciliationResult:
        async with self._lock:
            return await self._reconcile(config, ReconciliationResult())

    async def rebuild(self, config: WatchConfig) -> ReconciliationResult:
        """Tear everything down and reconcile ``config`` from scratch in one locked step."""

        async with self._lock:
            result = ReconciliationResult()
            result.removed.extend(await self._teardown())
            return await self._reconcile(config, result)

    async def teardown(self) -> list[str]:
        """Cancel every loop and close the active session."""

        async with self._lock:
            return await self._teardown()

    async def _reconcile(self, config: WatchConfig, result: ReconciliationResult) -> ReconciliationResult:
        identity = SessionIdentity.from_config(config)
        if self._session is None or self._session.identity != identity:
            current = self._session.identity if self._session else None
            LOGGER.info(
                "Exchange identity changed, reinitializing",
                extra={
                    "from_exchange_id": current.exchange_id if current else None,
                    "to_exchange_id": identity.exchange_id,
                    "mode": identity.mode.value,
                    "proxied": identity.proxy_url is not None,
                },
            )
            if not await self._replace_session(config, result):
                return result

        removals, additions = self.diff(config.watch_symbols)
        for symbol in removals:
            if self._subscriptions.remove(symbol):
                result.removed.append(symbol)
        for symbol in additions:
            if self._subscriptions.add(symbol):
                result.added.append(symbol)
        if result.changed:
            LOGGER.info(
                "Reconciliation applied",
                extra={
                    "exchange_id": identity.exchange_id,
                    "session_replaced": result.session_replaced,
                    "removed": result.removed,
                    "added": result.added,
                },
            )
        return result

    async def _teardown(self) -> list[str]:
        removed = self._subscriptions.detach()
        self._positions.stop()
        session, self._session = self._session, None
        if session is not None:
            await session.close()
        return removed

    async def _replace_session(self, config: WatchConfig, result: ReconciliationResult) -> bool:
        exchange_id = config.exchange_id
        try:
            candidate = self._factory.build(config)
        except ExchangeConfigError as exc:
            result.error = str(exc)
            LOGGER.error("Exchange configuration rejected", extra={"exchange_id": exchange_id, "error": str(exc)})
            await self._notifier.error(str(exc))
            return False

        result.removed.extend(await self._teardown())

        try:
            await candidate.connect()
        except Exception as exc:
            result.error = describe_error(exc)
            LOGGER.error(
                "Exchange connection failed",
                extra={
                    "exchange_id": exchange_id,
                    "error_class": classify_stream_error(exc).value,
                    "error": result.error,
                },
            )
            await candidate.close()
            await self._notifier.error(f"Failed to connect to {exchange_id}: {result.error}")
            return False

        self._session = candidate
        self._subscriptions.attach(candidate)
        result.session_replaced = True
        if candidate.authenticated:
            if candidate.supports_positions:
                self._positions.start(candidate)
            else:
                await self._notifier.warning(
                    f"Exchange '{exchange_id}' does not support positions watching. Please choose a different exchange."
                )
        else:
            LOGGER.info("Exchange credentials not configured, positions are not watched", extra={"exchange_id": exchange_id})

        await self._notifier.info(f"Exchange '{exchange_id}' connected successfully.")
        try:
            self._sink.update_exchange_id(exchange_id)
        except SinkError as exc:
            LOGGER.warning("Failed to publish exchange id", extra={"error": str(exc)})
        return True


__all__ = ["ReconciliationEngine", "ReconciliationResult"]
