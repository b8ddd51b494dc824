"""Aggregate account-position stream.

A single loop per provider pulls the full position array from
:meth:`ExchangeSession.stream_positions`, keeps only open positions and
pushes the whole snapshot to the sink on every tick. Position arrays are small
and already coalesced by the exchange client, so there is no change
suppression here.

Failures follow the shared classification: credential and capability errors
stop the loop for good with one user-visible error; everything else is retried
with the interval configured for its class.
"""
from __future__ import annotations

import asyncio
import logging

from coin_watchdog.config.models import BackoffConfig
from coin_watchdog.core.enums import StreamKind, WatchState
from coin_watchdog.core.errors import SinkError
from coin_watchdog.exchange.errors import classify_stream_error, describe_error
from coin_watchdog.exchange.models import Position
from coin_watchdog.exchange.session import ExchangeSession
from coin_watchdog.interfaces.sink import Notifier, UpdateSink

from .cancellation import CancelToken, Clock, SystemClock

LOGGER = logging.getLogger(__name__)


class PositionWatcher:
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
        self._positions: list[Position] = []
        self._token: CancelToken | None = None
        self._task: asyncio.Task | None = None
        self.state = WatchState.IDLE
        self.stream_calls = 0
        self.last_error: str | None = None

    @property
    def positions(self) -> list[Position]:
        return list(self._positions)

    @property
    def running(self) -> bool:
        return self._token is not None and not self._token.cancelled and self.state in (
            WatchState.STREAMING,
            WatchState.SUSPENDED,
        )

    def start(self, session: ExchangeSession) -> bool:
        """Start the loop against ``session``; no-op while a loop is running."""

        if self.running:
            LOGGER.info("Position watching already running")
            return False
        self._token = CancelToken()
        self.state = WatchState.STREAMING
        self.stream_calls = 0
        self.last_error = None
        self._task = asyncio.create_task(self._run(session, self._token), name="watch-positions")
        LOGGER.info("Position watching started", extra={"exchange_id": session.exchange_id})
        return True

    def stop(self) -> bool:
        """Cancel the loop and clear the published snapshot."""

        token, self._token = self._token, None
        if token is None:
            return False
        token.cancel("stopped")
        if self.state is not WatchState.FAILED:
            self.state = WatchState.STOPPED
        self._positions = []
        self._publish()
        return True

    async def join(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def _run(self, session: ExchangeSession, token: CancelToken) -> None:
        while not token.cancelled:
            try:
                self.stream_calls += 1
                positions = await session.stream_positions()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if token.cancelled:
                    break
                error_class = classify_stream_error(exc)
                self.last_error = describe_error(exc)
                if error_class.fatal:
                    self.state = WatchState.FAILED
                    LOGGER.error(
                        "Position stream failed permanently",
                        extra={"error_class": error_class.value, "error": self.last_error},
                    )
                    await self._notifier.error(f"Position watching stopped: {self.last_error}")
                    return
                delay = self._backoff.delay_for(error_class, StreamKind.POSITIONS)
                LOGGER.warning(
                    "Error watching positions, retrying",
                    extra={"error_class": error_class.value, "retry_in_sec": delay, "error": self.last_error},
                )
                self.state = WatchState.SUSPENDED
                if await self._clock.sleep(delay, token):
                    break
                self.state = WatchState.STREAMING
                continue

            if token.cancelled:
                break
            self._positions = positions
            LOGGER.debug("Received positions", extra={"count": len(positions)})
            self._publish()

        LOGGER.info("Position watching stopped", extra={"reason": token.reason})

    def _publish(self) -> None:
        try:
            self._sink.update_positions(list(self._positions))
        except SinkError as exc:
            LOGGER.warning("Failed to publish positions", extra={"error": str(exc)})


__all__ = ["PositionWatcher"]
