"""Cooperative cancellation and the clock used for retry backoff.

Every watch loop owns one :class:`CancelToken`. Removing a symbol (or tearing a
session down) fires the token; the loop checks it around each suspension point
and the backoff wait returns as soon as it fires.
"""
from __future__ import annotations

import asyncio
import time
from typing import Protocol


class CancelToken:
    """One-shot cancellation signal backed by an :class:`asyncio.Event`."""

    __slots__ = ("_event", "reason")

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class Clock(Protocol):
    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float, token: CancelToken) -> bool:
        """Wait ``seconds`` or until ``token`` fires; return ``token.cancelled``."""
        ...


class SystemClock:
    """Wall clock backed by the running event loop."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float, token: CancelToken) -> bool:
        if token.cancelled or seconds <= 0:
            return token.cancelled
        try:
            await asyncio.wait_for(token.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
        return token.cancelled


__all__ = ["CancelToken", "Clock", "SystemClock"]
