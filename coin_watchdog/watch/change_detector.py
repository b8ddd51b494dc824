"""Decide whether a new ticker is worth a display update."""
from __future__ import annotations

from coin_watchdog.exchange.models import Ticker


def should_notify(previous: Ticker | None, current: Ticker) -> bool:
    """Return ``True`` when ``current`` differs from the last delivered ticker.

    ``previous`` is ``None`` until the first tick of a watch entry has been
    delivered, so the first real value always goes out, even ``last == 0``.
    Exchanges quantize prices, so exact float comparison is intended.
    """

    if previous is None:
        return True
    return previous.last != current.last or previous.percentage != current.percentage


__all__ = ["should_notify"]
