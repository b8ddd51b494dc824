"""Subscription watcher core: watch loops, reconciliation and their owner."""

from .cancellation import CancelToken, Clock, SystemClock
from .change_detector import should_notify
from .positions import PositionWatcher
from .provider import WatchProvider
from .reconciliation import ReconciliationEngine, ReconciliationResult
from .subscriptions import SubscriptionManager, WatchEntry

__all__ = [
    "CancelToken",
    "Clock",
    "PositionWatcher",
    "ReconciliationEngine",
    "ReconciliationResult",
    "SubscriptionManager",
    "SystemClock",
    "WatchEntry",
    "WatchProvider",
    "should_notify",
]
