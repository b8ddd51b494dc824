"""External user interfaces package."""

from .sink import JsonLinesSink, LoggingNotifier, Notifier, UpdateSink
from .telegram_bot import TelegramBotInterface

__all__ = ["JsonLinesSink", "LoggingNotifier", "Notifier", "TelegramBotInterface", "UpdateSink"]
