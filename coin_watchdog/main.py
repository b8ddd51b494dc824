from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

from coin_watchdog.config.loader import SettingsStore, resolve_config_path
from coin_watchdog.config.models import AppConfig, WatchConfig
from coin_watchdog.core.errors import ConfigurationError
from coin_watchdog.interfaces.sink import JsonLinesSink, LoggingNotifier, Notifier
from coin_watchdog.interfaces.telegram_bot import TelegramBotInterface
from coin_watchdog.telemetry import configure_logging
from coin_watchdog.watch.provider import WatchProvider


class ConfigWatcher:
    """Re-read the settings file and report when the watcher state changed."""

    def __init__(self, store: SettingsStore, initial: AppConfig, logger: logging.Logger) -> None:
        self._store = store
        self._current = initial.watch_config()
        self._logger = logger

    @property
    def current(self) -> WatchConfig:
        return self._current

    def poll(self) -> WatchConfig | None:
        try:
            loaded = self._store.load().watch_config()
        except (ConfigurationError, FileNotFoundError, ValueError) as exc:
            self._logger.warning("Ignoring unreadable settings, keeping last good config", extra={"error": str(exc)})
            return None
        if loaded == self._current:
            return None
        self._current = loaded
        return loaded


async def run(config_path: Path) -> None:
    store = SettingsStore(config_path)
    config = store.load()
    logger = configure_logging(
        log_dir=Path(config.telemetry.log_dir),
        level=config.telemetry.log_level,
        console_level=config.telemetry.console_level,
    )
    logger.info("Bootstrapping watchdog", extra={"exchange_id": config.exchange_id, "mode": config.mode.value})

    telegram_bot: TelegramBotInterface | None = None
    notifier: Notifier
    if config.telegram is not None:
        telegram_bot = TelegramBotInterface(
            token=config.telegram.bot_token,
            chat_id=config.telegram.chat_id,
            logger=logger.getChild("telegram"),
        )
        notifier = telegram_bot
    else:
        notifier = LoggingNotifier(logger.getChild("notify"))

    provider = WatchProvider(
        sink=JsonLinesSink(sys.stdout),
        notifier=notifier,
        backoff=config.backoff,
        watchlist=store,
    )
    if telegram_bot is not None:
        telegram_bot.bind(provider)
        await telegram_bot.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _request_stop(signum: int) -> None:
        logger.info("Received signal", extra={"signal": signum})
        stop_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _request_stop, signum)
        except NotImplementedError:  # pragma: no cover - Windows event loops
            signal.signal(signum, lambda received, _frame: loop.call_soon_threadsafe(_request_stop, received))

    watcher = ConfigWatcher(store, config, logger.getChild("config"))
    try:
        await provider.apply_config(watcher.current)
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=config.config_poll_interval_sec)
            except asyncio.TimeoutError:
                pass
            if stop_event.is_set():
                break
            changed = watcher.poll()
            if changed is not None:
                logger.info("Configuration changed", extra={"exchange_id": changed.exchange_id})
                await provider.apply_config(changed)
    finally:
        await provider.close()
        if telegram_bot is not None:
            await telegram_bot.stop()
        logger.info("Shutdown complete")


def main() -> None:
    asyncio.run(run(resolve_config_path()))


if __name__ == "__main__":
    try:
        main()
    except Exception as exc:  # pragma: no cover - top-level safety
        print(f"Fatal error: {exc}", file=sys.stderr)
        raise
