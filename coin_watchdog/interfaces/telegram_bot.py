from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Mapping, Sequence

from telegram import Update
from telegram.error import TelegramError
from telegram.ext import Application, CommandHandler, ContextTypes

from coin_watchdog.exchange.models import Position, Ticker

LOGGER = logging.getLogger(__name__)

Handler = Callable[[Update, ContextTypes.DEFAULT_TYPE], Awaitable[None]]


class TelegramBotInterface:
    """Telegram layer for notifications and watch-list commands.

    Implements the :class:`~coin_watchdog.interfaces.sink.Notifier` protocol, so
    fatal stream errors and connection messages reach the operator's chat.
    Commands go through the :class:`~coin_watchdog.watch.provider.WatchProvider`
    control plane; the bot never touches watch loops directly.
    """

    def __init__(
        self,
        *,
        token: str,
        chat_id: int,
        provider: Any = None,
        application: Application | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._application = application or Application.builder().token(token).build()
        self._chat_id = chat_id
        self._provider = provider
        self._logger = logger or LOGGER
        self._running = False
        self._register_handlers()

    def bind(self, provider: Any) -> None:
        self._provider = provider

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self._running:
            return
        await self._application.initialize()
        await self._application.start()
        if self._application.updater is not None:
            await self._application.updater.start_polling(drop_pending_updates=True)
        self._running = True
        self._logger.info("Telegram bot polling started")

    async def stop(self) -> None:
        if not self._running:
            return
        if self._application.updater is not None:
            await self._application.updater.stop()
        await self._application.stop()
        await self._application.shutdown()
        self._running = False
        self._logger.info("Telegram bot polling stopped")

    # ------------------------------------------------------------------
    # Notifier protocol
    # ------------------------------------------------------------------
    async def info(self, message: str) -> None:
        self._logger.info(message, extra={"notification": "info"})
        await self._send_message(f"ℹ️ {message}")

    async def warning(self, message: str) -> None:
        self._logger.warning(message, extra={"notification": "warning"})
        await self._send_message(f"⚠️ {message}")

    async def error(self, message: str) -> None:
        self._logger.error(message, extra={"notification": "error"})
        await self._send_message(f"❌ {message}")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    def _register_handlers(self) -> None:
        self._application.add_handler(CommandHandler("add", self._wrap(self._cmd_add)))
        self._application.add_handler(CommandHandler("remove", self._wrap(self._cmd_remove)))
        self._application.add_handler(CommandHandler("search", self._wrap(self._cmd_search)))
        self._application.add_handler(CommandHandler("prices", self._wrap(self._cmd_prices)))
        self._application.add_handler(CommandHandler("positions", self._wrap(self._cmd_positions)))
        self._application.add_handler(CommandHandler("refresh", self._wrap(self._cmd_refresh)))

    def _wrap(self, handler: Handler) -> Handler:
        async def wrapped(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
            if not self._authorize(update):
                return
            if self._provider is None:
                await self._reply(update, "Watcher is not ready yet")
                return
            try:
                await handler(update, context)
            except Exception as exc:  # pragma: no cover - defensive logging
                self._logger.exception("Telegram handler failed", exc_info=exc)
                await self._reply(update, "Command failed – check logs")

        return wrapped

    def _authorize(self, update: Update) -> bool:
        chat = update.effective_chat
        if chat is None or chat.id != self._chat_id:
            self._logger.warning("Unauthorized Telegram chat", extra={"chat_id": getattr(chat, "id", None)})
            return False
        return True

    async def _cmd_add(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        symbol = _single_arg(context.args)
        if not symbol:
            await self._reply(update, "Usage: /add <symbol>, e.g. /add BTC/USDT")
            return
        if await self._provider.add_symbol(symbol):
            await self._reply(update, f"Watching {symbol}")
        else:
            await self._reply(update, f"{symbol} is already watched or not listed on {self._provider.exchange_id}")

    async def _cmd_remove(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        symbol = _single_arg(context.args)
        if not symbol:
            await self._reply(update, "Usage: /remove <symbol>")
            return
        removed = await self._provider.remove_symbol(symbol)
        await self._reply(update, f"Stopped watching {symbol}" if removed else f"{symbol} was not watched")

    async def _cmd_search(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = _single_arg(context.args)
        if not query:
            await self._reply(update, "Usage: /search <query>")
            return
        results = self._provider.search(query)
        if not results:
            await self._reply(update, f"No USDT markets match '{query}'")
            return
        lines = [f"{result.symbol}{' (perp)' if result.is_perp else ''}" for result in results[:20]]
        if len(results) > 20:
            lines.append(f"... {len(results) - 20} more")
        await self._reply(update, "\n".join(lines))

    async def _cmd_prices(self, update: Update, _: ContextTypes.DEFAULT_TYPE) -> None:
        await self._reply(update, format_prices(self._provider.prices()))

    async def _cmd_positions(self, update: Update, _: ContextTypes.DEFAULT_TYPE) -> None:
        await self._reply(update, format_positions(self._provider.current_positions()))

    async def _cmd_refresh(self, update: Update, _: ContextTypes.DEFAULT_TYPE) -> None:
        await self._reply(update, "Reconnecting...")
        await self._provider.reset()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _reply(self, update: Update, text: str) -> None:
        if not update.effective_chat:
            return
        try:
            await update.effective_chat.send_message(text)
        except TelegramError as exc:  # pragma: no cover - depends on Telegram availability
            self._logger.warning("Failed to reply in chat", exc_info=exc)

    async def _send_message(self, text: str) -> None:
        if not text or not self._chat_id:
            return
        try:
            await self._application.bot.send_message(chat_id=self._chat_id, text=text)
        except TelegramError as exc:  # pragma: no cover - depends on Telegram availability
            self._logger.warning("Failed to send Telegram message", exc_info=exc)


def _single_arg(args: Sequence[str] | None) -> str:
    if not args:
        return ""
    return args[0].strip()


def format_prices(tickers: Mapping[str, Ticker]) -> str:
    if not tickers:
        return "No symbols watched"
    lines = []
    for symbol, ticker in tickers.items():
        if ticker.last == 0:
            lines.append(f"{symbol}: waiting for data")
            continue
        label = f"{symbol} Perp" if ticker.is_perp else symbol
        lines.append(f"{label}: {ticker.last:g} ({ticker.percentage:+.2f}%)")
    return "\n".join(lines)


def format_positions(positions: Sequence[Position]) -> str:
    if not positions:
        return "No open positions"
    lines = []
    for position in positions:
        side = position.side.value.upper() if position.side else "?"
        margin = position.margin_mode.value if position.margin_mode else "-"
        leverage = f"{position.leverage:g}x" if position.leverage else "-"
        pnl = position.unrealized_pnl or 0.0
        pnl_pct = position.percentage or 0.0
        lines.append(
            f"{position.display_symbol} {side} {margin} {leverage} "
            f"size={position.contracts:g} entry={position.entry_price or 0:.2f} "
            f"mark={position.mark_price or 0:.2f} liq={position.liquidation_price or 0:.2f} "
            f"pnl={pnl:+.2f} ({pnl_pct:+.2f}%)"
        )
    return "\n".join(lines)


__all__ = ["TelegramBotInterface", "format_positions", "format_prices"]
