"""Telegram notification handler."""
import os
from typing import Optional
import structlog
from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError

from smartflow.models import BacktestResult, Signal

logger = structlog.get_logger()


class TelegramNotifier:
    """Sends signal alerts and backtest summaries to one or more Telegram chats."""

    def __init__(self, bot_token: Optional[str] = None, chat_ids: Optional[str] = None):
        self.bot_token = bot_token or os.getenv("TELEGRAM_BOT_TOKEN")
        chat_ids_str = chat_ids or os.getenv("TELEGRAM_CHAT_IDS") or os.getenv("TELEGRAM_CHAT_ID")

        # Comma separated: "123,456,789"
        self.chat_ids: list[str] = []
        if chat_ids_str:
            self.chat_ids = [cid.strip() for cid in chat_ids_str.split(",") if cid.strip()]

        self._bot: Optional[Bot] = None

        if not self.is_configured:
            logger.warning("telegram_not_configured")
        else:
            logger.info("telegram_configured", chats=len(self.chat_ids))

    @property
    def bot(self) -> Bot:
        if self._bot is None:
            self._bot = Bot(token=self.bot_token)
        return self._bot

    @property
    def is_configured(self) -> bool:
        return bool(self.bot_token and self.chat_ids)

    async def _send_to_all(self, text: str) -> int:
        """Send to every configured chat. Returns the number of successful sends."""
        success_count = 0
        for chat_id in self.chat_ids:
            try:
                await self.bot.send_message(
                    chat_id=chat_id,
                    text=text,
                    parse_mode=ParseMode.HTML,
                    disable_web_page_preview=True,
                )
                success_count += 1
            except TelegramError as e:
                logger.warning("telegram_send_failed", chat_id=chat_id, error=str(e))
        return success_count

    async def send_signal(self, signal: Signal) -> bool:
        if not self.is_configured:
            return False
        sent = await self._send_to_all(format_signal(signal))
        logger.info("signal_alert_sent", symbol=signal.symbol, sent=sent, chats=len(self.chat_ids))
        return sent > 0

    async def send_backtest_summary(self, result: BacktestResult) -> bool:
        if not self.is_configured:
            return False
        sent = await self._send_to_all(format_backtest(result))
        return sent > 0

    async def send_startup_message(self, chains: list[str]):
        if not self.is_configured:
            return
        text = (
            "🤖 <b>SmartFlow Monitor Started</b>\n\n"
            f"Watching smart money on: {', '.join(chains)}"
        )
        await self._send_to_all(text)


def format_signal(signal: Signal) -> str:
    """Format a BUY signal for Telegram."""
    ladder = "\n".join(
        f"  • TP{i}: ${level.price:.6f} ({level.multiplier:g}x, exit {level.percent:g}%)"
        for i, level in enumerate(signal.take_profits, start=1)
    )
    fib = signal.fibonacci
    return (
        f"🎯 <b>BUY {signal.symbol}</b> ({signal.chain})\n\n"
        f"<b>Token:</b> <code>{signal.token_address}</code>\n"
        f"<b>Entry:</b> ${signal.entry_price_usd:.6f}\n"
        f"<b>First SM entry:</b> ${signal.first_smart_money_entry_price:.6f}\n"
        f"<b>Smart money:</b> {signal.smart_money_count} wallets, "
        f"${signal.total_smart_money_volume_usd:,.0f}\n"
        f"<b>Flow score:</b> {signal.flow_score}/100\n\n"
        f"<b>Take profit:</b>\n{ladder}\n\n"
        f"<b>Fibonacci:</b> 1.618 ${fib.fib_618:.6f} | 2.618 ${fib.fib_1618:.6f}\n\n"
        "⚠️ <i>Signal only. DYOR.</i>"
    )


def format_backtest(result: BacktestResult) -> str:
    return (
        f"📊 <b>Backtest: {result.strategy_name}</b> ({result.chain})\n\n"
        f"• Trades: {result.total_signals} ({result.winning_trades}W / {result.losing_trades}L)\n"
        f"• Win rate: {result.win_rate:.1f}%\n"
        f"• Avg return: {result.avg_return_percent:.2f}%\n"
        f"• Max drawdown: {result.max_drawdown_percent:.2f}%\n"
        f"• Avg hold: {result.avg_hold_time_hours:.1f}h"
    )
