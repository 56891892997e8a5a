"""User-visible alerts (permission warnings, reconcile summaries)."""

import logging
from typing import Protocol

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError

logger = logging.getLogger(__name__)


class AlertSink(Protocol):
    async def alert(self, title: str, message: str) -> None:
        ...


class LogAlertSink:
    """Default sink: alerts only go to the log."""

    async def alert(self, title: str, message: str) -> None:
        logger.warning(f"{title}: {message}")


class TelegramAlertSink:
    """Deliver alerts to a Telegram chat."""

    def __init__(self, bot: Bot, chat_id: int | str):
        self.bot = bot
        self.chat_id = chat_id

    async def alert(self, title: str, message: str) -> None:
        try:
            await self.bot.send_message(
                chat_id=self.chat_id,
                text=f"<b>{title}</b>\n\n{message}",
                parse_mode=ParseMode.HTML,
            )
        except TelegramError as e:
            # An undeliverable alert must never break a reconciliation pass
            logger.error(f"Failed to send alert '{title}': {e}")
