"""Telegram notification adapter — implements NotificationPort.

Alarm rounds arrive as regular (sound-enabled) Telegram messages, which is
the closest a chat bot gets to a ringing phone.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.error import TelegramError

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, user_id: int, text: str) -> None:
        try:
            await self._bot.send_message(chat_id=user_id, text=text, disable_notification=False)
        except TelegramError as exc:
            logger.warning("Telegram delivery to %d failed: %s", user_id, exc)
            raise
