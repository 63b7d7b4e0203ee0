# src/xbridge/adapters/telegram/notifier.py
"""
Operator Alerts - Telegram and Log Notifiers

This module delivers operator alerts (intents that gave up, payouts left
unconfirmed) to a Telegram chat through python-telegram-bot. When no bot
token is configured, alerts go to the log only.

Alert delivery never blocks or fails settlement: Telegram errors are logged.

Files that USE this module:
- xbridge.app (selects the notifier from settings)
- tests.test_notifier (unit tests)

Files that this module USES:
- xbridge.adapters.formatting.formatter (alert_message)
"""
from __future__ import annotations

import asyncio
import logging

from telegram import Bot
from telegram.error import RetryAfter, TelegramError, TimedOut

from xbridge.adapters.formatting.formatter import alert_message

logger = logging.getLogger(__name__)


class LoggingNotifier:
    """Writes alerts to the log at WARNING level."""

    async def alert(self, title: str, body: str) -> None:
        logger.warning("ALERT %s: %s", title, body)


class TelegramNotifier:
    """
    Sends alerts to one Telegram chat.

    Args:
        token: Bot token
        chat_id: Operator chat or channel id
        bot: Pre-built Bot (tests)
    """

    def __init__(self, token: str, chat_id: str, bot: Bot | None = None):
        self.chat_id = chat_id
        self.bot = bot or Bot(token)

    async def alert(self, title: str, body: str) -> None:
        text = alert_message(title, body)
        # Alerts are also logged in case Telegram is unreachable
        logger.warning("ALERT %s: %s", title, body)
        try:
            try:
                await self.bot.send_message(chat_id=self.chat_id, text=text)
            except RetryAfter as e:
                logger.warning("Telegram rate limit (429): retry after %s seconds", e.retry_after)
                retry_after = e.retry_after
                if not isinstance(retry_after, (int, float)):
                    retry_after = retry_after.total_seconds()
                await asyncio.sleep(float(retry_after) + 1)
                await self.bot.send_message(chat_id=self.chat_id, text=text)
            logger.info("Alert sent to Telegram chat %s", self.chat_id)
        except TimedOut:
            logger.error("Telegram request timed out, alert not delivered: %s", title)
        except TelegramError as e:
            logger.error("Failed to send Telegram alert '%s': %s", title, e)

    async def start(self) -> None:
        """Initialize the bot's HTTP session."""
        await self.bot.initialize()
        logger.info("Telegram alerts enabled for chat %s", self.chat_id)

    async def stop(self) -> None:
        await self.bot.shutdown()
