# tests/test_notifier.py
"""
Notifier Tests - Telegram and Log Operator Alerts

This module contains unit tests for the alert notifiers, using a mocked
python-telegram-bot Bot.

Files that USE this module:
- pytest (test runner executes these tests)

Files that this module USES:
- xbridge.adapters.telegram.notifier (TelegramNotifier, LoggingNotifier)
- unittest.mock (AsyncMock bot)
- pytest (testing framework)
"""
import asyncio  # Drives async alerts inside synchronous tests
import logging  # Log capture assertions

from unittest.mock import AsyncMock, patch  # Mocked Bot and sleep

from telegram.error import RetryAfter, TelegramError, TimedOut

from xbridge.adapters.telegram import LoggingNotifier, TelegramNotifier


def make_notifier():
    bot = AsyncMock()
    return TelegramNotifier("token", "-100123", bot=bot), bot


class TestTelegramNotifier:
    def test_alert_sends_message(self):
        notifier, bot = make_notifier()
        asyncio.run(notifier.alert("Intent FAILED", "details"))

        bot.send_message.assert_awaited_once()
        kwargs = bot.send_message.await_args.kwargs
        assert kwargs["chat_id"] == "-100123"
        assert "Intent FAILED" in kwargs["text"]
        assert "details" in kwargs["text"]

    def test_retry_after_rate_limit(self):
        notifier, bot = make_notifier()
        bot.send_message.side_effect = [RetryAfter(3), None]

        with patch("xbridge.adapters.telegram.notifier.asyncio.sleep", new=AsyncMock()) as sleep:
            asyncio.run(notifier.alert("title", "body"))

        assert bot.send_message.await_count == 2
        sleep.assert_awaited_once()

    def test_timeout_is_logged_not_raised(self, caplog):
        notifier, bot = make_notifier()
        bot.send_message.side_effect = TimedOut()

        with caplog.at_level(logging.ERROR):
            asyncio.run(notifier.alert("title", "body"))

        assert "timed out" in caplog.text

    def test_telegram_error_is_logged_not_raised(self, caplog):
        notifier, bot = make_notifier()
        bot.send_message.side_effect = TelegramError("Chat not found")

        with caplog.at_level(logging.ERROR):
            asyncio.run(notifier.alert("title", "body"))

        assert "Chat not found" in caplog.text

    def test_start_and_stop(self):
        notifier, bot = make_notifier()

        async def lifecycle():
            await notifier.start()
            await notifier.stop()

        asyncio.run(lifecycle())
        bot.initialize.assert_awaited_once()
        bot.shutdown.assert_awaited_once()


class TestLoggingNotifier:
    def test_alert_logged_as_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            asyncio.run(LoggingNotifier().alert("Payout unconfirmed", "intent 42"))
        assert "ALERT Payout unconfirmed: intent 42" in caplog.text
