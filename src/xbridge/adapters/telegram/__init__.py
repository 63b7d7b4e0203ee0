# src/xbridge/adapters/telegram/__init__.py
"""
Telegram Adapters - Operator Alerts

This package sends operator alerts through python-telegram-bot.
"""

from xbridge.adapters.telegram.notifier import LoggingNotifier, TelegramNotifier

__all__ = ["LoggingNotifier", "TelegramNotifier"]
