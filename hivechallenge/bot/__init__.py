"""
Telegram bot integration for HiveChallenge.
"""

from .client import TelegramNotifier

__all__ = ["TelegramNotifier"]
