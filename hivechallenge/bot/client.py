"""
Telegram notifier for HiveChallenge.
"""

from typing import Optional
from pyrogram import Client
from pyrogram.errors import AuthKeyInvalid, RPCError, UserDeactivated
import structlog

from ..challenge.notifications import ChallengeNotification, Notifier
from ..config import AppConfig, get_config
from ..utils.time import Clock, utcnow
from .utils import format_notification

logger = structlog.get_logger(__name__)


class TelegramNotifier(Notifier):
    """Posts challenge lifecycle events to a Telegram chat."""

    def __init__(self, config: Optional[AppConfig] = None, client: Optional[Client] = None,
                 clock: Clock = utcnow):
        self.config = config or get_config()
        self.client = client
        self.clock = clock
        self.chat_id = self.config.notification_chat_id
        self.is_running = False

    async def start(self):
        """Start the bot session."""
        if self.client is None:
            self.client = Client(
                "hivechallenge_bot",
                api_id=self.config.api_id,
                api_hash=self.config.api_hash,
                bot_token=self.config.bot_token,
                in_memory=True,
            )

        try:
            await self.client.start()
            self.is_running = True

            bot_info = await self.client.get_me()
            logger.info("Notifier bot started",
                        bot_id=bot_info.id,
                        bot_username=bot_info.username,
                        chat_id=self.chat_id)

        except (AuthKeyInvalid, UserDeactivated) as e:
            logger.error("Bot authentication failed", error=str(e))
            raise

    async def stop(self):
        """Stop the bot session."""
        if self.client and self.is_running:
            await self.client.stop()
            self.is_running = False
            logger.info("Notifier bot stopped")

    async def notify(self, notification: ChallengeNotification):
        if not self.is_running:
            logger.debug("Notifier bot not running, dropping event",
                         challenge_id=notification.challenge_id)
            return

        # The chat is shared; private challenges stay out of it
        if not notification.public:
            return

        text = format_notification(notification, now=self.clock())
        try:
            await self.client.send_message(self.chat_id, text)
        except RPCError as e:
            logger.warning("Failed to send notification", error=str(e),
                           challenge_id=notification.challenge_id)
            raise
