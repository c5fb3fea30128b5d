"""
Main entry point for the HiveChallenge lifecycle service.
"""

import asyncio
import signal
import sys
from typing import Optional
import structlog

from .config import get_config, setup_directories
from .utils.logging import setup_logging
from .bot import TelegramNotifier
from .challenge import ChallengeManager, LoggingNotifier, Notifier
from .database import ChallengeOps, GameOps, UserOps, get_database_manager, close_database

logger = structlog.get_logger(__name__)


class HiveChallengeApp:
    """Main application class."""

    def __init__(self):
        self.config = get_config()
        self.manager: Optional[ChallengeManager] = None
        self.telegram: Optional[TelegramNotifier] = None
        self._shutdown_event = asyncio.Event()

    async def _build_notifier(self) -> Notifier:
        if not self.config.telegram_enabled:
            logger.info("Telegram notifier not configured, logging events only")
            return LoggingNotifier()

        self.telegram = TelegramNotifier(self.config)
        await self.telegram.start()
        return self.telegram

    async def startup(self) -> bool:
        """Start up the application."""
        setup_logging()
        setup_directories()
        logger.info("Starting HiveChallenge")

        try:
            db_manager = await get_database_manager()
            database = db_manager.get_database()
            users = UserOps(database)
            store = ChallengeOps(users, database)
            notifier = await self._build_notifier()

            self.manager = ChallengeManager(store, GameOps(database), notifier, users=users,
                                            config=self.config)
            await self.manager.start()

        except Exception as e:
            logger.error("Failed to start application", error=str(e))
            return False

        logger.info("HiveChallenge started successfully")
        return True

    async def shutdown(self):
        """Shutdown the application."""
        logger.info("Shutting down HiveChallenge")

        try:
            if self.manager:
                await self.manager.stop()
            if self.telegram:
                await self.telegram.stop()
        except Exception as e:
            logger.error("Error during shutdown", error=str(e))
        finally:
            await close_database()

        logger.info("HiveChallenge shutdown complete")

    def request_shutdown(self):
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def run(self) -> bool:
        """Run the application until a shutdown signal arrives."""
        loop = asyncio.get_running_loop()
        signals = (signal.SIGINT, signal.SIGTERM)
        for sig in signals:
            loop.add_signal_handler(sig, self.request_shutdown)

        try:
            if not await self.startup():
                return False
            await self._shutdown_event.wait()
            return True
        finally:
            await self.shutdown()
            for sig in signals:
                loop.remove_signal_handler(sig)


async def main():
    """Main entry point."""
    app = HiveChallengeApp()
    success = await app.run()
    sys.exit(0 if success else 1)


def cli_main():
    """CLI entry point for console_scripts."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("Application interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    cli_main()
