"""
Challenge lifecycle notifications.
"""

import asyncio
from datetime import datetime
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional, Set
import structlog
from pydantic import BaseModel, ConfigDict

from ..database.models import Challenge, GameType

logger = structlog.get_logger(__name__)


class ChallengeEvent(str, Enum):
    """Lifecycle events reported to the notifier."""
    CREATED = "created"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class ChallengeNotification(BaseModel):
    """Payload delivered for a lifecycle event."""

    model_config = ConfigDict(frozen=True)

    event: ChallengeEvent
    challenge_id: str
    challenger_id: str
    acceptor_id: Optional[str] = None
    game_id: Optional[str] = None
    game_type: Optional[GameType] = None
    ranked: bool = False
    public: bool = False
    expiration_time: Optional[datetime] = None

    @classmethod
    def for_challenge(cls, event: ChallengeEvent, challenge: Challenge,
                      game_id: Optional[str] = None) -> "ChallengeNotification":
        return cls(
            event=event,
            challenge_id=challenge.id,
            challenger_id=challenge.challenger_id,
            acceptor_id=challenge.acceptor_id,
            game_id=game_id or challenge.game_id,
            game_type=challenge.game_type,
            ranked=challenge.ranked,
            public=challenge.public,
            expiration_time=challenge.expires_at,
        )


class Notifier(ABC):
    """Receives lifecycle events."""

    @abstractmethod
    async def notify(self, notification: ChallengeNotification):
        """Deliver one notification."""


class LoggingNotifier(Notifier):
    """Notifier that only writes the event to the log."""

    async def notify(self, notification: ChallengeNotification):
        data = notification.model_dump(mode="json")
        logger.info("Challenge event", lifecycle_event=data.pop("event"), **data)


class NotificationDispatcher:
    """Fire-and-forget delivery.

    Each delivery runs as its own task with a timeout. Failures are logged and
    dropped; they never reach the lifecycle operation that emitted the event.
    """

    def __init__(self, notifier: Notifier, timeout: float = 5.0):
        self.notifier = notifier
        self.timeout = timeout
        self._pending: Set[asyncio.Task] = set()

    def emit(self, event: ChallengeEvent, challenge: Challenge, game_id: Optional[str] = None):
        """Schedule delivery of ``event`` for ``challenge``."""
        notification = ChallengeNotification.for_challenge(event, challenge, game_id)
        task = asyncio.create_task(self._deliver(notification))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, notification: ChallengeNotification):
        try:
            await asyncio.wait_for(self.notifier.notify(notification), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Notification timed out", lifecycle_event=notification.event,
                           challenge_id=notification.challenge_id)
        except Exception as e:
            logger.warning("Notification failed", lifecycle_event=notification.event,
                           challenge_id=notification.challenge_id, error=str(e))

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def drain(self):
        """Wait for in-flight deliveries."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
