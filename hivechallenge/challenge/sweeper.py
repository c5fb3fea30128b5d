"""
Expiry sweeper for HiveChallenge.
"""

import asyncio
from typing import Optional
import structlog

from ..database.models import Challenge, ChallengeState
from ..errors import Conflict, NotFound, StorageError
from ..utils.retry import call_with_retry
from ..utils.time import Clock, utcnow
from .index import VisibilityIndex
from .notifications import ChallengeEvent, NotificationDispatcher
from .store import ChallengeStore

logger = structlog.get_logger(__name__)


class ExpirySweeper:
    """Retires OPEN challenges whose expiration time has passed.

    Any number of sweepers may run against the same store: the conditional
    transition makes sure each challenge is expired at most once, and losing
    to an accept or cancel is not an error.
    """

    def __init__(self, store: ChallengeStore, index: VisibilityIndex,
                 dispatcher: NotificationDispatcher, clock: Clock = utcnow,
                 batch_size: int = 100, retry_attempts: int = 3, retry_backoff: float = 0.2):
        self.store = store
        self.index = index
        self.dispatcher = dispatcher
        self.clock = clock
        self.batch_size = batch_size
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    async def sweep_once(self) -> int:
        """Run one pass and return how many challenges this pass expired."""
        now = self.clock()
        expired_count = 0
        cursor: Optional[str] = None

        while True:
            page = await self._retry(self.store.list_expirable, now, cursor, self.batch_size)
            for challenge in page.items:
                if await self._expire(challenge):
                    expired_count += 1
            if page.next_cursor is None:
                break
            cursor = page.next_cursor

        if expired_count:
            logger.info("Expired challenges", count=expired_count)
        return expired_count

    async def _expire(self, challenge: Challenge) -> bool:
        attempts = 0

        async def expire_once() -> Challenge:
            nonlocal attempts
            attempts += 1
            return await self.store.transition(
                challenge.id, ChallengeState.OPEN, ChallengeState.EXPIRED
            )

        try:
            expired = await self._retry(expire_once)
        except Conflict as e:
            if attempts > 1 and e.actual == ChallengeState.EXPIRED:
                # An earlier attempt landed but its reply was lost
                logger.info("Expiry confirmed on retry", challenge_id=challenge.id)
                expired = e.challenge
            else:
                # Accepted, cancelled or expired by another sweeper first
                logger.debug("Challenge already resolved", challenge_id=challenge.id, state=e.actual)
                self.index.remove(challenge.id)
                return False
        except NotFound:
            logger.warning("Expirable challenge vanished", challenge_id=challenge.id)
            return False
        except StorageError as e:
            logger.error("Failed to expire challenge", challenge_id=challenge.id, error=str(e))
            return False

        self.index.remove(expired.id)
        self.dispatcher.emit(ChallengeEvent.EXPIRED, expired)
        logger.info("Challenge expired", challenge_id=expired.id)
        return True

    async def _retry(self, func, *args):
        return await call_with_retry(
            func, *args, max_attempts=self.retry_attempts, backoff_factor=self.retry_backoff
        )

    async def run(self, interval: float, stop_event: asyncio.Event):
        """Sweep every ``interval`` seconds until ``stop_event`` is set."""
        while not stop_event.is_set():
            try:
                await self.sweep_once()
            except StorageError as e:
                logger.error("Error in expiry sweep", error=str(e))
            except Exception as e:
                logger.error("Unexpected error in expiry sweep", error=str(e), exc_info=True)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
