"""
Challenge manager for HiveChallenge.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Optional, List
import structlog
from pydantic import ValidationError as PydanticValidationError

from ..config import AppConfig, get_config
from ..database.models import Challenge, ColorChoice, GameType
from ..errors import ValidationError
from ..utils.time import Clock, utcnow
from .arbiter import AcceptanceArbiter
from .collaborators import GameRef, GameSpawner, UserDirectory
from .index import ChallengeFilter, VisibilityIndex
from .notifications import ChallengeEvent, NotificationDispatcher, Notifier
from .store import ChallengePage, ChallengeStore
from .sweeper import ExpirySweeper

logger = structlog.get_logger(__name__)


class ChallengeManager:
    """Manages the challenge lifecycle from offer to game."""

    def __init__(self, store: ChallengeStore, spawner: GameSpawner, notifier: Notifier,
                 users: Optional[UserDirectory] = None, clock: Clock = utcnow,
                 config: Optional[AppConfig] = None):
        self.config = config or get_config()
        self.clock = clock
        self.store = store

        retry = dict(retry_attempts=self.config.read_retry_attempts,
                     retry_backoff=self.config.retry_backoff)
        self.dispatcher = NotificationDispatcher(notifier, timeout=self.config.notification_timeout)
        self.index = VisibilityIndex(store, clock=clock, page_size=self.config.index_page_size, **retry)
        self.sweeper = ExpirySweeper(store, self.index, self.dispatcher, clock=clock,
                                     batch_size=self.config.sweep_batch_size, **retry)
        self.arbiter = AcceptanceArbiter(store, self.index, spawner, self.dispatcher,
                                         users=users or store.users, clock=clock, **retry)

        # Background tasks
        self._stop_event = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    async def create_challenge(self, challenger_id: str, game_type: GameType, ranked: bool,
                               public: bool, tournament_queen_rule: bool,
                               color_choice: ColorChoice = ColorChoice.RANDOM,
                               expiration_time: Optional[datetime] = None,
                               ttl: Optional[int] = None) -> Challenge:
        """Create a new challenge.

        ``expiration_time`` wins over ``ttl``; with neither, the configured
        default lifetime applies, and without that the challenge never expires.
        """
        now = self.clock()
        if expiration_time is None:
            ttl = ttl if ttl is not None else self.config.default_challenge_ttl
            if ttl is not None:
                expiration_time = now + timedelta(seconds=ttl)

        try:
            challenge = Challenge(
                challenger_id=challenger_id,
                game_type=game_type,
                ranked=ranked,
                public=public,
                tournament_queen_rule=tournament_queen_rule,
                color_choice=color_choice,
                created_at=now,
                expiration_time=expiration_time,
            )
        except PydanticValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"]) or None
            raise ValidationError(f"Invalid challenge: {error['msg']}", field=field) from e

        await self.store.create(challenge)
        if challenge.public:
            self.index.add(challenge)
        self.dispatcher.emit(ChallengeEvent.CREATED, challenge)

        logger.info("Challenge created", challenge_id=challenge.id, challenger_id=challenger_id,
                    game_type=challenge.game_type, ranked=ranked, public=public,
                    expiration_time=expiration_time)
        return challenge

    async def get_challenge(self, challenge_id: str) -> Challenge:
        """Get challenge by ID."""
        return await self.store.get(challenge_id)

    def list_public(self, game_type: Optional[GameType] = None, ranked: Optional[bool] = None,
                    cursor: Optional[str] = None, limit: int = 50) -> ChallengePage:
        """List open public challenges."""
        return self.index.list(ChallengeFilter(game_type=game_type, ranked=ranked), cursor, limit)

    async def accept_challenge(self, challenge_id: str, acceptor_id: str) -> GameRef:
        """Accept a challenge; see ``AcceptanceArbiter.accept``."""
        return await self.arbiter.accept(challenge_id, acceptor_id)

    async def cancel_challenge(self, challenge_id: str, requesting_user: str) -> Challenge:
        """Cancel a challenge on behalf of its challenger."""
        return await self.arbiter.cancel(challenge_id, requesting_user)

    async def respawn(self, challenge_id: str) -> GameRef:
        """Finish an accept whose game spawn failed."""
        return await self.arbiter.respawn(challenge_id)

    async def expire_old_challenges(self) -> int:
        """Expire challenges past their expiration time."""
        return await self.sweeper.sweep_once()

    async def reconcile_index(self) -> int:
        """Rebuild the visibility index from the store."""
        return await self.index.reconcile()

    async def start(self):
        """Rebuild the index and start the sweeper and reconciler tasks."""
        if self._tasks:
            return
        self._stop_event.clear()
        await self.reconcile_index()
        self._tasks = [
            asyncio.create_task(self.sweeper.run(self.config.sweep_interval, self._stop_event)),
            asyncio.create_task(self.index.run(self.config.index_reconcile_interval, self._stop_event)),
        ]
        logger.info("Challenge manager started", sweep_interval=self.config.sweep_interval,
                    reconcile_interval=self.config.index_reconcile_interval)

    async def stop(self):
        """Stop background tasks and flush notifications."""
        self._stop_event.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks = []
        await self.dispatcher.drain()
        logger.info("Challenge manager stopped")

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)
