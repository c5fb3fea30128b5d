"""
Acceptance arbiter for HiveChallenge.
"""

from typing import Optional
import structlog

from ..database.models import Challenge, ChallengeState
from ..errors import Conflict, Rejected, SpawnFailed, StorageError, ValidationError
from ..utils.retry import call_with_retry
from ..utils.time import Clock, utcnow
from .collaborators import GameRef, GameRequest, GameSpawner, UserDirectory
from .index import VisibilityIndex
from .notifications import ChallengeEvent, NotificationDispatcher
from .store import ChallengeStore

logger = structlog.get_logger(__name__)


class AcceptanceArbiter:
    """Turns accept attempts into at most one game per challenge.

    The store's OPEN -> ACCEPTED conditional transition is the linearization
    point: whoever lands it owns spawning the game, everyone else is rejected
    immediately. Accept and cancel transitions are never retried; a caller
    that sees a storage error has to re-read the challenge first.
    """

    def __init__(self, store: ChallengeStore, index: VisibilityIndex, spawner: GameSpawner,
                 dispatcher: NotificationDispatcher, users: Optional[UserDirectory] = None,
                 clock: Clock = utcnow, retry_attempts: int = 3, retry_backoff: float = 0.2):
        self.store = store
        self.index = index
        self.spawner = spawner
        self.dispatcher = dispatcher
        self.users = users
        self.clock = clock
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    async def _read(self, challenge_id: str) -> Challenge:
        return await call_with_retry(
            self.store.get, challenge_id,
            max_attempts=self.retry_attempts, backoff_factor=self.retry_backoff,
        )

    def _precheck(self, challenge: Challenge):
        """Cheap rejection of hopeless attempts; not the correctness boundary."""
        if challenge.state != ChallengeState.OPEN:
            self.index.remove(challenge.id)
            raise Rejected(challenge.id, Rejected.ALREADY_RESOLVED)
        if challenge.is_expired(self.clock()):
            raise Rejected(challenge.id, Rejected.EXPIRED)

    async def accept(self, challenge_id: str, acceptor_id: str) -> GameRef:
        """Accept a challenge and return the spawned game.

        Raises ``Rejected`` when the attempt loses, ``NotFound`` for unknown
        ids and ``SpawnFailed`` when the game could not be created after the
        challenge was already accepted.
        """
        challenge = await self._read(challenge_id)

        if acceptor_id == challenge.challenger_id:
            raise Rejected(challenge_id, Rejected.SELF_ACCEPT)
        self._precheck(challenge)
        if self.users is not None and not await self.users.exists(acceptor_id):
            raise ValidationError(f"Unknown acceptor {acceptor_id}", field="acceptor_id")

        try:
            accepted = await self.store.transition(
                challenge_id, ChallengeState.OPEN, ChallengeState.ACCEPTED,
                {"acceptor_id": acceptor_id},
            )
        except Conflict as e:
            logger.info("Accept lost race", challenge_id=challenge_id,
                        acceptor_id=acceptor_id, state=e.actual)
            self.index.remove(challenge_id)
            raise Rejected(challenge_id, Rejected.ALREADY_RESOLVED) from e

        # From here on this call exclusively owns spawning the game
        self.index.remove(challenge_id)
        logger.info("Challenge accepted", challenge_id=challenge_id, acceptor_id=acceptor_id)

        game = await self._spawn(accepted)
        self.dispatcher.emit(ChallengeEvent.ACCEPTED, accepted, game_id=game.game_id)
        return game

    async def _spawn(self, accepted: Challenge) -> GameRef:
        request = GameRequest(
            challenge_id=accepted.id,
            challenger_id=accepted.challenger_id,
            acceptor_id=accepted.acceptor_id,
            game_type=accepted.game_type,
            ranked=accepted.ranked,
            tournament_queen_rule=accepted.tournament_queen_rule,
            color_choice=accepted.color_choice,
        )
        try:
            game = await self.spawner.spawn(request)
        except Exception as e:
            logger.error("Game spawn failed", challenge_id=accepted.id,
                         acceptor_id=accepted.acceptor_id, error=str(e))
            raise SpawnFailed(accepted.id, accepted.acceptor_id) from e

        try:
            await call_with_retry(
                self.store.attach_game, accepted.id, game.game_id,
                max_attempts=self.retry_attempts, backoff_factor=self.retry_backoff,
            )
        except Conflict as e:
            if e.challenge.game_id != game.game_id:
                logger.warning("Challenge already has a different game", challenge_id=accepted.id,
                               game_id=game.game_id, attached_game_id=e.challenge.game_id)
        except StorageError as e:
            # The game exists; the missing back-reference does not undo the accept
            logger.error("Failed to attach game to challenge", challenge_id=accepted.id,
                         game_id=game.game_id, error=str(e))

        logger.info("Game spawned", challenge_id=accepted.id, game_id=game.game_id)
        return game

    async def respawn(self, challenge_id: str) -> GameRef:
        """Retry spawning for an ACCEPTED challenge left without a game.

        The challenge state is never reverted; this only completes the
        accept that already won.
        """
        challenge = await self._read(challenge_id)
        if challenge.state != ChallengeState.ACCEPTED:
            raise Conflict(challenge, ChallengeState.ACCEPTED)
        if challenge.game_id is not None:
            raise ValidationError(
                f"Challenge {challenge_id} already has game {challenge.game_id}", field="game_id"
            )

        game = await self._spawn(challenge)
        self.dispatcher.emit(ChallengeEvent.ACCEPTED, challenge, game_id=game.game_id)
        return game

    async def cancel(self, challenge_id: str, requesting_user: str) -> Challenge:
        """Cancel an OPEN challenge on behalf of its challenger."""
        challenge = await self._read(challenge_id)
        if requesting_user != challenge.challenger_id:
            raise Rejected(challenge_id, Rejected.NOT_CHALLENGER)

        try:
            cancelled = await self.store.transition(
                challenge_id, ChallengeState.OPEN, ChallengeState.CANCELLED
            )
        except Conflict as e:
            logger.info("Cancel lost race", challenge_id=challenge_id, state=e.actual)
            self.index.remove(challenge_id)
            raise Rejected(challenge_id, Rejected.ALREADY_RESOLVED) from e

        self.index.remove(challenge_id)
        self.dispatcher.emit(ChallengeEvent.CANCELLED, cancelled)
        logger.info("Challenge cancelled", challenge_id=challenge_id)
        return cancelled
