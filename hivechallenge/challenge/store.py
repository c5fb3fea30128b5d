"""
Challenge store contract and in-process backend.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
import structlog

from ..database.models import Challenge, ChallengeState
from ..errors import Conflict, NotFound, ValidationError
from ..utils.time import Clock, utcnow
from .collaborators import UserDirectory
from .state_machine import ChallengeStateMachine

logger = structlog.get_logger(__name__)


@dataclass
class ChallengePage:
    """One page of a scan ordered by challenge id."""
    items: List[Challenge] = field(default_factory=list)
    next_cursor: Optional[str] = None


class ChallengeStore(ABC):
    """Canonical storage for challenges.

    ``transition`` is the only primitive the rest of the system relies on for
    mutual exclusion: it must be atomic per record, also across processes.
    """

    def __init__(self, users: UserDirectory, clock: Clock = utcnow):
        self.users = users
        self.clock = clock

    async def create(self, challenge: Challenge) -> str:
        """Persist a new OPEN challenge and return its id."""
        await self._validate_new(challenge)
        await self._insert(challenge)
        logger.info("Challenge stored", challenge_id=challenge.id,
                    challenger_id=challenge.challenger_id, public=challenge.public)
        return challenge.id

    async def transition(self, challenge_id: str, expected: ChallengeState,
                         new_state: ChallengeState, extra: Optional[dict] = None) -> Challenge:
        """Move a record from ``expected`` to ``new_state`` or raise ``Conflict``.

        A conflicting record is left untouched and returned inside the
        exception with its actual state. That includes asking a terminal
        record to move again, since terminal states have no outgoing edges.
        """
        if not ChallengeStateMachine.can_transition(expected, new_state):
            current = await self.get(challenge_id)
            if current.state == expected and not ChallengeStateMachine.is_terminal(expected):
                raise ValueError(f"Invalid transition {expected.value} -> {new_state.value}")
            logger.info("Transition refused", challenge_id=challenge_id,
                        expected_state=expected, actual_state=current.state, new_state=new_state)
            raise Conflict(current, expected)

        fields = ChallengeStateMachine.transition_fields(new_state, extra)
        fields["state"] = new_state
        fields["resolved_at"] = self.clock()
        return await self._compare_and_set(challenge_id, expected, fields)

    @abstractmethod
    async def get(self, challenge_id: str) -> Challenge:
        """Fetch a challenge or raise ``NotFound``."""

    @abstractmethod
    async def attach_game(self, challenge_id: str, game_id: str) -> Challenge:
        """Record the spawned game on an ACCEPTED challenge that has none yet."""

    @abstractmethod
    async def list_open_public(self, cursor: Optional[str] = None, limit: int = 100) -> ChallengePage:
        """Scan OPEN public challenges, used to rebuild the visibility index."""

    @abstractmethod
    async def list_expirable(self, now: datetime, cursor: Optional[str] = None,
                             limit: int = 100) -> ChallengePage:
        """Scan OPEN challenges whose effective expiry is at or before ``now``."""

    @abstractmethod
    async def _insert(self, challenge: Challenge):
        """Write a validated record; duplicates raise ``ValidationError``."""

    @abstractmethod
    async def _compare_and_set(self, challenge_id: str, expected: ChallengeState,
                               fields: dict) -> Challenge:
        """Atomically apply ``fields`` if the record is in ``expected``."""

    async def _validate_new(self, challenge: Challenge):
        if challenge.state != ChallengeState.OPEN:
            raise ValidationError("New challenges must be open", field="state")
        if challenge.acceptor_id is not None or challenge.game_id is not None:
            raise ValidationError("New challenges cannot carry an acceptor or game", field="acceptor_id")
        if challenge.created_at is None:
            raise ValidationError("created_at is required", field="created_at")
        if not await self.users.exists(challenge.challenger_id):
            raise ValidationError(f"Unknown challenger {challenge.challenger_id}", field="challenger_id")


class MemoryChallengeStore(ChallengeStore):
    """Single-process store; one lock serializes all writes."""

    def __init__(self, users: UserDirectory, clock: Clock = utcnow):
        super().__init__(users, clock)
        self._records: Dict[str, Challenge] = {}
        self._lock = asyncio.Lock()

    async def get(self, challenge_id: str) -> Challenge:
        challenge = self._records.get(challenge_id)
        if challenge is None:
            raise NotFound(challenge_id)
        return challenge

    async def _insert(self, challenge: Challenge):
        async with self._lock:
            if challenge.id in self._records:
                raise ValidationError(f"Duplicate challenge id {challenge.id}", field="id")
            self._records[challenge.id] = challenge

    async def _compare_and_set(self, challenge_id: str, expected: ChallengeState,
                               fields: dict) -> Challenge:
        async with self._lock:
            current = await self.get(challenge_id)
            if current.state != expected:
                raise Conflict(current, expected)
            updated = current.model_copy(update=fields)
            self._records[challenge_id] = updated
            return updated

    async def attach_game(self, challenge_id: str, game_id: str) -> Challenge:
        async with self._lock:
            current = await self.get(challenge_id)
            if current.state != ChallengeState.ACCEPTED or current.game_id is not None:
                raise Conflict(current, ChallengeState.ACCEPTED)
            updated = current.model_copy(update={"game_id": game_id})
            self._records[challenge_id] = updated
            return updated

    def _scan(self, predicate, cursor: Optional[str], limit: int) -> ChallengePage:
        ids = sorted(i for i, c in self._records.items()
                     if (cursor is None or i > cursor) and predicate(c))
        items = [self._records[i] for i in ids[:limit]]
        next_cursor = items[-1].id if len(ids) > limit else None
        return ChallengePage(items=items, next_cursor=next_cursor)

    async def list_open_public(self, cursor: Optional[str] = None, limit: int = 100) -> ChallengePage:
        return self._scan(
            lambda c: c.public and c.state == ChallengeState.OPEN, cursor, limit
        )

    async def list_expirable(self, now: datetime, cursor: Optional[str] = None,
                             limit: int = 100) -> ChallengePage:
        return self._scan(
            lambda c: c.state == ChallengeState.OPEN and c.is_expired(now), cursor, limit
        )
