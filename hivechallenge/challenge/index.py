"""
Visibility index: the discoverable set of open public challenges.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, Optional, Set
import structlog

from ..database.models import Challenge, ChallengeState, GameType
from ..errors import StorageError
from ..utils.retry import call_with_retry
from ..utils.time import Clock, utcnow
from .store import ChallengePage, ChallengeStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ChallengeFilter:
    """Listing filter; ``None`` matches anything."""
    game_type: Optional[GameType] = None
    ranked: Optional[bool] = None

    def matches(self, challenge: Challenge) -> bool:
        if self.game_type is not None and challenge.game_type != self.game_type:
            return False
        if self.ranked is not None and challenge.ranked != self.ranked:
            return False
        return True


class VisibilityIndex:
    """Eventually consistent projection of the store's open public challenges.

    Never authoritative. ``add`` and ``remove`` are idempotent and tolerate
    arriving out of order: a removed id is remembered so a late ``add`` of an
    older OPEN snapshot does not bring it back. Drift left by crashes between a
    store transition and the matching index update is repaired by
    ``reconcile``. Expired entries are hidden at read time even before the
    sweeper retires them.
    """

    def __init__(self, store: ChallengeStore, clock: Clock = utcnow, page_size: int = 200,
                 retry_attempts: int = 3, retry_backoff: float = 0.2):
        self.store = store
        self.clock = clock
        self.page_size = page_size
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

        self._entries: Dict[str, Challenge] = {}
        self._retired: Set[str] = set()
        self._reconcile_lock = asyncio.Lock()

        # Updates seen while a rebuild is scanning the store
        self._rebuilding = False
        self._added_during_rebuild: Dict[str, Challenge] = {}
        self._removed_during_rebuild: Set[str] = set()

    def add(self, challenge: Challenge):
        """Index a challenge snapshot; non-listable snapshots are dropped instead."""
        if not challenge.public:
            self._entries.pop(challenge.id, None)
            return
        if challenge.state != ChallengeState.OPEN:
            self.remove(challenge.id)
            return
        if challenge.id in self._retired:
            logger.debug("Ignoring add of retired challenge", challenge_id=challenge.id)
            return

        self._entries[challenge.id] = challenge
        if self._rebuilding:
            self._added_during_rebuild[challenge.id] = challenge

    def remove(self, challenge_id: str):
        """Drop a challenge from the index; safe to repeat."""
        self._entries.pop(challenge_id, None)
        self._retired.add(challenge_id)
        if self._rebuilding:
            self._removed_during_rebuild.add(challenge_id)
            self._added_during_rebuild.pop(challenge_id, None)

    def __contains__(self, challenge_id: str) -> bool:
        return challenge_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def list(self, criteria: Optional[ChallengeFilter] = None, cursor: Optional[str] = None,
             limit: int = 50) -> ChallengePage:
        """List open public challenges ordered by id."""
        criteria = criteria or ChallengeFilter()
        now = self.clock()
        ids = sorted(
            challenge_id for challenge_id, challenge in self._entries.items()
            if (cursor is None or challenge_id > cursor)
            and challenge.is_listable(now)
            and criteria.matches(challenge)
        )
        items = [self._entries[i] for i in ids[:limit]]
        next_cursor = items[-1].id if len(ids) > limit else None
        return ChallengePage(items=items, next_cursor=next_cursor)

    async def reconcile(self) -> int:
        """Rebuild the index from the store and return the number of entries."""
        async with self._reconcile_lock:
            self._rebuilding = True
            self._added_during_rebuild = {}
            self._removed_during_rebuild = set()
            try:
                fresh: Dict[str, Challenge] = {}
                cursor = None
                while True:
                    page = await call_with_retry(
                        self.store.list_open_public, cursor, self.page_size,
                        max_attempts=self.retry_attempts, backoff_factor=self.retry_backoff,
                    )
                    for challenge in page.items:
                        fresh[challenge.id] = challenge
                    if page.next_cursor is None:
                        break
                    cursor = page.next_cursor

                fresh.update(self._added_during_rebuild)
                for challenge_id in self._removed_during_rebuild:
                    fresh.pop(challenge_id, None)

                stale = set(self._entries) - set(fresh)
                missing = set(fresh) - set(self._entries)
                if stale or missing:
                    logger.info("Visibility index drift repaired",
                                stale=len(stale), missing=len(missing))

                self._entries = fresh
                # The store has just confirmed what is open; only removals that
                # raced this rebuild still need guarding.
                self._retired = set(self._removed_during_rebuild)
                return len(self._entries)
            finally:
                self._rebuilding = False
                self._added_during_rebuild = {}
                self._removed_during_rebuild = set()

    async def run(self, interval: float, stop_event: asyncio.Event):
        """Reconcile every ``interval`` seconds until ``stop_event`` is set."""
        while not stop_event.is_set():
            try:
                count = await self.reconcile()
                logger.debug("Visibility index reconciled", entries=count)
            except StorageError as e:
                logger.error("Visibility index reconciliation failed", error=str(e))
            except Exception as e:
                logger.error("Unexpected error in visibility index reconciliation",
                             error=str(e), exc_info=True)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
