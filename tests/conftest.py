"""
Shared test fixtures for the HiveChallenge test suite.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from hivechallenge.config import AppConfig
from hivechallenge.challenge import (
    ChallengeManager,
    ChallengeNotification,
    GameRef,
    GameRequest,
    GameSpawner,
    MemoryChallengeStore,
    Notifier,
    StaticUserDirectory,
)
from hivechallenge.database.models import Challenge, GameType

START = datetime(2024, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingSpawner(GameSpawner):
    """Game spawner that records requests and can be told to fail."""

    def __init__(self):
        self.requests: List[GameRequest] = []
        self.fail = False

    async def spawn(self, request: GameRequest) -> GameRef:
        # Yield so concurrent callers interleave
        await asyncio.sleep(0)
        self.requests.append(request)
        if self.fail:
            raise RuntimeError("game service unavailable")
        return GameRef(
            game_id=f"game-{len(self.requests)}",
            white_id=request.challenger_id,
            black_id=request.acceptor_id,
        )


class RecordingNotifier(Notifier):
    """Notifier that keeps every delivered notification."""

    def __init__(self):
        self.notifications: List[ChallengeNotification] = []

    async def notify(self, notification: ChallengeNotification):
        self.notifications.append(notification)

    def events(self, challenge_id: str = None):
        return [
            n.event for n in self.notifications
            if challenge_id is None or n.challenge_id == challenge_id
        ]


ACCEPTORS = [f"player{i}" for i in range(20)]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def users():
    return StaticUserDirectory(["alice", "bob", "carol", *ACCEPTORS])


@pytest.fixture
def store(users, clock):
    return MemoryChallengeStore(users, clock=clock)


@pytest.fixture
def spawner():
    return RecordingSpawner()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def config():
    return AppConfig(
        read_retry_attempts=2,
        retry_backoff=0,
        sweep_interval=0.01,
        index_reconcile_interval=0.01,
        sweep_batch_size=2,
        index_page_size=2,
        notification_timeout=0.5,
        default_challenge_ttl=None,
    )


@pytest.fixture
def manager(store, spawner, notifier, users, clock, config):
    return ChallengeManager(store, spawner, notifier, users=users, clock=clock, config=config)


def make_challenge(clock: FakeClock, **overrides) -> Challenge:
    """Build an OPEN challenge snapshot without going through the manager."""
    fields = dict(
        challenger_id="alice",
        game_type=GameType.BASE_MLP,
        ranked=True,
        public=True,
        tournament_queen_rule=True,
        created_at=clock(),
    )
    fields.update(overrides)
    return Challenge(**fields)
