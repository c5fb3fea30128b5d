"""
Challenge lifecycle package for HiveChallenge.
"""

from .arbiter import AcceptanceArbiter
from .collaborators import GameRef, GameRequest, GameSpawner, StaticUserDirectory, UserDirectory
from .index import ChallengeFilter, VisibilityIndex
from .manager import ChallengeManager
from .notifications import (
    ChallengeEvent,
    ChallengeNotification,
    LoggingNotifier,
    NotificationDispatcher,
    Notifier,
)
from .state_machine import ChallengeStateMachine
from .store import ChallengePage, ChallengeStore, MemoryChallengeStore
from .sweeper import ExpirySweeper

__all__ = [
    "AcceptanceArbiter",
    "ChallengeEvent",
    "ChallengeFilter",
    "ChallengeManager",
    "ChallengeNotification",
    "ChallengePage",
    "ChallengeStateMachine",
    "ChallengeStore",
    "ExpirySweeper",
    "GameRef",
    "GameRequest",
    "GameSpawner",
    "LoggingNotifier",
    "MemoryChallengeStore",
    "NotificationDispatcher",
    "Notifier",
    "StaticUserDirectory",
    "UserDirectory",
    "VisibilityIndex",
]
