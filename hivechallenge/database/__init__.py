"""
Database package for HiveChallenge.
"""

from .connection import DatabaseManager, get_database, get_database_manager, close_database
from .models import Challenge, ChallengeState, ColorChoice, Game, GameType, User
from .operations import ChallengeOps, GameOps, UserOps

__all__ = [
    "DatabaseManager",
    "get_database",
    "get_database_manager",
    "close_database",
    "Challenge",
    "ChallengeState",
    "ColorChoice",
    "Game",
    "GameType",
    "User",
    "ChallengeOps",
    "GameOps",
    "UserOps",
]
