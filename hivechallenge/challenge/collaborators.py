"""
Interfaces of the services the challenge lifecycle calls into.
"""

import random
from abc import ABC, abstractmethod
from typing import Iterable, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict

from ..database.models import ColorChoice, GameType


class GameRequest(BaseModel):
    """Parameters handed to the game spawner for an accepted challenge."""

    model_config = ConfigDict(frozen=True)

    challenge_id: str
    challenger_id: str
    acceptor_id: str
    game_type: GameType
    ranked: bool
    tournament_queen_rule: bool
    color_choice: ColorChoice


class GameRef(BaseModel):
    """Reference to a spawned game."""

    model_config = ConfigDict(frozen=True)

    game_id: str
    white_id: str
    black_id: str


def assign_sides(challenger_id: str, acceptor_id: str, color_choice: ColorChoice,
                 rng: Optional[random.Random] = None) -> Tuple[str, str]:
    """Return ``(white_id, black_id)`` honouring the challenger's color choice."""
    if color_choice == ColorChoice.RANDOM:
        color_choice = (rng or random).choice([ColorChoice.WHITE, ColorChoice.BLACK])
    if color_choice == ColorChoice.WHITE:
        return challenger_id, acceptor_id
    return acceptor_id, challenger_id


class UserDirectory(ABC):
    """Resolves user ids."""

    @abstractmethod
    async def exists(self, user_id: str) -> bool:
        """Return True if ``user_id`` references a known user."""


class GameSpawner(ABC):
    """Creates games for accepted challenges."""

    @abstractmethod
    async def spawn(self, request: GameRequest) -> GameRef:
        """Create a game; any exception counts as a spawn failure."""


class StaticUserDirectory(UserDirectory):
    """In-process user directory backed by a set of ids."""

    def __init__(self, user_ids: Iterable[str] = ()):
        self._user_ids: Set[str] = set(user_ids)

    def add(self, user_id: str):
        self._user_ids.add(user_id)

    async def exists(self, user_id: str) -> bool:
        return user_id in self._user_ids
