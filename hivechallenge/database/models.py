"""
Database models for HiveChallenge.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..utils.time import ensure_aware, utcnow

UID_PATTERN = re.compile(r"^[A-Za-z0-9]+$")


def validate_uid(value: str) -> str:
    """User ids are non-empty ASCII alphanumerics."""
    if not isinstance(value, str) or not UID_PATTERN.match(value):
        raise ValueError("invalid characters")
    return value


class ChallengeState(str, Enum):
    """Challenge state enumeration."""
    OPEN = "open"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class GameType(str, Enum):
    """Hive variants: base game plus any mix of mosquito, ladybug and pillbug."""
    BASE = "Base"
    BASE_M = "Base+M"
    BASE_L = "Base+L"
    BASE_P = "Base+P"
    BASE_ML = "Base+ML"
    BASE_MP = "Base+MP"
    BASE_LP = "Base+LP"
    BASE_MLP = "Base+MLP"


class ColorChoice(str, Enum):
    """Side requested by the challenger."""
    WHITE = "White"
    BLACK = "Black"
    RANDOM = "Random"


class GameStatus(str, Enum):
    """Status of a spawned game."""
    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    FINISHED = "Finished"


class User(BaseModel):
    """User model (read-only view of the users collection)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    uid: str = Field(..., description="Unique user ID")
    username: str = Field(..., max_length=40, description="Display name")
    is_guest: bool = Field(default=False, description="Whether this is a guest account")

    @field_validator("uid")
    @classmethod
    def check_uid(cls, v):
        return validate_uid(v)


class Challenge(BaseModel):
    """Challenge model.

    Instances are immutable snapshots; state changes go through the store and
    come back as new instances.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    id: str = Field(default_factory=lambda: str(uuid4()), alias="_id")
    challenger_id: str = Field(..., description="Issuing user's ID")

    # Game parameters
    game_type: GameType = Field(..., description="Hive variant")
    ranked: bool = Field(..., description="Whether the game affects ratings")
    public: bool = Field(..., description="Whether the challenge is listed for discovery")
    tournament_queen_rule: bool = Field(..., description="Queen may not be placed on the first move")
    color_choice: ColorChoice = Field(default=ColorChoice.RANDOM, description="Challenger's side")

    # Timing; created_at is stamped by the manager and absent on the oldest records
    created_at: Optional[datetime] = Field(None, description="When the challenge was issued")
    expiration_time: Optional[datetime] = Field(None, description="When the challenge stops being acceptable")

    # Lifecycle
    state: ChallengeState = Field(default=ChallengeState.OPEN)
    acceptor_id: Optional[str] = Field(None, description="Set by the accept transition")
    game_id: Optional[str] = Field(None, description="Spawned game, once known")
    resolved_at: Optional[datetime] = Field(None, description="When a terminal state was reached")

    @field_validator("challenger_id")
    @classmethod
    def check_challenger(cls, v):
        return validate_uid(v)

    @field_validator("color_choice", mode="before")
    @classmethod
    def default_color(cls, v):
        # Records written before the column existed carry no color.
        return ColorChoice.RANDOM if v is None else v

    @field_validator("created_at", "expiration_time", "resolved_at")
    @classmethod
    def make_aware(cls, v):
        return ensure_aware(v) if v is not None else v

    @model_validator(mode="after")
    def check_expiration(self):
        if (self.expiration_time is not None and self.created_at is not None
                and self.expiration_time <= self.created_at):
            raise ValueError("expiration_time must be after created_at")
        return self

    @property
    def expires_at(self) -> Optional[datetime]:
        """Effective auto-expiry instant.

        Records without ``created_at`` have an unknown age and never expire
        automatically, even if they carry an ``expiration_time``.
        """
        if self.created_at is None:
            return None
        return self.expiration_time

    def is_expired(self, now: datetime) -> bool:
        expires_at = self.expires_at
        return expires_at is not None and expires_at <= now

    def is_listable(self, now: datetime) -> bool:
        """Whether this snapshot belongs in the public listing."""
        return self.public and self.state == ChallengeState.OPEN and not self.is_expired(now)

    def to_document(self) -> Dict[str, Any]:
        """Serialize for MongoDB."""
        return encode_document(self.model_dump(by_alias=True))


class Game(BaseModel):
    """Game record created from an accepted challenge."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(default_factory=lambda: str(uuid4()), alias="_id")
    challenge_id: str = Field(..., description="Challenge that spawned this game")
    white_id: str
    black_id: str
    game_type: GameType
    ranked: bool
    tournament_queen_rule: bool
    game_status: GameStatus = Field(default=GameStatus.NOT_STARTED)
    history: str = Field(default="", description="Move history")
    turn: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)

    def to_document(self) -> Dict[str, Any]:
        """Serialize for MongoDB."""
        return encode_document(self.model_dump(by_alias=True))


def encode_document(data: Dict[str, Any]) -> Dict[str, Any]:
    """Replace enum members with their stored values."""
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in data.items()}
