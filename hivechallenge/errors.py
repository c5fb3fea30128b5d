"""
Exception hierarchy for HiveChallenge.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .database.models import Challenge, ChallengeState


class HiveChallengeError(Exception):
    """Base exception for all HiveChallenge errors."""


class ValidationError(HiveChallengeError):
    """Raised when challenge input is malformed or references unknown users."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class NotFound(HiveChallengeError):
    """Raised when a challenge id is unknown."""

    def __init__(self, challenge_id: str) -> None:
        super().__init__(f"Challenge {challenge_id} not found")
        self.challenge_id = challenge_id


class Conflict(HiveChallengeError):
    """Raised when a conditional update finds the record in a different state."""

    def __init__(self, challenge: "Challenge", expected: "ChallengeState") -> None:
        super().__init__(
            f"Challenge {challenge.id} is {challenge.state.value}, expected {expected.value}"
        )
        self.challenge = challenge
        self.expected = expected

    @property
    def actual(self) -> "ChallengeState":
        return self.challenge.state


class Rejected(HiveChallengeError):
    """An accept or cancel request that cannot be honoured.

    This is an expected outcome (lost race, self accept, ...) rather than a
    fault, so callers should present ``reason`` to the user as is.
    """

    ALREADY_RESOLVED = "already resolved"
    SELF_ACCEPT = "self accept"
    EXPIRED = "expired"
    NOT_CHALLENGER = "not challenger"

    def __init__(self, challenge_id: str, reason: str) -> None:
        super().__init__(f"Challenge {challenge_id} rejected: {reason}")
        self.challenge_id = challenge_id
        self.reason = reason


class SpawnFailed(HiveChallengeError):
    """The game spawner failed after the challenge was accepted.

    The challenge stays ACCEPTED without a game and has to be reconciled with
    ``ChallengeManager.respawn``.
    """

    def __init__(self, challenge_id: str, acceptor_id: str) -> None:
        super().__init__(f"Game spawn failed for accepted challenge {challenge_id}")
        self.challenge_id = challenge_id
        self.acceptor_id = acceptor_id


class StorageError(HiveChallengeError):
    """Transient storage failure (network, timeout)."""
