"""
Challenge state machine for HiveChallenge.
"""

from typing import Dict, FrozenSet, Optional

from ..database.models import ChallengeState


class ChallengeStateMachine:
    """Transition table for challenges.

    Every state other than OPEN is terminal, and terminal states are sticky.
    The table only says which edges exist; whether a given record may take one
    is decided atomically by the store.
    """

    VALID_TRANSITIONS: Dict[ChallengeState, FrozenSet[ChallengeState]] = {
        ChallengeState.OPEN: frozenset({
            ChallengeState.ACCEPTED,
            ChallengeState.EXPIRED,
            ChallengeState.CANCELLED,
        }),
        ChallengeState.ACCEPTED: frozenset(),   # Terminal state
        ChallengeState.EXPIRED: frozenset(),    # Terminal state
        ChallengeState.CANCELLED: frozenset(),  # Terminal state
    }

    # Extra fields a transition may write, keyed by target state
    TRANSITION_FIELDS: Dict[ChallengeState, FrozenSet[str]] = {
        ChallengeState.ACCEPTED: frozenset({"acceptor_id"}),
        ChallengeState.EXPIRED: frozenset(),
        ChallengeState.CANCELLED: frozenset(),
    }

    @classmethod
    def can_transition(cls, current: ChallengeState, new_state: ChallengeState) -> bool:
        """Check if ``current -> new_state`` is an edge of the table."""
        return new_state in cls.VALID_TRANSITIONS.get(current, frozenset())

    @classmethod
    def is_terminal(cls, state: ChallengeState) -> bool:
        """Check if a state is terminal."""
        return len(cls.VALID_TRANSITIONS.get(state, frozenset())) == 0

    @classmethod
    def transition_fields(cls, new_state: ChallengeState, extra: Optional[dict] = None) -> dict:
        """Check the extra fields of a transition into ``new_state`` and return them.

        Raises ``ValueError`` for fields the target state does not own, or for
        an accept without an acceptor. Whether the edge can be taken at all is
        the store's call: it answers with ``Conflict`` against the actual record.
        """
        allowed = cls.TRANSITION_FIELDS.get(new_state)
        if allowed is None:
            raise ValueError(f"{new_state.value} is not a transition target")

        extra = dict(extra or {})
        unknown = set(extra) - allowed
        if unknown:
            raise ValueError(f"Fields {sorted(unknown)} cannot be set on {new_state.value}")
        if new_state == ChallengeState.ACCEPTED and not extra.get("acceptor_id"):
            raise ValueError("An accepted challenge needs an acceptor_id")
        return extra
