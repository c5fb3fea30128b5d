"""
Tests for the challenge data model.
"""

from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from hivechallenge.challenge.state_machine import ChallengeStateMachine
from hivechallenge.database.models import (
    Challenge,
    ChallengeState,
    ColorChoice,
    GameType,
    User,
)
from tests.conftest import START, FakeClock, make_challenge


class TestChallengeModel:

    def test_defaults_for_new_challenge(self):
        challenge = make_challenge(FakeClock())

        assert challenge.state == ChallengeState.OPEN
        assert challenge.color_choice == ColorChoice.RANDOM
        assert challenge.acceptor_id is None
        assert challenge.game_id is None
        assert challenge.expiration_time is None
        assert challenge.id

    def test_ids_are_unique(self):
        clock = FakeClock()
        assert make_challenge(clock).id != make_challenge(clock).id

    def test_snapshot_is_immutable(self):
        challenge = make_challenge(FakeClock())
        with pytest.raises(PydanticValidationError):
            challenge.ranked = False

    def test_expiration_must_follow_creation(self):
        with pytest.raises(PydanticValidationError):
            make_challenge(FakeClock(), expiration_time=START)
        with pytest.raises(PydanticValidationError):
            make_challenge(FakeClock(), expiration_time=START - timedelta(minutes=1))

    def test_invalid_challenger_uid(self):
        with pytest.raises(PydanticValidationError):
            make_challenge(FakeClock(), challenger_id="not a uid!")

    def test_unknown_game_type(self):
        with pytest.raises(PydanticValidationError):
            make_challenge(FakeClock(), game_type="Chess")

    def test_expires_at_requires_creation_time(self):
        expiration = START + timedelta(minutes=5)
        timed = make_challenge(FakeClock(), expiration_time=expiration)
        legacy = make_challenge(FakeClock(), created_at=None, expiration_time=expiration)

        assert timed.expires_at == expiration
        assert legacy.expires_at is None
        assert not legacy.is_expired(START + timedelta(days=365))

    def test_is_listable(self):
        clock = FakeClock()
        challenge = make_challenge(clock, expiration_time=START + timedelta(minutes=5))

        assert challenge.is_listable(START)
        assert not challenge.is_listable(START + timedelta(minutes=5))
        assert not make_challenge(clock, public=False).is_listable(START)
        assert not challenge.model_copy(update={"state": ChallengeState.CANCELLED}).is_listable(START)

    def test_loads_legacy_document(self):
        """Documents from before color_choice and expiration_time existed still load."""
        document = {
            "_id": "0f8fad5b-d9cb-469f-a165-70867728950e",
            "challenger_id": "alice",
            "game_type": "Base",
            "ranked": False,
            "public": True,
            "tournament_queen_rule": False,
            "created_at": datetime(2023, 3, 10, 0, 47, 45),
        }

        challenge = Challenge(**document)

        assert challenge.id == document["_id"]
        assert challenge.color_choice == ColorChoice.RANDOM
        assert challenge.state == ChallengeState.OPEN
        assert challenge.created_at.tzinfo is not None
        assert challenge.expires_at is None

    def test_to_document_uses_stored_values(self):
        challenge = make_challenge(FakeClock(), color_choice=ColorChoice.BLACK)
        document = challenge.to_document()

        assert document["_id"] == challenge.id
        assert "id" not in document
        assert document["game_type"] == "Base+MLP"
        assert document["color_choice"] == "Black"
        assert document["state"] == "open"
        assert type(document["state"]) is str


class TestUserModel:

    def test_valid_user(self):
        user = User(uid="abc123", username="queen-bee_1")
        assert not user.is_guest

    def test_uid_must_be_alphanumeric(self):
        with pytest.raises(PydanticValidationError):
            User(uid="abc-123", username="bee")

    def test_username_length_limit(self):
        with pytest.raises(PydanticValidationError):
            User(uid="abc", username="b" * 41)


class TestStateMachine:

    @pytest.mark.parametrize("target", [
        ChallengeState.ACCEPTED, ChallengeState.EXPIRED, ChallengeState.CANCELLED,
    ])
    def test_open_reaches_every_terminal_state(self, target):
        assert ChallengeStateMachine.can_transition(ChallengeState.OPEN, target)
        assert ChallengeStateMachine.is_terminal(target)

    @pytest.mark.parametrize("terminal", [
        ChallengeState.ACCEPTED, ChallengeState.EXPIRED, ChallengeState.CANCELLED,
    ])
    def test_terminal_states_have_no_edges(self, terminal):
        for target in ChallengeState:
            assert not ChallengeStateMachine.can_transition(terminal, target)

    def test_open_is_not_a_target(self):
        assert not ChallengeStateMachine.can_transition(ChallengeState.OPEN, ChallengeState.OPEN)
        with pytest.raises(ValueError):
            ChallengeStateMachine.transition_fields(ChallengeState.OPEN)

    def test_accept_requires_acceptor(self):
        with pytest.raises(ValueError):
            ChallengeStateMachine.transition_fields(ChallengeState.ACCEPTED)

    def test_extra_fields_are_restricted(self):
        with pytest.raises(ValueError):
            ChallengeStateMachine.transition_fields(ChallengeState.EXPIRED, {"acceptor_id": "bob"})
        with pytest.raises(ValueError):
            ChallengeStateMachine.transition_fields(
                ChallengeState.ACCEPTED, {"acceptor_id": "bob", "game_id": "g1"}
            )

    def test_accept_extra_is_returned(self):
        fields = ChallengeStateMachine.transition_fields(
            ChallengeState.ACCEPTED, {"acceptor_id": "bob"}
        )
        assert fields == {"acceptor_id": "bob"}
