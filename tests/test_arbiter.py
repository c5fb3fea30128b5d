"""
Tests for accepting and cancelling challenges.
"""

import asyncio
from datetime import timedelta

import pytest

from hivechallenge.challenge import ChallengeEvent, ChallengeManager, MemoryChallengeStore
from hivechallenge.database.models import ChallengeState, ColorChoice, GameType
from hivechallenge.errors import Conflict, NotFound, Rejected, SpawnFailed, ValidationError
from tests.conftest import ACCEPTORS


class YieldingStore(MemoryChallengeStore):
    """Store whose reads yield to the loop, so racing accepts all pass the pre-check."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.transition_attempts = 0

    async def get(self, challenge_id):
        challenge = await super().get(challenge_id)
        await asyncio.sleep(0)
        return challenge

    async def transition(self, *args, **kwargs):
        self.transition_attempts += 1
        return await super().transition(*args, **kwargs)


async def create(manager, **overrides):
    fields = dict(
        challenger_id="alice",
        game_type=GameType.BASE_MLP,
        ranked=True,
        public=True,
        tournament_queen_rule=True,
    )
    fields.update(overrides)
    return await manager.create_challenge(**fields)


class TestAcceptRace:

    @pytest.mark.asyncio
    async def test_two_acceptors_one_game(self, manager, store, spawner, clock):
        challenge = await create(manager, ttl=300)
        clock.advance(minutes=1)

        results = await asyncio.gather(
            manager.accept_challenge(challenge.id, "bob"),
            manager.accept_challenge(challenge.id, "carol"),
            return_exceptions=True,
        )

        games = [r for r in results if not isinstance(r, Exception)]
        rejections = [r for r in results if isinstance(r, Rejected)]
        assert len(games) == 1
        assert len(rejections) == 1
        assert rejections[0].reason == Rejected.ALREADY_RESOLVED

        stored = await store.get(challenge.id)
        assert stored.state == ChallengeState.ACCEPTED
        assert stored.acceptor_id in {"bob", "carol"}
        assert stored.game_id == games[0].game_id
        assert len(spawner.requests) == 1

    @pytest.mark.asyncio
    async def test_many_acceptors_racing_the_transition(self, users, spawner, notifier, clock, config):
        store = YieldingStore(users, clock=clock)
        manager = ChallengeManager(store, spawner, notifier, users=users, clock=clock, config=config)
        challenge = await create(manager)

        results = await asyncio.gather(
            *(manager.accept_challenge(challenge.id, acceptor) for acceptor in ACCEPTORS),
            return_exceptions=True,
        )

        games = [r for r in results if not isinstance(r, Exception)]
        assert len(games) == 1
        assert all(
            isinstance(r, Rejected) and r.reason == Rejected.ALREADY_RESOLVED
            for r in results if isinstance(r, Exception)
        )
        # Every attempt got past the pre-check; the store decided the winner
        assert store.transition_attempts == len(ACCEPTORS)
        assert len(spawner.requests) == 1

        await manager.dispatcher.drain()
        assert notifier.events(challenge.id).count(ChallengeEvent.ACCEPTED) == 1

    @pytest.mark.asyncio
    async def test_spawner_receives_challenge_parameters(self, manager, spawner):
        challenge = await create(
            manager, game_type=GameType.BASE_L, ranked=False,
            tournament_queen_rule=False, color_choice=ColorChoice.BLACK,
        )

        game = await manager.accept_challenge(challenge.id, "bob")

        request = spawner.requests[0]
        assert request.challenge_id == challenge.id
        assert request.challenger_id == "alice"
        assert request.acceptor_id == "bob"
        assert request.game_type == GameType.BASE_L
        assert request.ranked is False
        assert request.tournament_queen_rule is False
        assert request.color_choice == ColorChoice.BLACK
        assert game.game_id == "game-1"


class TestAcceptRejections:

    @pytest.mark.asyncio
    async def test_self_accept(self, manager, store, spawner):
        challenge = await create(manager)

        with pytest.raises(Rejected) as exc_info:
            await manager.accept_challenge(challenge.id, "alice")

        assert exc_info.value.reason == Rejected.SELF_ACCEPT
        assert (await store.get(challenge.id)).state == ChallengeState.OPEN
        assert spawner.requests == []

    @pytest.mark.asyncio
    async def test_unknown_acceptor(self, manager, store):
        challenge = await create(manager)

        with pytest.raises(ValidationError):
            await manager.accept_challenge(challenge.id, "mallory")
        assert (await store.get(challenge.id)).state == ChallengeState.OPEN

    @pytest.mark.asyncio
    async def test_unknown_challenge(self, manager):
        with pytest.raises(NotFound):
            await manager.accept_challenge("missing", "bob")

    @pytest.mark.asyncio
    async def test_expired_but_not_swept(self, manager, store, clock):
        challenge = await create(manager, ttl=300)
        clock.advance(minutes=5)

        with pytest.raises(Rejected) as exc_info:
            await manager.accept_challenge(challenge.id, "bob")

        assert exc_info.value.reason == Rejected.EXPIRED
        assert (await store.get(challenge.id)).state == ChallengeState.OPEN

    @pytest.mark.asyncio
    async def test_accept_after_cancel(self, manager):
        challenge = await create(manager)
        await manager.cancel_challenge(challenge.id, "alice")

        with pytest.raises(Rejected) as exc_info:
            await manager.accept_challenge(challenge.id, "bob")
        assert exc_info.value.reason == Rejected.ALREADY_RESOLVED

    @pytest.mark.asyncio
    async def test_private_challenge_accepted_by_direct_id(self, manager):
        challenge = await create(manager, public=False)

        assert manager.list_public().items == []
        game = await manager.accept_challenge(challenge.id, "bob")
        assert game.black_id == "bob"


class TestSpawnFailure:

    @pytest.mark.asyncio
    async def test_challenge_stays_accepted_without_game(self, manager, store, spawner, notifier):
        challenge = await create(manager)
        spawner.fail = True

        with pytest.raises(SpawnFailed) as exc_info:
            await manager.accept_challenge(challenge.id, "bob")

        assert exc_info.value.challenge_id == challenge.id
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        stored = await store.get(challenge.id)
        assert stored.state == ChallengeState.ACCEPTED
        assert stored.acceptor_id == "bob"
        assert stored.game_id is None
        assert manager.list_public().items == []

        with pytest.raises(Rejected):
            await manager.accept_challenge(challenge.id, "carol")

        await manager.dispatcher.drain()
        assert ChallengeEvent.ACCEPTED not in notifier.events(challenge.id)

    @pytest.mark.asyncio
    async def test_respawn_completes_the_accept(self, manager, store, spawner, notifier):
        challenge = await create(manager)
        spawner.fail = True
        with pytest.raises(SpawnFailed):
            await manager.accept_challenge(challenge.id, "bob")

        spawner.fail = False
        game = await manager.respawn(challenge.id)

        stored = await store.get(challenge.id)
        assert stored.game_id == game.game_id
        assert spawner.requests[-1].acceptor_id == "bob"

        await manager.dispatcher.drain()
        assert notifier.events(challenge.id)[-1] == ChallengeEvent.ACCEPTED

        with pytest.raises(ValidationError):
            await manager.respawn(challenge.id)

    @pytest.mark.asyncio
    async def test_respawn_requires_accepted(self, manager):
        challenge = await create(manager)
        with pytest.raises(Conflict):
            await manager.respawn(challenge.id)


class TestCancel:

    @pytest.mark.asyncio
    async def test_challenger_cancels(self, manager, store, notifier):
        challenge = await create(manager)

        cancelled = await manager.cancel_challenge(challenge.id, "alice")

        assert cancelled.state == ChallengeState.CANCELLED
        assert (await store.get(challenge.id)).state == ChallengeState.CANCELLED
        assert manager.list_public().items == []
        await manager.dispatcher.drain()
        assert notifier.events(challenge.id) == [ChallengeEvent.CREATED, ChallengeEvent.CANCELLED]

    @pytest.mark.asyncio
    async def test_only_challenger_may_cancel(self, manager, store):
        challenge = await create(manager)

        with pytest.raises(Rejected) as exc_info:
            await manager.cancel_challenge(challenge.id, "bob")

        assert exc_info.value.reason == Rejected.NOT_CHALLENGER
        assert (await store.get(challenge.id)).state == ChallengeState.OPEN

    @pytest.mark.asyncio
    async def test_cancel_after_accept(self, manager, store):
        challenge = await create(manager)
        await manager.accept_challenge(challenge.id, "bob")

        with pytest.raises(Rejected) as exc_info:
            await manager.cancel_challenge(challenge.id, "alice")

        assert exc_info.value.reason == Rejected.ALREADY_RESOLVED
        stored = await store.get(challenge.id)
        assert stored.state == ChallengeState.ACCEPTED
        assert stored.acceptor_id == "bob"

    @pytest.mark.asyncio
    async def test_cancel_racing_accept(self, users, spawner, notifier, clock, config):
        store = YieldingStore(users, clock=clock)
        manager = ChallengeManager(store, spawner, notifier, users=users, clock=clock, config=config)
        challenge = await create(manager)

        accept_result, cancel_result = await asyncio.gather(
            manager.accept_challenge(challenge.id, "bob"),
            manager.cancel_challenge(challenge.id, "alice"),
            return_exceptions=True,
        )

        stored = await store.get(challenge.id)
        if stored.state == ChallengeState.ACCEPTED:
            assert isinstance(cancel_result, Rejected)
            assert not isinstance(accept_result, Exception)
        else:
            assert stored.state == ChallengeState.CANCELLED
            assert isinstance(accept_result, Rejected)
            assert spawner.requests == []


class TestNotifications:

    @pytest.mark.asyncio
    async def test_accept_notification(self, manager, notifier):
        challenge = await create(manager)
        game = await manager.accept_challenge(challenge.id, "bob")
        await manager.dispatcher.drain()

        accepted = [n for n in notifier.notifications if n.event == ChallengeEvent.ACCEPTED]
        assert len(accepted) == 1
        assert accepted[0].acceptor_id == "bob"
        assert accepted[0].challenger_id == "alice"
        assert accepted[0].game_id == game.game_id

    @pytest.mark.asyncio
    async def test_failing_notifier_does_not_fail_accept(self, manager, store):
        class BrokenNotifier:
            async def notify(self, notification):
                raise RuntimeError("telegram down")

        manager.dispatcher.notifier = BrokenNotifier()
        challenge = await create(manager)

        game = await manager.accept_challenge(challenge.id, "bob")
        await manager.dispatcher.drain()

        assert (await store.get(challenge.id)).game_id == game.game_id


class TestExpiryWindow:

    @pytest.mark.asyncio
    async def test_expiry_window_is_respected_until_the_deadline(self, manager, clock):
        challenge = await create(manager, ttl=300)
        clock.advance(seconds=299)

        game = await manager.accept_challenge(challenge.id, "bob")
        assert game.game_id

    @pytest.mark.asyncio
    async def test_expiration_time_beats_ttl(self, manager, clock):
        deadline = clock() + timedelta(minutes=1)
        challenge = await create(manager, expiration_time=deadline, ttl=3600)
        assert challenge.expiration_time == deadline
