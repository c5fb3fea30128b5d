"""
Database operations for HiveChallenge.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
import structlog

from .models import Challenge, ChallengeState, Game, User, encode_document
from .connection import get_database
from ..config import get_db_config
from ..errors import Conflict, NotFound, StorageError, ValidationError
from ..challenge.collaborators import GameRef, GameRequest, GameSpawner, UserDirectory, assign_sides
from ..challenge.store import ChallengePage, ChallengeStore
from ..utils.time import Clock, utcnow

logger = structlog.get_logger(__name__)


class BaseOperations:
    """Base operations class."""

    def __init__(self, database: Optional[AsyncIOMotorDatabase] = None):
        self.db_config = get_db_config()
        self._database = database

    async def get_db(self) -> AsyncIOMotorDatabase:
        """Get database instance."""
        if self._database is not None:
            return self._database
        return await get_database()


class UserOps(BaseOperations, UserDirectory):
    """User database operations."""

    async def get_user(self, uid: str) -> Optional[User]:
        """Get user by uid."""
        try:
            db = await self.get_db()
            collection = db[self.db_config.users_collection]
            user_data = await collection.find_one({"uid": uid})
        except PyMongoError as e:
            logger.error("Failed to get user", error=str(e), uid=uid)
            raise StorageError(f"Failed to get user {uid}") from e

        if user_data:
            return User(**user_data)
        return None

    async def exists(self, user_id: str) -> bool:
        return await self.get_user(user_id) is not None


class ChallengeOps(BaseOperations, ChallengeStore):
    """Challenge store backed by a MongoDB collection.

    The conditional transition is a single-document ``find_one_and_update``
    filtered on the expected state, which MongoDB applies atomically.
    """

    def __init__(self, users: UserDirectory, database: Optional[AsyncIOMotorDatabase] = None,
                 clock: Clock = utcnow):
        BaseOperations.__init__(self, database)
        ChallengeStore.__init__(self, users, clock)

    async def _collection(self):
        db = await self.get_db()
        return db[self.db_config.challenges_collection]

    async def _insert(self, challenge: Challenge):
        try:
            collection = await self._collection()
            await collection.insert_one(challenge.to_document())
        except DuplicateKeyError as e:
            raise ValidationError(f"Duplicate challenge id {challenge.id}", field="id") from e
        except PyMongoError as e:
            logger.error("Failed to create challenge", error=str(e), challenge_id=challenge.id)
            raise StorageError(f"Failed to create challenge {challenge.id}") from e

    async def get(self, challenge_id: str) -> Challenge:
        try:
            collection = await self._collection()
            challenge_data = await collection.find_one({"_id": challenge_id})
        except PyMongoError as e:
            logger.error("Failed to get challenge", error=str(e), challenge_id=challenge_id)
            raise StorageError(f"Failed to get challenge {challenge_id}") from e

        if not challenge_data:
            raise NotFound(challenge_id)
        return Challenge(**challenge_data)

    async def _find_and_update(self, query: Dict[str, Any], update: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            collection = await self._collection()
            return await collection.find_one_and_update(
                query,
                {"$set": encode_document(update)},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            logger.error("Failed to update challenge", error=str(e), challenge_id=query.get("_id"))
            raise StorageError(f"Failed to update challenge {query.get('_id')}") from e

    async def _compare_and_set(self, challenge_id: str, expected: ChallengeState,
                               fields: dict) -> Challenge:
        updated = await self._find_and_update(
            {"_id": challenge_id, "state": expected.value}, fields
        )
        if updated is None:
            # Either missing or in another state; get() raises NotFound for the former
            raise Conflict(await self.get(challenge_id), expected)
        return Challenge(**updated)

    async def attach_game(self, challenge_id: str, game_id: str) -> Challenge:
        updated = await self._find_and_update(
            {"_id": challenge_id, "state": ChallengeState.ACCEPTED.value, "game_id": None},
            {"game_id": game_id},
        )
        if updated is None:
            raise Conflict(await self.get(challenge_id), ChallengeState.ACCEPTED)
        return Challenge(**updated)

    async def _scan(self, query: Dict[str, Any], cursor: Optional[str], limit: int) -> ChallengePage:
        if cursor is not None:
            query["_id"] = {"$gt": cursor}

        try:
            collection = await self._collection()
            documents = collection.find(query).sort("_id", 1).limit(limit + 1)
            challenges: List[Challenge] = []
            async for challenge_data in documents:
                challenges.append(Challenge(**challenge_data))
        except PyMongoError as e:
            logger.error("Failed to scan challenges", error=str(e))
            raise StorageError("Failed to scan challenges") from e

        items = challenges[:limit]
        next_cursor = items[-1].id if len(challenges) > limit else None
        return ChallengePage(items=items, next_cursor=next_cursor)

    async def list_open_public(self, cursor: Optional[str] = None, limit: int = 100) -> ChallengePage:
        return await self._scan(
            {"public": True, "state": ChallengeState.OPEN.value}, cursor, limit
        )

    async def list_expirable(self, now: datetime, cursor: Optional[str] = None,
                             limit: int = 100) -> ChallengePage:
        return await self._scan(
            {
                "state": ChallengeState.OPEN.value,
                "created_at": {"$ne": None},
                "expiration_time": {"$ne": None, "$lte": now},
            },
            cursor,
            limit,
        )


class GameOps(BaseOperations, GameSpawner):
    """Game spawner writing to the games collection.

    ``challenge_id`` is uniquely indexed, so spawning twice for the same
    challenge returns the first game instead of creating another.
    """

    def __init__(self, database: Optional[AsyncIOMotorDatabase] = None, clock: Clock = utcnow):
        super().__init__(database)
        self.clock = clock

    async def spawn(self, request: GameRequest) -> GameRef:
        white_id, black_id = assign_sides(
            request.challenger_id, request.acceptor_id, request.color_choice
        )
        game = Game(
            challenge_id=request.challenge_id,
            white_id=white_id,
            black_id=black_id,
            game_type=request.game_type,
            ranked=request.ranked,
            tournament_queen_rule=request.tournament_queen_rule,
            created_at=self.clock(),
        )

        db = await self.get_db()
        collection = db[self.db_config.games_collection]
        try:
            await collection.insert_one(game.to_document())
        except DuplicateKeyError:
            existing = await collection.find_one({"challenge_id": request.challenge_id})
            if existing is None:
                raise
            game = Game(**existing)
            logger.info("Game already spawned", game_id=game.id, challenge_id=request.challenge_id)
        else:
            logger.info("Game created", game_id=game.id, challenge_id=request.challenge_id)

        return GameRef(game_id=game.id, white_id=game.white_id, black_id=game.black_id)

    async def get_game(self, game_id: str) -> Optional[Game]:
        """Get game by ID."""
        db = await self.get_db()
        collection = db[self.db_config.games_collection]

        game_data = await collection.find_one({"_id": game_id})
        if game_data:
            return Game(**game_data)
        return None
