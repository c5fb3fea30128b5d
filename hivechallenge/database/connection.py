"""
Database connection management for HiveChallenge.
"""

from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import ConnectionFailure, PyMongoError
import structlog

from ..config import get_config, get_db_config

logger = structlog.get_logger(__name__)


class DatabaseManager:
    """Database connection manager."""

    def __init__(self):
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self.config = get_config()
        self.db_config = get_db_config()

    async def connect(self) -> bool:
        """Connect to MongoDB database."""
        try:
            self.client = AsyncIOMotorClient(
                self.config.mongodb_url,
                serverSelectionTimeoutMS=self.db_config.connection_timeout * 1000,
                tz_aware=True,
            )

            # Test the connection
            await self.client.admin.command('ping')

            self.database = self.client[self.config.database_name]

            if self.db_config.enable_indexes:
                await self._create_indexes()

            logger.info("Connected to MongoDB", database=self.config.database_name)
            return True

        except ConnectionFailure as e:
            logger.error("Failed to connect to MongoDB", error=str(e))
            return False

    async def disconnect(self):
        """Disconnect from MongoDB database."""
        if self.client:
            self.client.close()
            self.client = None
            self.database = None
            logger.info("Disconnected from MongoDB")

    async def _create_indexes(self):
        """Create database indexes."""
        if self.database is None:
            return

        try:
            users_collection = self.database[self.db_config.users_collection]
            await users_collection.create_index("uid", unique=True)

            challenges_collection = self.database[self.db_config.challenges_collection]
            await challenges_collection.create_index("challenger_id")
            await challenges_collection.create_index("state")
            await challenges_collection.create_index([("public", ASCENDING), ("state", ASCENDING)])
            await challenges_collection.create_index([("state", ASCENDING), ("expiration_time", ASCENDING)])
            await challenges_collection.create_index("created_at")

            # One game per challenge; makes spawning idempotent
            games_collection = self.database[self.db_config.games_collection]
            await games_collection.create_index("challenge_id", unique=True)
            await games_collection.create_index("white_id")
            await games_collection.create_index("black_id")

            logger.info("Database indexes created successfully")

        except PyMongoError as e:
            logger.error("Failed to create database indexes", error=str(e))
            raise

    def get_database(self) -> Optional[AsyncIOMotorDatabase]:
        """Get the database instance."""
        return self.database


# Global database manager instance
_db_manager: Optional[DatabaseManager] = None


async def get_database_manager() -> DatabaseManager:
    """Get the global database manager instance."""
    global _db_manager

    if _db_manager is None:
        _db_manager = DatabaseManager()
        connected = await _db_manager.connect()
        if not connected:
            _db_manager = None
            raise RuntimeError("Failed to connect to database")

    return _db_manager


async def get_database() -> AsyncIOMotorDatabase:
    """Get the database instance."""
    db_manager = await get_database_manager()
    db = db_manager.get_database()
    if db is None:
        raise RuntimeError("Database not connected")
    return db


async def close_database():
    """Close the database connection."""
    global _db_manager
    if _db_manager:
        await _db_manager.disconnect()
        _db_manager = None
