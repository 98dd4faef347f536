"""
MongoDB Connection Management
One shared Motor client per process, handing out Queues on its database.
"""
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from typing import Any, Optional

from mongo_queue.config import get_settings
from mongo_queue.observability import logger
from mongo_queue.queue import Queue


class DatabaseManager:
    """
    Owns the Motor client queues are built on.

    Usage:
        await db_manager.connect()
        jobs = await db_manager.queue("jobs", visibility=30)
    """

    def __init__(self):
        self._client: Optional[AsyncIOMotorClient] = None

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Open the client from settings. Safe to call when already connected."""
        if self._client is not None:
            return

        settings = get_settings()
        logger.bind(
            database=settings.mongodb_database,
            max_pool_size=settings.mongodb_max_pool_size,
            environment=settings.environment,
        ).info(f"Connecting to MongoDB at {settings.mongodb_uri}")

        self._client = AsyncIOMotorClient(
            settings.mongodb_uri,
            maxPoolSize=settings.mongodb_max_pool_size,
            minPoolSize=settings.mongodb_min_pool_size,
            serverSelectionTimeoutMS=settings.mongodb_server_selection_timeout_ms,
        )

    async def disconnect(self) -> None:
        if self._client is None:
            return

        self._client.close()
        self._client = None
        logger.info("MongoDB connection closed")

    @property
    def database(self) -> AsyncIOMotorDatabase:
        """
        Database named by MONGODB_DATABASE.
        Raises RuntimeError if not connected.
        """
        if self._client is None:
            raise RuntimeError(
                "Database not connected. Call await db_manager.connect() first."
            )
        return self._client[get_settings().mongodb_database]

    async def queue(self, name: str, **options: Any) -> Queue:
        """
        Build a pinged Queue on the managed database.

        Args:
            name: Collection name backing the queue
            **options: Queue options (visibility, delay, dead_queue, ...)

        Raises:
            QueueConfigurationError: If the database does not answer a ping
        """
        return await Queue.create(self.database, name, **options)


db_manager = DatabaseManager()


async def get_database() -> AsyncIOMotorDatabase:
    """Dependency injection helper returning the managed database."""
    return db_manager.database
