"""
MongoDB-backed Message Queue

At-least-once delivery over a single collection. A message is leased by an
atomic find_one_and_update that bumps its try counter and hands out a fresh
ack token; consumers extend the lease with ping() and finish with ack().
"""
from typing import Any, List, Optional

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from mongo_queue import helpers
from mongo_queue.config import get_settings
from mongo_queue.exceptions import (
    QueueConfigurationError,
    QueueOperationError,
    RecursionLimitError,
    UnidentifiedAckError,
)
from mongo_queue.models import (
    DEFAULT_MAX_RETRIES,
    ClaimedMessage,
    EnqueuedMessage,
    QueueOptions,
    QueueStats,
)
from mongo_queue.observability import log_queue_event, logger


class Queue:
    """
    Message queue bound to one MongoDB collection.

    Holds configuration only; all message state lives in the documents, so
    any number of Queue instances (in any process) may share a collection.

    Usage:
        queue = await mongo_queue(db, "emails", visibility=30)
        await queue.add({"to": "ops@example.com"})
        msg = await queue.get()
        await queue.ack(msg.ack)
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        name: str,
        *,
        visibility: Optional[float] = None,
        delay: Optional[float] = None,
        dead_queue: Optional["Queue"] = None,
        max_retries: Optional[int] = None,
        recursion_limit: Optional[int] = None,
    ):
        """
        Bind a queue to `database[name]`.

        Args:
            database: Motor database instance
            name: Collection name backing the queue
            visibility: Seconds a claimed message stays hidden (default 60)
            delay: Seconds before an added message becomes visible (default 60)
            dead_queue: Queue receiving messages that exceed max_retries
            max_retries: Claims allowed before dead-lettering (default 5)
            recursion_limit: Dead messages get() may skip per call
                (default QUEUE_GET_RECURSION_LIMIT)

        Raises:
            QueueConfigurationError: Missing database, empty name or invalid options
        """
        if database is None:
            raise QueueConfigurationError("MongoQueue: provide a motor database")

        if not name:
            raise QueueConfigurationError("MongoQueue: Provide a queue name.")

        if dead_queue is not None and not callable(getattr(dead_queue, "add", None)):
            raise QueueConfigurationError("MongoQueue: deadQueue must expose add()")

        if recursion_limit is None:
            recursion_limit = get_settings().queue_get_recursion_limit

        try:
            options = QueueOptions(
                **{
                    key: value
                    for key, value in {
                        "visibility": visibility,
                        "delay": delay,
                        "max_retries": max_retries,
                    }.items()
                    if value is not None
                },
                dead_queue=dead_queue,
                recursion_limit=recursion_limit,
            )
        except ValidationError as e:
            raise QueueConfigurationError(f"MongoQueue: invalid options: {e}") from e

        self.database = database
        self.name = name
        self.collection: AsyncIOMotorCollection = database[name]
        self.visibility = options.visibility
        self.delay = options.delay
        self.recursion_limit = options.recursion_limit
        self.dead_queue = dead_queue
        self.max_retries: Optional[int] = None

        if dead_queue is not None:
            self.max_retries = (
                options.max_retries
                if options.max_retries is not None
                else DEFAULT_MAX_RETRIES
            )

    @classmethod
    async def create(cls, database: AsyncIOMotorDatabase, name: str, **options: Any) -> "Queue":
        """
        Probe the database with a ping, then construct the queue.

        Raises:
            QueueConfigurationError: If the database is missing or unreachable
        """
        if not await cls.is_connected(database):
            raise QueueConfigurationError("MongoQueue: database must be connected.")

        return cls(database, name, **options)

    @staticmethod
    async def is_connected(database: Optional[AsyncIOMotorDatabase]) -> bool:
        """Return True if the database answers a ping."""
        if database is None:
            return False

        try:
            await database.command("ping")
            return True
        except Exception as e:
            logger.warning(f"MongoDB ping failed: {e}")
            return False

    async def create_indexes(self) -> None:
        """
        Create the claim index and the unique ack index.
        Idempotent - safe to call on every startup.
        """
        try:
            await self.collection.create_index([("deleted", 1), ("visible", 1)])
            await self.collection.create_index("ack", unique=True, sparse=True)
        except PyMongoError as e:
            raise self._failure("create indexes", e) from e

        log_queue_event(self.name, "create_indexes", level="INFO")

    def _new_document(self, payload: Any, visible: str) -> dict:
        # The ack written here is a placeholder, not a lease
        return {
            "visible": visible,
            "payload": payload,
            "ack": helpers.token(),
        }

    def _visible_after(self, delay: Optional[float]) -> str:
        delay = _seconds(self.delay if delay is None else delay, "delay")
        return helpers.now_plus_secs(delay) if delay else helpers.now()

    async def add(self, payload: Any, *, delay: Optional[float] = None) -> EnqueuedMessage:
        """
        Add a message to the queue.

        Args:
            payload: Any BSON-encodable value, stored verbatim
            delay: Seconds before the message becomes visible (default: queue delay)

        Returns:
            EnqueuedMessage with the new id and placeholder ack
        """
        document = self._new_document(payload, self._visible_after(delay))

        try:
            result = await self.collection.insert_one(document)
        except PyMongoError as e:
            raise self._failure("add message", e) from e

        message_id = str(result.inserted_id)
        log_queue_event(self.name, "add", message_id=message_id)

        return EnqueuedMessage(id=message_id, ack=document["ack"], payload=payload)

    async def add_many(self, payloads: List[Any], *, delay: Optional[float] = None) -> List[EnqueuedMessage]:
        """
        Add several messages in one insert.

        All messages share one visibility timestamp. Results follow the order
        of `payloads`.

        Raises:
            QueueOperationError: If the batch insert fails
            ValueError: Negative delay override
        """
        if not payloads:
            return []

        visible = self._visible_after(delay)
        documents = [self._new_document(payload, visible) for payload in payloads]

        try:
            result = await self.collection.insert_many(documents)
        except PyMongoError as e:
            raise self._failure("insert many messages", e) from e

        log_queue_event(self.name, "add_many", count=len(documents))

        return [
            EnqueuedMessage(id=str(inserted_id), ack=document["ack"], payload=document["payload"])
            for document, inserted_id in zip(documents, result.inserted_ids)
        ]

    async def get(self, *, visibility: Optional[float] = None, retry_count: int = 0) -> Optional[ClaimedMessage]:
        """
        Claim the oldest visible message.

        Messages whose try count exceeds max_retries are moved to the dead
        queue and skipped, so the caller only sees messages within budget.
        At most `recursion_limit` such messages are skipped per call.

        Args:
            visibility: Lease length in seconds (default: queue visibility)
            retry_count: Dead messages already skipped; callers leave it at 0

        Returns:
            The claimed message, or None if nothing is available

        Raises:
            RecursionLimitError: Too many consecutive dead messages
            ValueError: Negative visibility override
            QueueOperationError: The store operation failed
        """
        visibility = _seconds(self.visibility if visibility is None else visibility, "visibility")

        while True:
            if retry_count > self.recursion_limit:
                raise RecursionLimitError(self.recursion_limit)

            message = await self._claim(visibility)
            if message is None:
                return None

            if self.dead_queue is None or message.tries <= self.max_retries:
                log_queue_event(self.name, "claim", message_id=message.id, tries=message.tries)
                return message

            await self._dead_letter(message)
            retry_count += 1

    async def _claim(self, visibility: float) -> Optional[ClaimedMessage]:
        query = {
            "deleted": None,
            "visible": {"$lte": helpers.now()},
        }
        update = {
            "$inc": {"tries": 1},
            "$set": {
                "ack": helpers.token(),
                "visible": helpers.now_plus_secs(visibility),
            },
        }

        try:
            document = await self.collection.find_one_and_update(
                query,
                update,
                sort=[("_id", 1)],
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise self._failure("get message", e) from e

        if document is None:
            return None

        return ClaimedMessage(
            id=str(document["_id"]),
            ack=document["ack"],
            payload=document.get("payload"),
            tries=document["tries"],
        )

    async def _dead_letter(self, message: ClaimedMessage) -> None:
        # Not atomic across queues: a failed ack below leaves a copy in the
        # dead queue and the message is forwarded again on its next claim.
        await self.dead_queue.add(message.model_dump())

        try:
            await self.ack(message.ack)
        except UnidentifiedAckError:
            # Lease expired and was re-claimed after the forward; the new
            # claimant will forward it again.
            log_queue_event(
                self.name,
                "dead_letter_duplicate",
                level="WARNING",
                message_id=message.id,
                tries=message.tries,
            )
            return

        log_queue_event(
            self.name,
            "dead_letter",
            level="WARNING",
            message_id=message.id,
            tries=message.tries,
            max_retries=self.max_retries,
        )

    async def ack(self, ack: str) -> str:
        """
        Mark a leased message as done.

        Args:
            ack: Token returned by get()

        Returns:
            Hex id of the acknowledged message

        Raises:
            UnidentifiedAckError: No active message holds this token
            QueueOperationError: The store operation failed
        """
        query = {
            "ack": ack,
            "deleted": None,
        }
        update = {
            "$set": {
                "deleted": helpers.now(),
            },
        }

        try:
            document = await self.collection.find_one_and_update(
                query, update, return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            raise self._failure("acknowledge message", e) from e

        if document is None:
            raise UnidentifiedAckError(ack, "ack")

        message_id = str(document["_id"])
        log_queue_event(self.name, "ack", message_id=message_id)
        return message_id

    async def ping(self, ack: str, *, visibility: Optional[float] = None) -> str:
        """
        Extend the lease of a message without touching its try count.

        Args:
            ack: Token returned by get()
            visibility: New lease length in seconds, counted from now

        Returns:
            Hex id of the message

        Raises:
            UnidentifiedAckError: No active message holds this token
            ValueError: Negative visibility override
        """
        visibility = _seconds(self.visibility if visibility is None else visibility, "visibility")
        query = {
            "ack": ack,
            "deleted": None,
        }
        update = {
            "$set": {
                "visible": helpers.now_plus_secs(visibility),
            },
        }

        try:
            document = await self.collection.find_one_and_update(
                query, update, return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            raise self._failure("ping message", e) from e

        if document is None:
            raise UnidentifiedAckError(ack, "ping")

        message_id = str(document["_id"])
        log_queue_event(self.name, "ping", message_id=message_id)
        return message_id

    async def clean(self) -> None:
        """Physically remove acknowledged messages."""
        try:
            result = await self.collection.delete_many({"deleted": {"$exists": True}})
        except PyMongoError as e:
            raise self._failure("clean queue", e) from e

        log_queue_event(self.name, "clean", removed=result.deleted_count)

    async def total(self) -> int:
        """Count every message regardless of state."""
        return await self._count({}, "count total")

    async def size(self) -> int:
        """Count messages available for claim right now."""
        query = {
            "deleted": None,
            "visible": {"$lte": helpers.now()},
        }
        return await self._count(query, "count size")

    async def in_flight(self) -> int:
        """
        Count messages that are hidden and not yet acknowledged.

        A message added with a delay carries a placeholder ack and counts here
        until it becomes visible.
        """
        query = {
            "ack": {"$exists": True},
            "visible": {"$gt": helpers.now()},
            "deleted": None,
        }
        return await self._count(query, "count in-flight")

    async def done(self) -> int:
        """Count acknowledged messages not yet cleaned."""
        return await self._count({"deleted": {"$exists": True}}, "count done")

    async def stats(self) -> QueueStats:
        """Collect all counters. Each is read separately, so not a consistent snapshot."""
        return QueueStats(
            total=await self.total(),
            size=await self.size(),
            in_flight=await self.in_flight(),
            done=await self.done(),
        )

    async def _count(self, query: dict, operation: str) -> int:
        try:
            return await self.collection.count_documents(query)
        except PyMongoError as e:
            raise self._failure(operation, e) from e

    def _failure(self, operation: str, error: PyMongoError) -> QueueOperationError:
        logger.bind(queue=self.name, operation=operation).error(
            f"Queue {self.name}: failed to {operation}: {error}"
        )
        return QueueOperationError(operation, error)

    def __repr__(self) -> str:
        return f"Queue(name={self.name!r}, visibility={self.visibility}, delay={self.delay})"


def _seconds(value: float, name: str) -> float:
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")
    return value

async def mongo_queue(database: AsyncIOMotorDatabase, name: str, **options: Any) -> Queue:
    """
    Create a Queue after checking the database is reachable.

    Args:
        database: Motor database instance
        name: Collection name backing the queue
        **options: visibility, delay, dead_queue, max_retries, recursion_limit

    Returns:
        A configured Queue
    """
    return await Queue.create(database, name, **options)
