"""
mongo-queue

At-least-once message queue over a MongoDB collection:
- Atomic claim with visibility timeouts
- Lease extension (ping) and acknowledgement
- Retry counting with dead-letter escalation
- Queue counters for monitoring
- Polling worker with lease heartbeats
"""

from mongo_queue.exceptions import (
    QueueError,
    QueueConfigurationError,
    QueueOperationError,
    RecursionLimitError,
    UnidentifiedAckError,
)
from mongo_queue.models import ClaimedMessage, EnqueuedMessage, QueueStats
from mongo_queue.queue import Queue, mongo_queue
from mongo_queue.connection import DatabaseManager, db_manager, get_database
from mongo_queue.worker import QueueWorker

__all__ = [
    "Queue",
    "mongo_queue",
    "ClaimedMessage",
    "EnqueuedMessage",
    "QueueStats",
    "QueueError",
    "QueueConfigurationError",
    "QueueOperationError",
    "RecursionLimitError",
    "UnidentifiedAckError",
    "DatabaseManager",
    "db_manager",
    "get_database",
    "QueueWorker",
]
