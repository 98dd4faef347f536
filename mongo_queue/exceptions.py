"""
Queue Exceptions

Every error raised by the queue derives from QueueError. An empty queue is
not an error: get() returns None.
"""
from typing import Optional


class QueueError(Exception):
    """Base class for all queue errors."""


class QueueConfigurationError(QueueError):
    """Raised at construction time for a missing/dead database or bad options."""


class UnidentifiedAckError(QueueError):
    """
    No active message holds the given ack token.

    Usually the message was already acknowledged, or its lease expired and
    another consumer re-claimed it under a fresh token.
    """

    def __init__(self, ack: str, operation: str = "ack"):
        self.ack = ack
        self.operation = operation
        super().__init__(f"Queue.{operation}(): Unidentified ack: {ack}")


class RecursionLimitError(QueueError):
    """get() skipped more consecutive dead messages than allowed."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Reached maximum get retries (limit={limit})")


class QueueOperationError(QueueError):
    """A driver-level failure, wrapped with the queue call that hit it."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        message = f"Failed to {operation}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
