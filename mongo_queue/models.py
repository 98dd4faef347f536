"""
Queue Models

Public message shapes and validated queue options.
"""
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_VISIBILITY = 60
DEFAULT_DELAY = 60
DEFAULT_MAX_RETRIES = 5


class EnqueuedMessage(BaseModel):
    """
    Result of add()/add_many().

    Attributes:
        id: Hex string of the store-assigned ObjectId
        ack: Placeholder token written at insert time (not an active lease)
        payload: Caller payload, unchanged
    """
    id: str
    ack: str
    payload: Any = None


class ClaimedMessage(BaseModel):
    """
    Message leased by get().

    Attributes:
        id: Hex string of the store-assigned ObjectId
        ack: Lease token, valid until the visibility timeout elapses
        payload: Caller payload, unchanged
        tries: Number of claims so far, including this one
    """
    id: str
    ack: str
    payload: Any = None
    tries: int


class QueueStats(BaseModel):
    """Snapshot of the advisory queue counters."""
    total: int = 0
    size: int = 0
    in_flight: int = 0
    done: int = 0


class QueueOptions(BaseModel):
    """
    Validated queue configuration.

    max_retries only applies when a dead queue is configured.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    visibility: float = Field(default=DEFAULT_VISIBILITY, ge=0)
    delay: float = Field(default=DEFAULT_DELAY, ge=0)
    dead_queue: Optional[Any] = None
    max_retries: Optional[int] = Field(default=None, ge=0)
    recursion_limit: int = Field(ge=0)
