"""zklock - Distributed lock over a ZooKeeper-style coordination store."""

import logging

from .client import LockClient
from .exceptions import (
    ZkLockError,
    ValidationError,
    StoreError,
    NodeNotFoundError,
    NodeExistsError,
    LockError,
    LockAcquisitionError,
    CreateFailedError,
    ListFailedError,
    ExistsFailedError,
    RetryLimitExceededError,
    LockNodeLostError,
    UnlockError,
)
from .models import (
    LockState,
    LockRequest,
    LockSession,
    ForcedRelease,
    WatchEvent,
    WatchEventType,
)
from .store import CoordinationStore, InMemoryStore

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "1.0.0"
__all__ = [
    "LockClient",
    "CoordinationStore",
    "InMemoryStore",
    "ZkLockError",
    "ValidationError",
    "StoreError",
    "NodeNotFoundError",
    "NodeExistsError",
    "LockError",
    "LockAcquisitionError",
    "CreateFailedError",
    "ListFailedError",
    "ExistsFailedError",
    "RetryLimitExceededError",
    "LockNodeLostError",
    "UnlockError",
    "LockState",
    "LockRequest",
    "LockSession",
    "ForcedRelease",
    "WatchEvent",
    "WatchEventType",
]
