"""zklock data models."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

from .exceptions import ValidationError

if TYPE_CHECKING:
    from .client import LockClient


class LockState(str, Enum):
    """Lock attempt state enumeration."""
    CREATING_NODE = "creating_node"
    LISTING_CHILDREN = "listing_children"
    WAITING = "waiting"
    ACQUIRED = "acquired"
    FAILED = "failed"
    RELEASED = "released"


class WatchEventType(str, Enum):
    """Store change types, named as ZooKeeper names them."""
    CREATED = "CREATED"
    DELETED = "DELETED"
    CHANGED = "CHANGED"
    CHILD = "CHILD"
    NONE = "NONE"


@dataclass(frozen=True)
class WatchEvent:
    """A fired one-shot watch."""
    type: WatchEventType
    path: Optional[str]


@dataclass(frozen=True)
class ForcedRelease:
    """Notification emitted when a lock is released because its TTL expired."""
    resource_name: str
    resource_id: str
    path: str


def join_path(parent: str, name: str) -> str:
    """Join a store path and a child name."""
    if parent == "/":
        return "/" + name
    return f"{parent}/{name}"


@dataclass(frozen=True)
class LockRequest:
    """Parameters of one lock attempt.

    Args:
        resource_name: Store path under which contenders create their nodes
        resource_id: Prefix of the sequential node created for the attempt
        ttl_ms: Maximum hold time in milliseconds, ``None`` to hold until released
        max_retry_count: Enables polling with backoff instead of a watch
        initial_retry_wait_ms: Backoff base unit, required for polling
    """
    resource_name: str
    resource_id: str
    ttl_ms: Optional[int] = None
    max_retry_count: Optional[int] = None
    initial_retry_wait_ms: Optional[int] = None

    def __post_init__(self) -> None:
        name = self.resource_name
        if not name or not name.startswith("/"):
            raise ValidationError("Resource name must be an absolute path")
        if name != "/" and name.endswith("/"):
            raise ValidationError("Resource name must not end with '/'")
        if not self.resource_id or "/" in self.resource_id:
            raise ValidationError("Resource id must be a non-empty name without '/'")
        if self.ttl_ms is not None and self.ttl_ms <= 0:
            raise ValidationError("TTL must be a positive number of milliseconds")
        if self.max_retry_count is not None:
            if self.max_retry_count < 0:
                raise ValidationError("Max retry count must not be negative")
            if not self.initial_retry_wait_ms or self.initial_retry_wait_ms <= 0:
                raise ValidationError(
                    "Initial retry wait must be a positive number of milliseconds "
                    "when max retry count is set"
                )

    @property
    def resource_path(self) -> str:
        """Path passed to the store when creating the sequential node."""
        return join_path(self.resource_name, self.resource_id)

    @property
    def polling(self) -> bool:
        """Whether waiting polls with backoff instead of watching."""
        return self.max_retry_count is not None


@dataclass(eq=False)
class LockSession:
    """State of one lock attempt, and the handle of the lock once held.

    A session belongs to a single ``lock()`` call. ``acquired_path`` is set
    exactly while the lock is held.
    """
    request: LockRequest
    state: LockState = LockState.CREATING_NODE
    seq_node: Optional[str] = None
    acquired_path: Optional[str] = None
    last_watched_node: Optional[str] = None
    collision_count: int = 0

    _ttl_handle: Optional[asyncio.TimerHandle] = field(default=None, repr=False)
    _releasing: Optional["asyncio.Future[None]"] = field(default=None, repr=False)
    _client: Optional["LockClient"] = field(default=None, repr=False)

    @property
    def held(self) -> bool:
        return self.acquired_path is not None

    @property
    def node_path(self) -> Optional[str]:
        """Full path of the node created for this attempt."""
        if self.seq_node is None:
            return None
        return join_path(self.request.resource_name, self.seq_node)

    @property
    def ttl_armed(self) -> bool:
        return self._ttl_handle is not None

    def disarm_ttl(self) -> None:
        """Cancel the pending TTL force-release, if any."""
        if self._ttl_handle is not None:
            self._ttl_handle.cancel()
            self._ttl_handle = None

    async def release(self) -> None:
        """Release the lock through the client that acquired it."""
        if self._client is None:
            return
        await self._client.unlock(self)

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.release()
