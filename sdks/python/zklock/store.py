"""Coordination store adapters.

``CoordinationStore`` is the surface the lock client needs from a
ZooKeeper-style store. ``InMemoryStore`` implements it inside the process with
the same node, sequence, watch and session semantics, for tests and local
development.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Set

from .exceptions import NodeExistsError, NodeNotFoundError, StoreError
from .models import WatchEvent, WatchEventType
from .sequence import SEQUENCE_WIDTH, sequence_number

logger = logging.getLogger(__name__)

WatchCallback = Callable[[WatchEvent], None]


class CoordinationStore(Protocol):
    """Operations of a ZooKeeper-style store used by the lock client."""

    async def create(self, path: str, *, ephemeral: bool = False, sequence: bool = False) -> str:
        """Create a node and return its path (with the sequence suffix, if any)."""
        ...

    async def get_children(self, path: str) -> List[str]:
        """Return the child names of a node, in no particular order."""
        ...

    async def exists(self, path: str, watch: Optional[WatchCallback] = None) -> bool:
        """Check a node, optionally leaving a one-shot watch on it."""
        ...

    async def delete(self, path: str, version: int = -1) -> None:
        """Delete a node."""
        ...


def _parent_of(path: str) -> str:
    parent = path.rsplit("/", 1)[0]
    return parent or "/"


@dataclass(eq=False)
class _Node:
    ephemeral_owner: Optional[int] = None
    sequence: int = 0
    version: int = 0
    children: Set[str] = field(default_factory=set)


class _Tree:
    """Node tree and watches shared by every session of an in-memory store."""

    def __init__(self):
        self.nodes: Dict[str, _Node] = {"/": _Node()}
        self.watches: Dict[str, List[WatchCallback]] = {}
        self.next_session_id = 1

    def fire(self, path: str, event_type: WatchEventType) -> None:
        callbacks = self.watches.pop(path, [])
        if not callbacks:
            return
        loop = asyncio.get_running_loop()
        event = WatchEvent(type=event_type, path=path)
        for callback in callbacks:
            loop.call_soon(callback, event)


class InMemoryStore:
    """In-process coordination store.

    Each instance is one store session: ephemeral nodes it creates are removed
    by ``close()``. ``new_session()`` opens another session on the same tree,
    which is how several clients contend for the same resource.
    """

    def __init__(self, _tree: Optional[_Tree] = None):
        self._tree = _tree or _Tree()
        self.session_id = self._tree.next_session_id
        self._tree.next_session_id += 1
        self._ephemerals: Set[str] = set()
        self.closed = False

    def new_session(self) -> "InMemoryStore":
        """Open another session over the same node tree."""
        return InMemoryStore(self._tree)

    def _check_open(self) -> None:
        if self.closed:
            raise StoreError(f"Store session {self.session_id} is closed")

    def ensure_path(self, path: str) -> None:
        """Create a persistent path and any missing ancestors."""
        current = ""
        for part in path.strip("/").split("/"):
            if not part:
                continue
            parent = current or "/"
            current = f"{current}/{part}"
            if current not in self._tree.nodes:
                self._tree.nodes[current] = _Node()
                self._tree.nodes[parent].children.add(part)

    def node_names(self, path: str) -> List[str]:
        """Sorted child names of a path, for inspection."""
        node = self._tree.nodes.get(path)
        return sorted(node.children) if node else []

    async def create(self, path: str, *, ephemeral: bool = False, sequence: bool = False) -> str:
        self._check_open()
        parent_path = _parent_of(path)
        parent = self._tree.nodes.get(parent_path)
        if parent is None:
            raise NodeNotFoundError(f"Parent node does not exist: {parent_path}")
        if sequence:
            path = f"{path}{parent.sequence:0{SEQUENCE_WIDTH}d}"
            parent.sequence += 1
        if path in self._tree.nodes:
            raise NodeExistsError(f"Node already exists: {path}")

        self._tree.nodes[path] = _Node(ephemeral_owner=self.session_id if ephemeral else None)
        parent.children.add(path.rsplit("/", 1)[1])
        if ephemeral:
            self._ephemerals.add(path)

        self._tree.fire(path, WatchEventType.CREATED)
        return path

    async def get_children(self, path: str) -> List[str]:
        self._check_open()
        node = self._tree.nodes.get(path)
        if node is None:
            raise NodeNotFoundError(f"Node does not exist: {path}")
        return list(node.children)

    async def exists(self, path: str, watch: Optional[WatchCallback] = None) -> bool:
        self._check_open()
        present = path in self._tree.nodes
        if watch is not None and (present or not self._sequence_retired(path)):
            self._tree.watches.setdefault(path, []).append(watch)
        return present

    def _sequence_retired(self, path: str) -> bool:
        # A sequential name the parent already handed out is never issued
        # again, so a watch waiting for its creation would never fire.
        parent = self._tree.nodes.get(_parent_of(path))
        number = sequence_number(path.rsplit("/", 1)[1])
        return parent is not None and number is not None and number < parent.sequence

    def pending_watches(self) -> int:
        """Number of registered watches that have not fired, for inspection."""
        return sum(len(callbacks) for callbacks in self._tree.watches.values())

    async def delete(self, path: str, version: int = -1) -> None:
        self._check_open()
        self._remove(path, version)

    def _remove(self, path: str, version: int = -1) -> None:
        node = self._tree.nodes.get(path)
        if node is None:
            raise NodeNotFoundError(f"Node does not exist: {path}")
        if version != -1 and version != node.version:
            raise StoreError(f"Version mismatch deleting {path}")
        if node.children:
            raise StoreError(f"Node has children: {path}")

        del self._tree.nodes[path]
        parent_path = _parent_of(path)
        self._tree.nodes[parent_path].children.discard(path.rsplit("/", 1)[1])
        self._ephemerals.discard(path)

        self._tree.fire(path, WatchEventType.DELETED)

    async def close(self) -> None:
        """End the session, removing the ephemeral nodes it created."""
        if self.closed:
            return
        for path in sorted(self._ephemerals, reverse=True):
            node = self._tree.nodes.get(path)
            if node is not None and node.ephemeral_owner == self.session_id:
                logger.debug("session %s expired, removing %s", self.session_id, path)
                self._remove(path)
        self._ephemerals.clear()
        self.closed = True

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
