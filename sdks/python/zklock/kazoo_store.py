"""ZooKeeper store adapter built on kazoo."""

import asyncio
import functools
import logging
import os
from typing import Any, Callable, List, Optional

from kazoo.client import KazooClient
from kazoo.exceptions import KazooException
from kazoo.exceptions import NodeExistsError as KazooNodeExistsError
from kazoo.exceptions import NoNodeError
from kazoo.handlers.threading import KazooTimeoutError
from kazoo.protocol.states import WatchedEvent

from .exceptions import NodeExistsError, NodeNotFoundError, StoreError
from .models import WatchEvent, WatchEventType
from .store import WatchCallback

logger = logging.getLogger(__name__)

DEFAULT_HOSTS = "127.0.0.1:2181"
DEFAULT_HOSTS_ENV = "ZKLOCK_HOSTS"


def _settle(future: asyncio.Future, async_result: Any) -> None:
    if future.done():
        return
    try:
        future.set_result(async_result.get_nowait())
    except Exception as e:
        future.set_exception(e)


def _to_watch_event(event: WatchedEvent) -> WatchEvent:
    try:
        event_type = WatchEventType(event.type)
    except ValueError:
        event_type = WatchEventType.NONE
    return WatchEvent(type=event_type, path=event.path)


class KazooStore:
    """Coordination store backed by a ZooKeeper ensemble.

    Calls go through kazoo's asynchronous API; completions and watches arrive
    on kazoo's callback thread and are handed to the event loop that issued
    the call.
    """

    def __init__(self, client: KazooClient = None, *, hosts: str = None, timeout: float = 10.0):
        """Initialize the store.

        Args:
            client: Existing kazoo client; one is created from ``hosts`` otherwise
            hosts: Comma separated ``host:port`` list, defaults to $ZKLOCK_HOSTS
            timeout: Connection timeout in seconds
        """
        self.hosts = hosts or os.environ.get(DEFAULT_HOSTS_ENV, DEFAULT_HOSTS)
        self.timeout = timeout
        self.client = client or KazooClient(hosts=self.hosts, timeout=timeout)

    @classmethod
    def from_env(cls, timeout: float = 10.0) -> "KazooStore":
        """Build a store for the ensemble named by $ZKLOCK_HOSTS."""
        return cls(hosts=os.environ.get(DEFAULT_HOSTS_ENV, DEFAULT_HOSTS), timeout=timeout)

    async def start(self) -> None:
        """Connect to the ensemble."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, functools.partial(self.client.start, timeout=self.timeout))
        except (KazooException, KazooTimeoutError) as e:
            raise StoreError(f"Unable to connect to {self.hosts}: {e}") from e
        logger.debug("connected to %s", self.hosts)

    async def stop(self) -> None:
        """End the store session and close the connection."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.client.stop)
        await loop.run_in_executor(None, self.client.close)
        logger.debug("disconnected from %s", self.hosts)

    async def _call(self, operation: str, path: str, method: Callable[..., Any], *args, **kwargs):
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        try:
            async_result = method(*args, **kwargs)
            async_result.rawlink(
                lambda result: loop.call_soon_threadsafe(_settle, future, result)
            )
            return await future
        except NoNodeError as e:
            raise NodeNotFoundError(f"Node does not exist {operation} {path}") from e
        except KazooNodeExistsError as e:
            raise NodeExistsError(f"Node already exists {operation} {path}") from e
        except (KazooException, KazooTimeoutError) as e:
            raise StoreError(f"Store error {operation} {path}: {e!r}") from e

    def _relay_watch(self, watch: WatchCallback) -> Callable[[WatchedEvent], None]:
        loop = asyncio.get_running_loop()

        def relay(event: WatchedEvent) -> None:
            loop.call_soon_threadsafe(watch, _to_watch_event(event))

        return relay

    async def create(self, path: str, *, ephemeral: bool = False, sequence: bool = False) -> str:
        return await self._call(
            "creating", path, self.client.create_async, path, b"", ephemeral=ephemeral, sequence=sequence
        )

    async def get_children(self, path: str) -> List[str]:
        return await self._call("listing", path, self.client.get_children_async, path)

    async def exists(self, path: str, watch: Optional[WatchCallback] = None) -> bool:
        relay = self._relay_watch(watch) if watch is not None else None
        stat = await self._call("checking", path, self.client.exists_async, path, watch=relay)
        return stat is not None

    async def delete(self, path: str, version: int = -1) -> None:
        await self._call("deleting", path, self.client.delete_async, path, version=version)

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop()
