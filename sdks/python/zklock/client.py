"""zklock lock client.

Acquisition follows the ZooKeeper lock recipe. Every attempt creates an
ephemeral sequential node under the resource path and ranks it against its
siblings. The lowest node holds the lock; every other attempt waits for its
immediate predecessor to disappear, either through a one-shot watch or by
polling with exponential backoff, and then ranks itself again from a fresh
listing. The lock is released by deleting the node, explicitly or when the
optional TTL expires.
"""

import asyncio
import logging
import random
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set

from .backoff import compute_backoff_delay
from .exceptions import (
    CreateFailedError,
    ExistsFailedError,
    ListFailedError,
    LockAcquisitionError,
    LockNodeLostError,
    NodeNotFoundError,
    RetryLimitExceededError,
    StoreError,
    UnlockError,
)
from .models import ForcedRelease, LockRequest, LockSession, LockState, WatchEvent, join_path
from .sequence import sort_contenders
from .store import CoordinationStore

TTLListener = Callable[[ForcedRelease], None]


class LockClient:
    """Distributed lock client over a coordination store."""

    def __init__(
        self,
        store: CoordinationStore,
        *,
        logger: Optional[logging.Logger] = None,
        on_ttl_expired: Optional[TTLListener] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the lock client.

        Args:
            store: Coordination store adapter the locks live in
            logger: Logger override, defaults to this module's logger
            on_ttl_expired: Listener notified when a TTL forces a release
            rng: Random source for backoff jitter
        """
        self.store = store
        self.logger = logger or logging.getLogger(__name__)
        self.rng = rng
        self._ttl_listeners: List[TTLListener] = []
        if on_ttl_expired is not None:
            self._ttl_listeners.append(on_ttl_expired)
        self._held: Set[LockSession] = set()
        self._forced_releases: Set["asyncio.Task[None]"] = set()

        self._handlers: Dict[LockState, Callable[[LockSession], Awaitable[LockState]]] = {
            LockState.CREATING_NODE: self._create_node,
            LockState.LISTING_CHILDREN: self._list_children,
            LockState.WAITING: self._wait_for_predecessor,
        }

    @property
    def held_sessions(self) -> List[LockSession]:
        """Sessions currently holding a lock acquired through this client."""
        return list(self._held)

    def add_ttl_listener(self, listener: TTLListener) -> None:
        """Register a callable notified of every TTL-forced release."""
        self._ttl_listeners.append(listener)

    def remove_ttl_listener(self, listener: TTLListener) -> None:
        self._ttl_listeners.remove(listener)

    async def lock(self, request: LockRequest) -> LockSession:
        """Acquire a distributed lock.

        Waits until the lock is held, the retry budget of a polling request
        runs out, or a store call fails.

        Args:
            request: Resource to lock and how to wait for it

        Returns:
            LockSession holding the lock

        Raises:
            LockAcquisitionError: The lock was not acquired. Any node created
                for the attempt has been removed (best-effort) beforehand.
        """
        session = LockSession(request=request, _client=self)
        try:
            while session.state is not LockState.ACQUIRED:
                next_state = await self._handlers[session.state](session)
                self.logger.debug(
                    "%s: %s -> %s", request.resource_path, session.state.value, next_state.value
                )
                session.state = next_state
        except LockAcquisitionError as e:
            await self._fail(session, e)
            raise
        except asyncio.CancelledError:
            self.logger.debug("lock attempt on %s cancelled", request.resource_name)
            await self._discard_node(session)
            session.state = LockState.FAILED
            raise
        except Exception:
            self.logger.exception("unexpected error acquiring lock on %s", request.resource_name)
            session.state = LockState.FAILED
            await self._discard_node(session)
            raise

        self._lock_acquired(session)
        return session

    async def unlock(self, session: LockSession) -> None:
        """Release a lock.

        Releasing a session that holds nothing is a no-op, so calling this
        after a TTL-forced release, or twice, is safe.

        Args:
            session: Session returned by ``lock()``

        Raises:
            UnlockError: The node could not be removed; the session still
                reports the lock as held.
        """
        session.disarm_ttl()
        if not session.held:
            return

        # Concurrent releases share one removal.
        releasing = session._releasing
        if releasing is None:
            releasing = asyncio.ensure_future(self._remove_held_node(session))
            session._releasing = releasing
        try:
            await asyncio.shield(releasing)
        finally:
            if releasing.done() and session._releasing is releasing:
                session._releasing = None

    @asynccontextmanager
    async def hold(self, request: LockRequest) -> AsyncIterator[LockSession]:
        """Hold a lock for the duration of an ``async with`` block."""
        session = await self.lock(request)
        try:
            yield session
        finally:
            await self.unlock(session)

    async def aclose(self) -> None:
        """Release every lock held through this client."""
        for session in list(self._held):
            try:
                await self.unlock(session)
            except UnlockError as e:
                self.logger.error("unable to release %s on close: %s", e.path, e)
        if self._forced_releases:
            await asyncio.gather(*self._forced_releases, return_exceptions=True)

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.aclose()

    # -- acquisition states -------------------------------------------------

    async def _create_node(self, session: LockSession) -> LockState:
        request = session.request
        try:
            path = await self.store.create(request.resource_path, ephemeral=True, sequence=True)
        except StoreError as e:
            self.logger.error("unable to create node %s: %s", request.resource_path, e)
            raise CreateFailedError(
                f"Unable to create lock node under {request.resource_name}: {e}",
                resource_name=request.resource_name,
            ) from e

        self.logger.debug("node created %s", path)
        session.seq_node = path.rsplit("/", 1)[-1]
        return LockState.LISTING_CHILDREN

    async def _list_children(self, session: LockSession) -> LockState:
        request = session.request
        try:
            children = await self.store.get_children(request.resource_name)
        except StoreError as e:
            self.logger.debug("failed to list children of %s: %s", request.resource_name, e)
            raise ListFailedError(
                f"Failed to list lock nodes of {request.resource_name}: {e}",
                resource_name=request.resource_name,
                seq_node=session.seq_node,
            ) from e

        contenders = sort_contenders(children)
        self.logger.debug("children of %s are: %s", request.resource_name, contenders)
        if contenders and contenders[0] == session.seq_node:
            return LockState.ACQUIRED

        try:
            index = contenders.index(session.seq_node)
        except ValueError:
            raise LockNodeLostError(
                f"Lock node {session.node_path} no longer exists",
                resource_name=request.resource_name,
                seq_node=session.seq_node,
            ) from None

        session.last_watched_node = contenders[index - 1]
        return LockState.WAITING

    async def _wait_for_predecessor(self, session: LockSession) -> LockState:
        request = session.request
        predecessor = join_path(request.resource_name, session.last_watched_node)

        woken: Optional["asyncio.Future[WatchEvent]"] = None
        watch = None
        if not request.polling:
            woken = asyncio.get_running_loop().create_future()

            def watch(event: WatchEvent) -> None:
                if not woken.done():
                    woken.set_result(event)

        try:
            present = await self.store.exists(predecessor, watch=watch)
        except StoreError as e:
            self.logger.error("unable to check the existence of %s: %s", predecessor, e)
            raise ExistsFailedError(
                f"Unable to check the existence of {predecessor}: {e}",
                resource_name=request.resource_name,
                seq_node=session.seq_node,
            ) from e

        if not present:
            self.logger.debug("lock appears to be available, re-checking rank of %s", session.seq_node)
            return LockState.LISTING_CHILDREN

        if woken is not None:
            self.logger.debug("%s waiting on %s", session.seq_node, predecessor)
            event = await woken
            self.logger.debug("watch on %s fired: %s", predecessor, event.type.value)
            return LockState.LISTING_CHILDREN

        if session.collision_count > request.max_retry_count:
            self.logger.debug("lock failed, retry count limit reached - %d", session.collision_count)
            raise RetryLimitExceededError(
                f"Lock failed, retry count limit reached - {session.collision_count}",
                resource_name=request.resource_name,
                seq_node=session.seq_node,
                collision_count=session.collision_count,
            )

        delay_ms = compute_backoff_delay(
            session.collision_count, request.initial_retry_wait_ms, rng=self.rng
        )
        self.logger.debug(
            "lock is still not available, retrying #%d in %dms", session.collision_count, delay_ms
        )
        await asyncio.sleep(delay_ms / 1000)
        session.collision_count += 1
        return LockState.LISTING_CHILDREN

    def _lock_acquired(self, session: LockSession) -> None:
        request = session.request
        session.acquired_path = session.node_path
        self._held.add(session)
        if request.ttl_ms is not None:
            loop = asyncio.get_running_loop()
            session._ttl_handle = loop.call_later(request.ttl_ms / 1000, self._ttl_expired, session)
        self.logger.debug("lock acquired %s", session.acquired_path)

    async def _fail(self, session: LockSession, error: LockAcquisitionError) -> None:
        session.state = LockState.FAILED
        self.logger.error("unable to acquire lock on %s: %s", session.request.resource_name, error)
        error.cleanup_error = await self._discard_node(session)

    async def _discard_node(self, session: LockSession) -> Optional[StoreError]:
        """Remove the attempt's node, returning the removal error if it failed."""
        path = session.node_path
        if path is None:
            return None
        self.logger.debug("lock failed, cleaning up sequential node %s", path)
        try:
            await self.store.delete(path, -1)
        except NodeNotFoundError:
            pass
        except StoreError as e:
            self.logger.warning("unable to remove sequential node %s: %s", path, e)
            return e
        return None

    # -- release ------------------------------------------------------------

    async def _remove_held_node(self, session: LockSession) -> None:
        path = session.acquired_path
        self.logger.debug("removing %s", path)
        try:
            await self.store.delete(path, -1)
        except NodeNotFoundError:
            self.logger.debug("%s already gone", path)
        except StoreError as e:
            self.logger.debug("unlock failed %s: %s", path, e)
            raise UnlockError(
                f"Unable to unlock resource {path}: {e}",
                resource_name=session.request.resource_name,
                path=path,
            ) from e

        self.logger.debug("removed %s", path)
        session.acquired_path = None
        session.state = LockState.RELEASED
        self._held.discard(session)

    def _ttl_expired(self, session: LockSession) -> None:
        session._ttl_handle = None
        request = session.request
        self.logger.error(
            "lock held time exceeds TTL, force releasing lock %s", session.acquired_path
        )
        notice = ForcedRelease(
            resource_name=request.resource_name,
            resource_id=request.resource_id,
            path=session.acquired_path,
        )
        for listener in list(self._ttl_listeners):
            try:
                listener(notice)
            except Exception:
                self.logger.exception("TTL listener failed for %s", notice.path)

        task = asyncio.ensure_future(self._force_release(session))
        self._forced_releases.add(task)
        task.add_done_callback(self._forced_releases.discard)

    async def _force_release(self, session: LockSession) -> None:
        try:
            await self.unlock(session)
        except UnlockError as e:
            self.logger.error("forced release of %s failed: %s", e.path, e)
