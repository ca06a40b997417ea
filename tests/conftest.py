"""Pytest configuration shared across the test suite."""

import asyncio
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from zklock import InMemoryStore, LockClient, StoreError


class RecordingStore:
    """Store wrapper recording every call and failing on demand."""

    def __init__(self, inner: InMemoryStore) -> None:
        self.inner = inner
        self.calls: List[Tuple[str, str]] = []
        self._failures: Dict[str, Tuple[int, Exception]] = {}

    def fail(self, operation: str, error: Optional[Exception] = None, *, after: int = 0) -> None:
        """Make ``operation`` raise after ``after`` more successful calls."""
        self._failures[operation] = (after, error or StoreError(f"{operation} failed"))

    def heal(self, operation: str) -> None:
        self._failures.pop(operation, None)

    def calls_to(self, operation: str) -> List[str]:
        return [path for op, path in self.calls if op == operation]

    async def _run(self, operation: str, path: str, call):
        self.calls.append((operation, path))
        failure = self._failures.get(operation)
        if failure is not None:
            remaining, error = failure
            if remaining <= 0:
                raise error
            self._failures[operation] = (remaining - 1, error)
        return await call()

    async def create(self, path, *, ephemeral=False, sequence=False):
        return await self._run(
            "create", path, lambda: self.inner.create(path, ephemeral=ephemeral, sequence=sequence)
        )

    async def get_children(self, path):
        return await self._run("get_children", path, lambda: self.inner.get_children(path))

    async def exists(self, path, watch=None):
        return await self._run("exists", path, lambda: self.inner.exists(path, watch=watch))

    async def delete(self, path, version=-1):
        return await self._run("delete", path, lambda: self.inner.delete(path, version))


class ZeroRandom:
    """Random source that always picks the shortest backoff."""

    def random(self) -> float:
        return 0.0


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def tree():
    store = InMemoryStore()
    store.ensure_path("/locks/a")
    return store


@pytest.fixture
def store_a(tree):
    return RecordingStore(tree)


@pytest.fixture
def store_b(tree):
    return RecordingStore(tree.new_session())


@pytest.fixture
def client_a(store_a):
    return LockClient(store_a, rng=ZeroRandom())


@pytest.fixture
def client_b(store_b):
    return LockClient(store_b, rng=ZeroRandom())
