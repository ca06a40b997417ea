"""zklock exception classes."""

from typing import Optional


class ZkLockError(Exception):
    """Base exception for all zklock errors."""
    pass


class ValidationError(ZkLockError):
    """Raised when a lock request fails validation."""
    pass


class StoreError(ZkLockError):
    """Raised when a coordination store operation fails."""
    pass


class NodeNotFoundError(StoreError):
    """Raised when a store path does not exist."""
    pass


class NodeExistsError(StoreError):
    """Raised when creating a store path that already exists."""
    pass


class LockError(ZkLockError):
    """Raised when lock operations fail."""

    def __init__(self, message: str, resource_name: str = None):
        super().__init__(message)
        self.resource_name = resource_name


class LockAcquisitionError(LockError):
    """Raised when a lock could not be acquired.

    ``seq_node`` is the sequential node created for the attempt, if any. When
    removing that node failed as well, the removal error is kept in
    ``cleanup_error``; the acquisition error is still the one raised.
    """

    def __init__(self, message: str, resource_name: str = None, seq_node: str = None):
        super().__init__(message, resource_name=resource_name)
        self.seq_node = seq_node
        self.cleanup_error: Optional[BaseException] = None


class CreateFailedError(LockAcquisitionError):
    """Raised when the store rejects creation of the sequential node."""
    pass


class ListFailedError(LockAcquisitionError):
    """Raised when listing the contenders of a resource fails."""
    pass


class ExistsFailedError(LockAcquisitionError):
    """Raised when checking the predecessor node fails."""
    pass


class RetryLimitExceededError(LockAcquisitionError):
    """Raised when polling exhausts the configured retries."""

    def __init__(
        self,
        message: str,
        resource_name: str = None,
        seq_node: str = None,
        collision_count: int = 0,
    ):
        super().__init__(message, resource_name=resource_name, seq_node=seq_node)
        self.collision_count = collision_count


class LockNodeLostError(LockAcquisitionError):
    """Raised when the attempt's own node disappears while waiting."""
    pass


class UnlockError(LockError):
    """Raised when a held lock could not be released.

    The session keeps its ``acquired_path``: the lock may still be held.
    """

    def __init__(self, message: str, resource_name: str = None, path: str = None):
        super().__init__(message, resource_name=resource_name)
        self.path = path
