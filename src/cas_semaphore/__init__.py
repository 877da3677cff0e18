"""Distributed counting semaphore on a compare-and-swap key-value store.

Each semaphore is one versioned document holding its capacity and the list
of current holders. Locking and unlocking read the document, change it in
memory and write it back with a compare-and-swap on the version that was
read, so concurrent writers can never overfill a semaphore: the loser of a
race gets ``VersionMismatchError``.

Example usage:

    >>> from redis import Redis
    >>> from cas_semaphore import Lock, LockStoreClient, RedisCoordinationClient
    >>>
    >>> store = LockStoreClient.connect(RedisCoordinationClient(Redis()))
    >>> lock = Lock('web-1', 'deploy', store)
    >>> lock.set_max(2)
    >>>
    >>> with lock:
    ...     # At most two hosts run this at once
    ...     pass

Retrying on conflicts is opt-in:

    >>> from cas_semaphore import RetryingLock
    >>> with RetryingLock(lock, timeout=2.0):
    ...     pass
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version
from typing import Final

from .client import LockStoreClient
from .coordination import CoordinationClient, Node, RedisCoordinationClient
from .document import SemaphoreDocument
from .exceptions import (
    AlreadyHeldError,
    CapacityExceededError,
    KeyExistsError,
    KeyNotFoundError,
    LockStateError,
    NotHeldError,
    SemaphoreDecodeError,
    SemaphoreError,
    StoreError,
    StoreErrorKind,
    VersionMismatchError,
)
from .lock import Lock
from .retry import RetryingLock

__all__: Final[tuple[str, ...]] = (
    "AlreadyHeldError",
    "CapacityExceededError",
    "CoordinationClient",
    "KeyExistsError",
    "KeyNotFoundError",
    "Lock",
    "LockStateError",
    "LockStoreClient",
    "Node",
    "NotHeldError",
    "RedisCoordinationClient",
    "RetryingLock",
    "SemaphoreDecodeError",
    "SemaphoreDocument",
    "SemaphoreError",
    "StoreError",
    "StoreErrorKind",
    "VersionMismatchError",
)

try:
    __version__ = version("cas-semaphore")
except PackageNotFoundError:
    __version__ = "unknown"
