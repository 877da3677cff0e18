"""Per-caller handle on a distributed semaphore.

Each operation is a single read-modify-write transaction: fetch the document,
apply a mutation in memory, write it back with a compare-and-swap. If another
client wrote the semaphore in between, the write fails with
``VersionMismatchError`` and nothing is retried; see ``RetryingLock`` for an
opt-in retry policy.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, TypeVar

import structlog

if TYPE_CHECKING:
    from .client import LockStoreClient
    from .document import SemaphoreDocument

T = TypeVar("T")

logger = structlog.get_logger(__name__)


class Lock:
    """Handle on semaphore ``id`` for one ``holder``.

    Usage:
        >>> from redis import Redis
        >>> store = LockStoreClient.connect(RedisCoordinationClient(Redis()))
        >>> lock = Lock('web-1', 'deploy', store)
        >>> lock.set_max(2)
        >>> lock.lock()
        >>> try:
        ...     # At most two holders run this at once
        ...     pass
        ... finally:
        ...     lock.unlock()

        >>> # Or use as context manager
        >>> with lock:
        ...     pass

    Args:
        holder: Identity of the caller, e.g. the hostname
        id: Name of the semaphore
        client: Lock store client used for every transaction
    """

    def __init__(self, holder: str, id: str, client: LockStoreClient) -> None:
        self._holder = holder
        self._id = id
        self._client = client

    @property
    def holder(self) -> str:
        return self._holder

    @property
    def id(self) -> str:
        return self._id

    def _store(self, mutate: Callable[[SemaphoreDocument], T]) -> tuple[SemaphoreDocument, T]:
        document = self._client.get(self._id)
        result = mutate(document)
        self._client.set(self._id, document)
        return document, result

    def get(self) -> SemaphoreDocument:
        """Return the semaphore as currently stored."""
        return self._client.get(self._id)

    def set_max(self, capacity: int) -> tuple[SemaphoreDocument, int]:
        """Set the semaphore capacity.

        Holders beyond the new capacity are not evicted.

        Returns:
            The updated document and the previous capacity
        """
        if capacity < 0:
            raise ValueError("Semaphore capacity must be non-negative")
        document, previous = self._store(lambda doc: doc.set_max(capacity))
        logger.info("capacity_set", id=self._id, capacity=capacity, previous=previous)
        return document, previous

    def lock(self) -> None:
        """Take a slot in the semaphore.

        Raises:
            AlreadyHeldError: If this holder already holds the semaphore
            CapacityExceededError: If every slot is taken
            VersionMismatchError: If another client wrote the semaphore first
        """
        document, _ = self._store(lambda doc: doc.lock(self._holder, id=self._id))
        logger.info(
            "semaphore_locked",
            id=self._id,
            holder=self._holder,
            current=document.current,
            capacity=document.capacity,
        )

    def unlock(self) -> None:
        """Give back this holder's slot.

        Raises:
            NotHeldError: If this holder does not hold the semaphore
            VersionMismatchError: If another client wrote the semaphore first
        """
        document, _ = self._store(lambda doc: doc.unlock(self._holder, id=self._id))
        logger.info(
            "semaphore_unlocked",
            id=self._id,
            holder=self._holder,
            current=document.current,
            capacity=document.capacity,
        )

    def __enter__(self) -> Lock:
        """Enter context manager, taking a slot."""
        self.lock()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager, giving the slot back."""
        self.unlock()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} id={self._id!r} holder={self._holder!r}>"
