"""Opt-in retry-on-conflict layer over ``Lock``.

``Lock`` operations are single-shot: a concurrent write makes them fail with
``VersionMismatchError``. ``RetryingLock`` re-runs the whole transaction (a
fresh fetch, so a fresh version) when that happens, until a deadline passes.
It never retries ``LockStateError``s, so a full semaphore still fails
immediately rather than waiting for a release.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TYPE_CHECKING, TypeVar

import structlog
from pottery import ContextTimer

from .exceptions import VersionMismatchError

if TYPE_CHECKING:
    from .document import SemaphoreDocument
    from .lock import Lock

T = TypeVar("T")

logger = structlog.get_logger(__name__)


class RetryingLock:
    """Wrap a ``Lock`` and retry its transactions on CAS conflicts.

    Usage:
        >>> lock = RetryingLock(Lock('web-1', 'deploy', store), timeout=2.0)
        >>> with lock:
        ...     pass

    Args:
        lock: The single-shot lock to wrap
        timeout: Seconds to keep retrying after a conflict (0 retries never)
        retry_delay: Seconds to sleep between attempts
        max_attempts: Optional cap on the number of attempts
    """

    _RETRY_DELAY = 0.05  # seconds between attempts

    def __init__(
        self,
        lock: Lock,
        *,
        timeout: float = 1.0,
        retry_delay: float = _RETRY_DELAY,
        max_attempts: int | None = None,
    ) -> None:
        if timeout < 0:
            raise ValueError("timeout must be non-negative")
        if retry_delay < 0:
            raise ValueError("retry_delay must be non-negative")
        if max_attempts is not None and max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        self._lock = lock
        self._timeout = timeout
        self._retry_delay = retry_delay
        self._max_attempts = max_attempts

    def _retry(self, name: str, operation: Callable[[], T]) -> T:
        attempt = 0
        with ContextTimer() as timer:
            while True:
                attempt += 1
                try:
                    return operation()
                except VersionMismatchError as exc:
                    remaining = self._timeout - timer.elapsed() / 1000
                    exhausted = (
                        self._max_attempts is not None and attempt >= self._max_attempts
                    )
                    if remaining <= 0 or exhausted:
                        logger.warning(
                            "cas_conflict_giving_up",
                            operation=name,
                            id=self._lock.id,
                            attempts=attempt,
                        )
                        raise
                    logger.warning(
                        "cas_conflict_retrying",
                        operation=name,
                        id=self._lock.id,
                        attempt=attempt,
                        expected=exc.expected,
                    )
                    time.sleep(min(self._retry_delay, remaining))

    def get(self) -> SemaphoreDocument:
        """Return the semaphore as currently stored."""
        return self._lock.get()

    def set_max(self, capacity: int) -> tuple[SemaphoreDocument, int]:
        return self._retry("set_max", lambda: self._lock.set_max(capacity))

    def lock(self) -> None:
        self._retry("lock", self._lock.lock)

    def unlock(self) -> None:
        self._retry("unlock", self._lock.unlock)

    def __enter__(self) -> RetryingLock:
        self.lock()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.unlock()

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} "
            f"lock={self._lock!r} "
            f"timeout={self._timeout}>"
        )
