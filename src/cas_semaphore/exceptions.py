"""Exceptions for cas-semaphore."""

from __future__ import annotations

from enum import Enum


class SemaphoreError(Exception):
    """Base exception for semaphore errors."""

    pass


class StoreErrorKind(str, Enum):
    """Tag describing why a coordination store call failed."""

    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    VERSION_MISMATCH = "version_mismatch"
    OTHER = "other"


class StoreError(SemaphoreError):
    """Raised by a coordination client when a store operation is rejected.

    Callers branch on ``kind`` rather than on the concrete subclass when they
    only care about the category of failure.
    """

    kind: StoreErrorKind = StoreErrorKind.OTHER

    def __init__(self, key: str, message: str | None = None) -> None:
        self.key = key
        super().__init__(message or f"{self.kind.value}: {key}")


class KeyNotFoundError(StoreError):
    """Raised when the requested key does not exist."""

    kind = StoreErrorKind.NOT_FOUND

    def __init__(self, key: str) -> None:
        super().__init__(key, f"Key not found: {key}")


class KeyExistsError(StoreError):
    """Raised when creating a key that already exists."""

    kind = StoreErrorKind.ALREADY_EXISTS

    def __init__(self, key: str) -> None:
        super().__init__(key, f"Key already exists: {key}")


class VersionMismatchError(StoreError):
    """Raised when a compare-and-swap precondition does not hold.

    This means another writer persisted the key after it was read.
    """

    kind = StoreErrorKind.VERSION_MISMATCH

    def __init__(self, key: str, expected: int, actual: int | None = None) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            key,
            f"Compare failed for '{key}': expected version={expected}, "
            f"actual={actual if actual is not None else 'unknown'}",
        )


class SemaphoreDecodeError(SemaphoreError, ValueError):
    """Raised when a stored semaphore payload cannot be decoded."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Malformed semaphore at '{key}': {reason}")


class LockStateError(SemaphoreError):
    """Base for lock/unlock requests that the semaphore state does not allow."""

    def __init__(self, id: str, holder: str, message: str) -> None:
        self.id = id
        self.holder = holder
        super().__init__(message)


class AlreadyHeldError(LockStateError):
    """Raised when a holder tries to acquire a semaphore it already holds."""

    def __init__(self, id: str, holder: str) -> None:
        super().__init__(id, holder, f"Semaphore '{id}' is already held by {holder!r}")


class NotHeldError(LockStateError):
    """Raised when a holder releases a semaphore it does not hold."""

    def __init__(self, id: str, holder: str) -> None:
        super().__init__(id, holder, f"Semaphore '{id}' is not held by {holder!r}")


class CapacityExceededError(LockStateError):
    """Raised when every slot of the semaphore is taken.

    A capacity of 0 means nobody may acquire until the capacity is raised.
    """

    def __init__(self, id: str, holder: str, capacity: int) -> None:
        self.capacity = capacity
        super().__init__(
            id,
            holder,
            f"Semaphore '{id}' is at capacity ({capacity}); {holder!r} cannot acquire",
        )
