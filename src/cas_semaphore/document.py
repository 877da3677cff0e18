"""Versioned semaphore state stored in the coordination service."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import (
    AlreadyHeldError,
    CapacityExceededError,
    NotHeldError,
    SemaphoreDecodeError,
)


class SemaphoreDocument(BaseModel):
    """State of one named semaphore.

    The wire form is ``{"semaphore": <current>, "max": <capacity>,
    "holders": [...]}``. ``version`` is assigned by the store on each write
    and travels out-of-band: it is never serialized, and any version-like
    field in a stored payload is ignored on decode.

    The mutation methods only change the in-memory document; persisting it is
    the caller's job. They raise before touching any field, so a rejected
    request leaves the document as it was.
    """

    model_config = ConfigDict(
        validate_by_name=True, validate_by_alias=True, extra="ignore"
    )

    version: int = Field(0, exclude=True)
    current: int = Field(0, alias="semaphore", ge=0)
    capacity: int = Field(0, alias="max", ge=0)
    holders: list[str] = Field(default_factory=list)

    @field_validator("holders", mode="before")
    @classmethod
    def _null_holders(cls, value: object) -> object:
        return [] if value is None else value

    @classmethod
    def decode(cls, payload: str | bytes, *, key: str, version: int) -> SemaphoreDocument:
        """Decode a stored payload, taking ``version`` from the store response."""
        try:
            document = cls.model_validate_json(payload, by_alias=True, by_name=False)
        except ValidationError as exc:
            raise SemaphoreDecodeError(key, str(exc)) from exc
        document.version = version
        return document

    def encode(self) -> str:
        """Serialize to the stored JSON form (without the version)."""
        return self.model_dump_json(by_alias=True)

    def is_held_by(self, holder: str) -> bool:
        return holder in self.holders

    def lock(self, holder: str, *, id: str = "") -> None:
        """Add ``holder`` to the holders if a slot is free."""
        if self.is_held_by(holder):
            raise AlreadyHeldError(id, holder)
        if len(self.holders) >= self.capacity:
            raise CapacityExceededError(id, holder, self.capacity)
        self.holders.append(holder)
        self.current += 1

    def unlock(self, holder: str, *, id: str = "") -> None:
        """Remove the first occurrence of ``holder`` from the holders."""
        if not self.is_held_by(holder):
            raise NotHeldError(id, holder)
        self.holders.remove(holder)
        self.current = max(self.current - 1, 0)

    def set_max(self, capacity: int) -> int:
        """Set the capacity and return the previous one.

        Lowering the capacity below the number of holders is allowed; existing
        holders keep their slots and new acquisitions fail until enough of
        them release.
        """
        if capacity < 0:
            raise ValueError("Semaphore capacity must be non-negative")
        previous = self.capacity
        self.capacity = capacity
        return previous

    def __str__(self) -> str:
        holders = ", ".join(self.holders) if self.holders else "-"
        return (
            f"semaphore: {self.current}/{self.capacity}\n"
            f"holders: {holders}\n"
            f"version: {self.version}"
        )
