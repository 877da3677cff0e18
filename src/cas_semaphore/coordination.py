"""Coordination store contract and its Redis implementation.

The lock protocol only needs four capabilities from the coordination store:
create-if-absent, create-directory-if-absent, versioned get and
compare-and-swap. ``CoordinationClient`` spells out that contract and
``RedisCoordinationClient`` provides it on a single Redis server using
optimistic ``WATCH``/``MULTI``/``EXEC`` transactions.

Storage layout (one Redis hash per node)::

    <path>            -> {"value": <str>, "version": <int>, "dir": "0"|"1"}
    <index_key>       -> store-wide version counter (INCR)

Every successful write takes a new value from the version counter, so
versions of a key strictly increase across writes, like an etcd modified
index.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import structlog
from redis.exceptions import WatchError

from .exceptions import (
    KeyExistsError,
    KeyNotFoundError,
    StoreError,
    StoreErrorKind,
    VersionMismatchError,
)

if TYPE_CHECKING:
    from redis import Redis
    from redis.client import Pipeline

__all__ = (
    "CoordinationClient",
    "Node",
    "RedisCoordinationClient",
    "StoreErrorKind",
)

logger = structlog.get_logger(__name__)

_GLOB_SPECIALS = "\\*?[]"


@dataclass(frozen=True)
class Node:
    """A node read from or written to the coordination store."""

    key: str
    value: str | None
    version: int
    dir: bool = False
    children: tuple[Node, ...] = field(default_factory=tuple)


@runtime_checkable
class CoordinationClient(Protocol):
    """Minimal capability set the lock store needs from a coordination service.

    Implementations raise ``KeyExistsError``, ``KeyNotFoundError`` and
    ``VersionMismatchError`` for the corresponding conditions. Any transport
    or service failure propagates unchanged.
    """

    def create(self, path: str, value: str, ttl: int = 0) -> Node: ...

    def create_dir(self, path: str, ttl: int = 0) -> Node: ...

    def get(self, path: str, sort: bool = False, recursive: bool = False) -> Node: ...

    def compare_and_swap(
        self, path: str, value: str, ttl: int = 0, *, prev_index: int
    ) -> Node: ...


def _normalize(path: str) -> str:
    return path.strip("/")


def _text(raw: bytes | str | None) -> str | None:
    if isinstance(raw, bytes):
        return raw.decode()
    return raw


def _escape_glob(path: str) -> str:
    return "".join(f"\\{ch}" if ch in _GLOB_SPECIALS else ch for ch in path)


class RedisCoordinationClient:
    """Coordination client backed by a single Redis server.

    Usage:
        >>> from redis import Redis
        >>> store = RedisCoordinationClient(Redis())
        >>> node = store.create('locks/semaphores/deploy', '{}')
        >>> store.compare_and_swap(
        ...     'locks/semaphores/deploy', '{"max": 1}', prev_index=node.version
        ... )

    Args:
        redis: Redis client used for every call
        index_key: Key holding the store-wide version counter
    """

    _INDEX_KEY = "cas-semaphore:index"

    def __init__(self, redis: Redis, *, index_key: str = _INDEX_KEY) -> None:
        self._redis = redis
        self._index_key = index_key

    def create(self, path: str, value: str, ttl: int = 0) -> Node:
        """Create a value node, failing if ``path`` already exists."""
        return self._create(_normalize(path), value, ttl, is_dir=False)

    def create_dir(self, path: str, ttl: int = 0) -> Node:
        """Create a directory node, failing if ``path`` already exists."""
        return self._create(_normalize(path), None, ttl, is_dir=True)

    def get(self, path: str, sort: bool = False, recursive: bool = False) -> Node:
        """Read the node at ``path``.

        For a directory the returned node lists its children: direct children
        only, or the whole subtree when ``recursive`` is set. ``sort`` orders
        children by key.
        """
        key = _normalize(path)
        raw = self._redis.hgetall(key)
        if not raw:
            raise KeyNotFoundError(key)
        node = self._to_node(key, raw)
        if node.dir:
            node = Node(
                key=node.key,
                value=None,
                version=node.version,
                dir=True,
                children=self._children(key, sort=sort, recursive=recursive),
            )
        return node

    def compare_and_swap(
        self, path: str, value: str, ttl: int = 0, *, prev_index: int
    ) -> Node:
        """Replace the value at ``path`` if its version equals ``prev_index``."""
        key = _normalize(path)
        with self._redis.pipeline() as pipe:
            try:
                pipe.watch(key)
                raw = pipe.hgetall(key)
                if not raw:
                    raise KeyNotFoundError(key)
                current = self._to_node(key, raw)
                if current.dir:
                    raise StoreError(key, f"Not a file: {key}")
                if current.version != prev_index:
                    raise VersionMismatchError(key, prev_index, current.version)

                version = self._next_version(pipe)
                pipe.multi()
                pipe.hset(key, mapping={"value": value, "version": version})
                self._apply_ttl(pipe, key, ttl)
                pipe.execute()
            except WatchError:
                logger.debug("cas_aborted", key=key, prev_index=prev_index)
                raise VersionMismatchError(key, prev_index) from None

        logger.debug("cas_ok", key=key, prev_index=prev_index, version=version)
        return Node(key=key, value=value, version=version)

    def _create(self, key: str, value: str | None, ttl: int, *, is_dir: bool) -> Node:
        with self._redis.pipeline() as pipe:
            try:
                pipe.watch(key)
                if pipe.exists(key):
                    raise KeyExistsError(key)

                version = self._next_version(pipe)
                mapping: dict[str, str | int] = {
                    "version": version,
                    "dir": int(is_dir),
                }
                if value is not None:
                    mapping["value"] = value
                pipe.multi()
                pipe.hset(key, mapping=mapping)
                self._apply_ttl(pipe, key, ttl)
                pipe.execute()
            except WatchError:
                # Another writer touched the key between the check and the write
                raise KeyExistsError(key) from None

        logger.debug("node_created", key=key, version=version, dir=is_dir)
        return Node(key=key, value=value, version=version, dir=is_dir)

    def _next_version(self, pipe: Pipeline) -> int:
        # The counter is not watched, so aborted transactions only leave gaps.
        return int(pipe.incr(self._index_key))

    @staticmethod
    def _apply_ttl(pipe: Pipeline, key: str, ttl: int) -> None:
        if ttl > 0:
            pipe.expire(key, ttl)
        else:
            pipe.persist(key)

    @staticmethod
    def _to_node(key: str, raw: dict) -> Node:
        fields = {_text(k): _text(v) for k, v in raw.items()}
        return Node(
            key=key,
            value=fields.get("value"),
            version=int(fields.get("version") or 0),
            dir=fields.get("dir") == "1",
        )

    def _children(self, key: str, *, sort: bool, recursive: bool) -> tuple[Node, ...]:
        descendants: dict[str, Node] = {}
        # Nodes are hashes; other keys sharing the namespace are not part of the tree
        pattern = f"{_escape_glob(key)}/*"
        for raw_key in self._redis.scan_iter(match=pattern, _type="hash"):
            child_key = _text(raw_key)
            raw = self._redis.hgetall(child_key)
            if raw:
                descendants[child_key] = self._to_node(child_key, raw)
        return self._subtree(key, descendants, sort=sort, recursive=recursive)

    def _subtree(
        self,
        key: str,
        descendants: dict[str, Node],
        *,
        sort: bool,
        recursive: bool,
    ) -> tuple[Node, ...]:
        prefix = f"{key}/"
        direct = [
            node
            for child_key, node in descendants.items()
            if child_key.startswith(prefix) and "/" not in child_key[len(prefix):]
        ]
        if sort:
            direct.sort(key=lambda node: node.key)

        if not recursive:
            return tuple(direct)
        return tuple(
            Node(
                key=node.key,
                value=node.value,
                version=node.version,
                dir=True,
                children=self._subtree(
                    node.key, descendants, sort=sort, recursive=True
                ),
            )
            if node.dir
            else node
            for node in direct
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} index_key={self._index_key!r}>"
