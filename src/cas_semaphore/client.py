"""Lock store client mapping semaphore ids onto coordination-store keys.

This module hides document (de)serialization and version bookkeeping from
callers: ``get`` returns a document stamped with the store's version and
``set`` writes it back with a compare-and-swap on that version.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from .document import SemaphoreDocument
from .exceptions import KeyExistsError, KeyNotFoundError

if TYPE_CHECKING:
    from .coordination import CoordinationClient

logger = structlog.get_logger(__name__)

DEFAULT_PREFIX = "locks"


class LockStoreClient:
    """Reads and writes semaphore documents under ``<prefix>/semaphores/``.

    The coordination client is always provided by the caller; call ``init``
    (or use ``connect``) before the first ``get``/``set``.

    Args:
        coordination: Ready-to-use coordination client
        prefix: Key namespace for all semaphores
    """

    _SEMAPHORES_DIR = "semaphores"

    def __init__(
        self, coordination: CoordinationClient, *, prefix: str = DEFAULT_PREFIX
    ) -> None:
        self._coordination = coordination
        self._prefix = prefix.strip("/")

    @classmethod
    def connect(
        cls, coordination: CoordinationClient, *, prefix: str = DEFAULT_PREFIX
    ) -> LockStoreClient:
        """Construct a client and make sure its namespace exists."""
        client = cls(coordination, prefix=prefix)
        client.init()
        return client

    @property
    def directory(self) -> str:
        """Return the store directory holding every semaphore document."""
        if not self._prefix:
            return self._SEMAPHORES_DIR
        return f"{self._prefix}/{self._SEMAPHORES_DIR}"

    def path(self, id: str) -> str:
        """Return the store key for semaphore ``id``."""
        return f"{self.directory}/{id}"

    def init(self) -> None:
        """Create the semaphores directory; an existing one is fine."""
        try:
            self._coordination.create_dir(self.directory)
        except KeyExistsError:
            logger.debug("namespace_exists", directory=self.directory)
            return
        logger.debug("namespace_created", directory=self.directory)

    def get(self, id: str) -> SemaphoreDocument:
        """Fetch semaphore ``id``, creating it with default state if absent.

        Raises:
            ValueError: If ``id`` is empty
            SemaphoreDecodeError: If the stored payload is malformed
        """
        if not id:
            raise ValueError("cannot get empty key")

        key = self.path(id)
        try:
            node = self._coordination.get(key)
        except KeyNotFoundError:
            return self._create(id, key)

        document = SemaphoreDocument.decode(node.value or "", key=key, version=node.version)
        logger.debug("semaphore_fetched", id=id, version=document.version)
        return document

    def set(self, id: str, document: SemaphoreDocument | None) -> None:
        """Persist ``document`` if the stored version still matches its own.

        On success the document's version is advanced to the one the store
        assigned. Store errors, including ``VersionMismatchError``, are raised
        unchanged and never retried here.

        Raises:
            ValueError: If ``document`` is None or ``id`` is empty
        """
        if document is None:
            raise ValueError("cannot set nil semaphore")
        if not id:
            raise ValueError("cannot set key to empty string")

        node = self._coordination.compare_and_swap(
            self.path(id), document.encode(), prev_index=document.version
        )
        logger.debug(
            "semaphore_stored", id=id, prev_version=document.version, version=node.version
        )
        document.version = node.version

    def _create(self, id: str, key: str) -> SemaphoreDocument:
        document = SemaphoreDocument()
        node = self._coordination.create(key, document.encode())
        document.version = node.version
        logger.debug("semaphore_created", id=id, version=document.version)
        return document

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} directory={self.directory!r}>"
