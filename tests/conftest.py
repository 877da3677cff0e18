"""Pytest configuration and fixtures for cas-semaphore tests."""

from __future__ import annotations

import os
import time
from collections.abc import Callable, Generator
from typing import TYPE_CHECKING, Any

import fakeredis
import pytest

from cas_semaphore import LockStoreClient, Node, RedisCoordinationClient

if TYPE_CHECKING:
    from redis import Redis


def is_docker_available() -> bool:
    """Check if Docker is available."""
    import shutil
    import subprocess

    if not shutil.which("docker"):
        return False
    try:
        result = subprocess.run(
            ["docker", "info"],
            capture_output=True,
            timeout=5,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, FileNotFoundError):
        return False


# Skip integration tests if Docker is not available
requires_docker = pytest.mark.skipif(
    not is_docker_available(),
    reason="Docker is not available",
)


class StubCoordinationClient:
    """Coordination client returning a canned node or raising a canned error.

    Every call is recorded in ``calls`` so tests can assert that nothing was
    written.
    """

    def __init__(self, *, node: Node | None = None, error: Exception | None = None) -> None:
        self.node = node
        self.error = error
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    def _respond(self, name: str, *args: Any) -> Node:
        self.calls.append((name, args))
        if self.error is not None:
            raise self.error
        return self.node if self.node is not None else Node(key=args[0], value=None, version=1)

    def create(self, path: str, value: str, ttl: int = 0) -> Node:
        return self._respond("create", path, value, ttl)

    def create_dir(self, path: str, ttl: int = 0) -> Node:
        return self._respond("create_dir", path, ttl)

    def get(self, path: str, sort: bool = False, recursive: bool = False) -> Node:
        return self._respond("get", path, sort, recursive)

    def compare_and_swap(
        self, path: str, value: str, ttl: int = 0, *, prev_index: int
    ) -> Node:
        return self._respond("compare_and_swap", path, value, ttl, prev_index)

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


class InterferingCoordinationClient:
    """Delegating client that runs ``interfere`` before the first N CAS calls.

    Used to simulate another host writing the semaphore between our fetch
    and our compare-and-swap.
    """

    def __init__(
        self,
        inner: RedisCoordinationClient,
        interfere: Callable[[], None],
        *,
        times: int = 1,
    ) -> None:
        self._inner = inner
        self._interfere = interfere
        self.remaining = times
        self.cas_calls = 0

    def create(self, path: str, value: str, ttl: int = 0) -> Node:
        return self._inner.create(path, value, ttl)

    def create_dir(self, path: str, ttl: int = 0) -> Node:
        return self._inner.create_dir(path, ttl)

    def get(self, path: str, sort: bool = False, recursive: bool = False) -> Node:
        return self._inner.get(path, sort, recursive)

    def compare_and_swap(
        self, path: str, value: str, ttl: int = 0, *, prev_index: int
    ) -> Node:
        self.cas_calls += 1
        if self.remaining > 0:
            self.remaining -= 1
            self._interfere()
        return self._inner.compare_and_swap(path, value, ttl, prev_index=prev_index)


@pytest.fixture
def fake_redis() -> Generator[fakeredis.FakeRedis, None, None]:
    """In-memory Redis server private to one test."""
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer())
    yield client
    client.close()


@pytest.fixture
def coordination(fake_redis: fakeredis.FakeRedis) -> RedisCoordinationClient:
    return RedisCoordinationClient(fake_redis)


@pytest.fixture
def store(coordination: RedisCoordinationClient) -> LockStoreClient:
    """Lock store client with an initialized namespace."""
    return LockStoreClient.connect(coordination)


@pytest.fixture(scope="session")
def docker_compose_file() -> str:
    """Return path to docker-compose file for Redis."""
    return os.path.join(os.path.dirname(__file__), "docker-compose.yml")


@pytest.fixture(scope="session")
def redis_port() -> int:
    """Return the Redis port for tests."""
    return 6399  # Use non-standard port to avoid conflicts


@pytest.fixture(scope="session")
def docker_redis(docker_compose_file: str, redis_port: int) -> Generator[str, None, None]:
    """Start Redis in Docker for integration tests.

    Returns the Redis URL.
    """
    import subprocess

    compose_content = f"""
services:
  redis:
    image: redis:7-alpine
    ports:
      - "{redis_port}:6379"
    healthcheck:
      test: ["CMD", "redis-cli", "ping"]
      interval: 1s
      timeout: 3s
      retries: 30
"""
    with open(docker_compose_file, "w") as f:
        f.write(compose_content)

    subprocess.run(
        ["docker", "compose", "-f", docker_compose_file, "up", "-d", "--wait"],
        check=True,
        capture_output=True,
    )

    redis_url = f"redis://localhost:{redis_port}/0"
    _wait_for_redis(redis_url)

    yield redis_url

    subprocess.run(
        ["docker", "compose", "-f", docker_compose_file, "down", "-v"],
        capture_output=True,
    )
    os.remove(docker_compose_file)


def _wait_for_redis(url: str, timeout: float = 30) -> None:
    """Wait for Redis to be ready."""
    from redis import Redis
    from redis.exceptions import ConnectionError

    start = time.time()
    while time.time() - start < timeout:
        try:
            r = Redis.from_url(url)
            r.ping()
            r.close()
            return
        except ConnectionError:
            time.sleep(0.5)
    raise TimeoutError(f"Redis at {url} did not become ready in {timeout}s")


@pytest.fixture
def redis_client(docker_redis: str) -> Generator[Redis, None, None]:
    """Create a Redis client connected to Docker Redis."""
    from redis import Redis

    client = Redis.from_url(docker_redis)
    client.flushdb()
    yield client
    client.flushdb()
    client.close()


@pytest.fixture
def unique_key() -> Generator[str, None, None]:
    """Generate a unique semaphore name for each test."""
    import uuid

    yield f"test-{uuid.uuid4().hex[:8]}"
