"""Command line interface: lock, unlock, inspect and resize semaphores.

Example::

    cas-semaphore --endpoint redis://10.0.0.5:6379/0 set-max deploy 2
    cas-semaphore lock deploy && ./deploy.sh; cas-semaphore unlock deploy
"""

from __future__ import annotations

import socket
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import click
from redis.exceptions import RedisError

from .client import LockStoreClient
from .coordination import RedisCoordinationClient
from .exceptions import SemaphoreError
from .lock import Lock
from .logging import get_logger, setup_logging
from .retry import RetryingLock
from .settings import LockSettings, build_redis

if TYPE_CHECKING:
    from redis import Redis


@dataclass
class CLIDependencies:
    """Bundle of injectable dependencies used by CLI commands."""

    redis_factory: Callable[[LockSettings], Redis] = build_redis
    hostname: Callable[[], str] = socket.gethostname
    settings_overrides: dict[str, Any] = field(default_factory=dict)


@dataclass
class _State:
    settings: LockSettings
    holder: str
    retry_timeout: float
    deps: CLIDependencies
    _store: LockStoreClient | None = None

    def store(self) -> LockStoreClient:
        if self._store is None:
            coordination = RedisCoordinationClient(self.deps.redis_factory(self.settings))
            self._store = LockStoreClient.connect(coordination, prefix=self.settings.prefix)
        return self._store

    def lock(self, name: str) -> Lock | RetryingLock:
        lock = Lock(self.holder, name, self.store())
        if self.retry_timeout > 0:
            return RetryingLock(lock, timeout=self.retry_timeout)
        return lock


def _run(operation: Callable[[], Any]) -> Any:
    try:
        return operation()
    except (SemaphoreError, RedisError, ValueError) as exc:
        get_logger(__name__).debug("command_failed", error=str(exc))
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.option(
    "--endpoint",
    "endpoints",
    multiple=True,
    help="Coordination store URL (repeatable). Defaults to the local Redis.",
)
@click.option("--prefix", default=None, help="Key namespace for semaphores.")
@click.option("--cert-file", default=None, help="Client TLS certificate.")
@click.option("--key-file", default=None, help="Client TLS private key.")
@click.option("--ca-file", default=None, help="CA bundle for the server.")
@click.option("--holder", default=None, help="Holder identity. Defaults to the hostname.")
@click.option(
    "--retry-timeout",
    type=click.FloatRange(min=0),
    default=0.0,
    show_default=True,
    help="Seconds to retry after a concurrent write; 0 tries once.",
)
@click.option("--log-level", default=None, help="Log level, e.g. DEBUG.")
@click.pass_context
def cli(
    ctx: click.Context,
    endpoints: tuple[str, ...],
    prefix: str | None,
    cert_file: str | None,
    key_file: str | None,
    ca_file: str | None,
    holder: str | None,
    retry_timeout: float,
    log_level: str | None,
) -> None:
    """Distributed semaphores on a compare-and-swap key-value store."""
    deps = ctx.obj if isinstance(ctx.obj, CLIDependencies) else CLIDependencies()

    overrides: dict[str, Any] = dict(deps.settings_overrides)
    options = {
        "endpoints": list(endpoints) or None,
        "prefix": prefix,
        "cert_file": cert_file,
        "key_file": key_file,
        "ca_file": ca_file,
        "log_level": log_level,
    }
    overrides.update({key: value for key, value in options.items() if value is not None})
    settings = _run(lambda: LockSettings(**overrides))
    setup_logging(settings.log_level, settings.log_format.value)

    ctx.obj = _State(
        settings=settings,
        holder=holder or deps.hostname(),
        retry_timeout=retry_timeout,
        deps=deps,
    )


@cli.command()
@click.argument("name")
@click.pass_obj
def lock(state: _State, name: str) -> None:
    """Take a slot in semaphore NAME."""
    _run(lambda: state.lock(name).lock())
    click.echo(f"{state.holder} locked {name}")


@cli.command()
@click.argument("name")
@click.pass_obj
def unlock(state: _State, name: str) -> None:
    """Give back this holder's slot in semaphore NAME."""
    _run(lambda: state.lock(name).unlock())
    click.echo(f"{state.holder} unlocked {name}")


@cli.command()
@click.argument("name")
@click.pass_obj
def get(state: _State, name: str) -> None:
    """Show semaphore NAME."""
    document = _run(lambda: state.lock(name).get())
    click.echo(str(document))


@cli.command("set-max")
@click.argument("name")
@click.argument("capacity", type=click.IntRange(min=0))
@click.pass_obj
def set_max(state: _State, name: str, capacity: int) -> None:
    """Set how many holders semaphore NAME admits."""
    _, previous = _run(lambda: state.lock(name).set_max(capacity))
    click.echo(f"{name}: max {previous} -> {capacity}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
