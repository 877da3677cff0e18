"""Configuration using pydantic-settings.

Values are read from ``CAS_SEMAPHORE_*`` environment variables and an
optional ``.env`` file. Only the outermost assembly point (the CLI) builds a
Redis client from these settings; the library itself always receives one.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .client import DEFAULT_PREFIX

if TYPE_CHECKING:
    from redis import Redis

DEFAULT_ENDPOINT = "redis://127.0.0.1:6379/0"


class LogFormat(str, Enum):
    CONSOLE = "console"
    JSON = "json"


class LockSettings(BaseSettings):
    """Settings for connecting to the coordination store.

    ``endpoints`` accepts a comma-separated list in the environment, e.g.
    ``CAS_SEMAPHORE_ENDPOINTS=redis://a:6379/0,redis://b:6379/0``.
    """

    model_config = SettingsConfigDict(
        env_prefix="CAS_SEMAPHORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    endpoints: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: [DEFAULT_ENDPOINT],
        description="Coordination store URLs; the first one is used",
    )
    cert_file: str | None = Field(None, description="Client TLS certificate")
    key_file: str | None = Field(None, description="Client TLS private key")
    ca_file: str | None = Field(None, description="CA bundle for the server")
    prefix: str = Field(DEFAULT_PREFIX, description="Key namespace for semaphores")
    log_level: str = Field("WARNING", description="Log level")
    log_format: LogFormat = Field(LogFormat.CONSOLE, description="Log output format")

    @field_validator("endpoints", mode="before")
    @classmethod
    def _split_endpoints(cls, value: object) -> object:
        if isinstance(value, str):
            value = [item.strip() for item in value.split(",")]
        if isinstance(value, (list, tuple)):
            value = [item for item in value if item]
            if not value:
                raise ValueError("at least one endpoint is required")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @property
    def tls_enabled(self) -> bool:
        return any((self.cert_file, self.key_file, self.ca_file))

    @property
    def endpoint(self) -> str:
        """Return the endpoint actually used, upgraded to TLS if configured."""
        url = self.endpoints[0]
        if self.tls_enabled and url.startswith("redis://"):
            url = "rediss://" + url[len("redis://"):]
        return url


def build_redis(settings: LockSettings) -> Redis:
    """Create a Redis client from ``settings``."""
    from redis import Redis

    kwargs: dict[str, str] = {}
    if settings.tls_enabled:
        if settings.cert_file:
            kwargs["ssl_certfile"] = settings.cert_file
        if settings.key_file:
            kwargs["ssl_keyfile"] = settings.key_file
        if settings.ca_file:
            kwargs["ssl_ca_certs"] = settings.ca_file
    return Redis.from_url(settings.endpoint, **kwargs)
