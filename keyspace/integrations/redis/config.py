"""Redis client configuration using pydantic-settings."""

from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings


class RedisConfiguration(BaseSettings):
    """Options passed to the redis client of every `RedisConnection`.

    The connection string itself comes from the repository configuration;
    these settings tune how each client talks to the server.

    All settings can be configured via environment variables with the
    KEYSPACE_REDIS_ prefix. For example:
    - KEYSPACE_REDIS_SOCKET_TIMEOUT=2.5
    - KEYSPACE_REDIS_CLIENT_NAME=orders-api

    Attributes:
        socket_timeout: Seconds to wait for a reply before failing a command.
        socket_connect_timeout: Seconds to wait while connecting.
        health_check_interval: Seconds between idle connection health checks,
            0 disables them.
        client_name: Name reported by CLIENT LIST on the server.
        max_connections: Upper bound of the client's own socket pool.

    Example:
        >>> config = RedisConfiguration(socket_timeout=1.0, client_name="worker")
        >>> connection = await RedisConnection.connect("redis://localhost:6379/0", config)
    """

    socket_timeout: float | None = Field(
        default=5.0,
        description="Seconds to wait for a reply (None for no timeout)",
        ge=0,
    )
    socket_connect_timeout: float | None = Field(
        default=5.0,
        description="Seconds to wait while connecting (None for no timeout)",
        ge=0,
    )
    health_check_interval: int = Field(
        default=30,
        description="Seconds between idle connection health checks",
        ge=0,
    )
    client_name: str | None = None
    max_connections: int | None = Field(
        default=None,
        description="Maximum number of sockets in the client pool",
        ge=1,
    )

    model_config = {"env_prefix": "KEYSPACE_REDIS_"}

    def client_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for `redis.asyncio.from_url`."""
        kwargs: dict[str, Any] = {
            "socket_timeout": self.socket_timeout,
            "socket_connect_timeout": self.socket_connect_timeout,
            "health_check_interval": self.health_check_interval,
        }
        if self.client_name is not None:
            kwargs["client_name"] = self.client_name
        if self.max_connections is not None:
            kwargs["max_connections"] = self.max_connections
        return kwargs
