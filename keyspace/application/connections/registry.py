"""Registry of backend connections keyed by connection string."""

import asyncio
import logging
from enum import Enum

from .backend import KeyValueBackend
from .pool import ConnectionFactory, ConnectionPool, VotingStrategy

LOGGER = logging.getLogger(__name__)


class ConnectionMode(str, Enum):
    """How repositories obtain their backend connection.

    Attributes:
        SHARED: One connection per connection string, shared by every caller.
        LAZY_PER_INSTANCE: Every repository instance opens its own connection
            the first time it needs one.
        POOLED: A fixed-size pool per connection string, see `ConnectionPool`.
    """

    SHARED = "shared"
    LAZY_PER_INSTANCE = "lazy_per_instance"
    POOLED = "pooled"


class ConnectionRegistry:
    """Hands out backend connections for connection strings.

    A registry is created once per process (usually by `DocumentStore`) and
    injected wherever connections are needed. It keeps:
    - one shared data connection per connection string (SHARED mode)
    - one pool per connection string (POOLED mode)
    - one dedicated subscription connection per connection string

    First callers for a connection string wait on a single connect attempt
    instead of racing each other. Connect failures propagate to the caller
    unchanged; nothing is cached for a failed attempt, so the next call tries
    again.

    Examples:
        >>> registry = ConnectionRegistry(RedisConnection.connect)
        >>> connection = await registry.get_connection("redis://localhost:6379/0")
        >>> pooled = await registry.get_connection(
        ...     "redis://localhost:6379/0",
        ...     ConnectionMode.POOLED,
        ...     pool_size=4,
        ...     voting_strategy=VotingStrategy.random(),
        ... )
        >>> await registry.close()
    """

    def __init__(self, connection_factory: ConnectionFactory):
        self._connection_factory = connection_factory
        self._shared: dict[str, KeyValueBackend] = {}
        self._subscription: dict[str, KeyValueBackend] = {}
        self._pools: dict[str, ConnectionPool] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def get_connection(
        self,
        connection_string: str,
        mode: ConnectionMode = ConnectionMode.SHARED,
        pool_size: int = 1,
        voting_strategy: VotingStrategy | None = None,
    ) -> KeyValueBackend:
        """Get a connection for connection_string according to mode.

        In LAZY_PER_INSTANCE mode every call opens a new connection that the
        caller owns and must close. `pool_size` and `voting_strategy` are only
        used the first time a pool is created for a connection string.
        """
        if mode is ConnectionMode.SHARED:
            return await self._get_or_connect(self._shared, connection_string, "data")
        if mode is ConnectionMode.LAZY_PER_INSTANCE:
            return await self.connect(connection_string)
        return await self.get_pool(connection_string, pool_size, voting_strategy).acquire()

    async def get_subscription_connection(self, connection_string: str) -> KeyValueBackend:
        """Get the connection reserved for subscriptions on connection_string."""
        return await self._get_or_connect(
            self._subscription, connection_string, "subscription"
        )

    def get_pool(
        self,
        connection_string: str,
        pool_size: int,
        voting_strategy: VotingStrategy | None = None,
    ) -> ConnectionPool:
        if (pool := self._pools.get(connection_string)) is None:
            pool = ConnectionPool(
                connection_string,
                pool_size,
                voting_strategy or VotingStrategy.least_loaded(),
                self._connection_factory,
            )
            self._pools[connection_string] = pool
        return pool

    async def connect(self, connection_string: str) -> KeyValueBackend:
        """Open a new, unshared connection."""
        return await self._connection_factory(connection_string)

    async def close(self) -> None:
        """Close every connection and pool created by this registry."""
        for connection in [*self._shared.values(), *self._subscription.values()]:
            await connection.close()
        for pool in self._pools.values():
            await pool.close()
        self._shared.clear()
        self._subscription.clear()
        self._pools.clear()

    async def _get_or_connect(
        self,
        connections: dict[str, KeyValueBackend],
        connection_string: str,
        purpose: str,
    ) -> KeyValueBackend:
        if (connection := connections.get(connection_string)) is not None:
            return connection

        lock = self._locks.setdefault(f"{purpose}:{connection_string}", asyncio.Lock())
        async with lock:
            if (connection := connections.get(connection_string)) is None:
                connection = await self._connection_factory(connection_string)
                connections[connection_string] = connection
                LOGGER.debug("Opened shared connection", extra={"purpose": purpose})
            return connection
