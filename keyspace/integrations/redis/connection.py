"""Redis backend for keyspace repositories.

This module implements `KeyValueBackend` on top of the asyncio client of
redis-py. One `RedisConnection` wraps one client; the client keeps its own
socket pool, so a connection can serve many concurrent requests.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable
from datetime import timedelta
from functools import partial
from typing import Any, TypeVar

try:
    import redis.asyncio as aioredis
    from redis.exceptions import ConnectionError as RedisConnectionError
    from redis.exceptions import RedisError
    from redis.exceptions import TimeoutError as RedisTimeoutError
except ImportError as err:
    raise ImportError(
        "redis package is required for Redis integration. "
        "Install it with: pip install redis"
    ) from err

from ...application.connections import KeyValueBackend, NotificationHandler, is_pattern
from ...domain import BackendError
from .config import RedisConfiguration

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

LISTEN_TIMEOUT = 1.0


def _text(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class RedisConnection(KeyValueBackend):
    """One connection to a Redis server.

    Every command increments `outstanding` while it is in flight, which is
    what the least-loaded pool strategy votes on. Driver errors are
    translated into `BackendError`; connection and timeout errors also mark
    the connection as not live until a later command succeeds.

    Fire-and-forget writes are scheduled as background tasks. Their failures
    are logged and never reach the caller. `close` waits for the ones still
    pending.

    Subscriptions share a single pub/sub connection per `RedisConnection`,
    read by a background listener task that is started by the first
    `subscribe`. Channels containing glob characters are subscribed with
    PSUBSCRIBE.

    Examples:
        >>> connection = await RedisConnection.connect("redis://localhost:6379/0")
        >>> await connection.set("member:abc", b"{...}", timedelta(days=15))
        >>> await connection.get("member:abc")
        b'{...}'
        >>> await connection.close()
    """

    def __init__(self, client: aioredis.Redis):
        self._client = client
        self.database: int = int(client.connection_pool.connection_kwargs.get("db", 0) or 0)
        self._connected = True
        self._closed = False
        self._outstanding = 0
        self._background: set[asyncio.Task] = set()
        self._pubsub: Any = None
        self._listener: asyncio.Task | None = None
        self._handlers: dict[str, list[NotificationHandler]] = {}

    @classmethod
    async def connect(
        cls, connection_string: str, config: RedisConfiguration | None = None
    ) -> "RedisConnection":
        """Open a client for connection_string and check that the server answers.

        Raises:
            BackendError: If the server cannot be reached.
        """
        config = config or RedisConfiguration()
        client = aioredis.from_url(connection_string, **config.client_kwargs())
        try:
            await client.ping()
        except RedisError as e:
            await client.aclose()
            raise BackendError(f"Failed to connect to Redis: {e}") from e

        connection = cls(client)
        LOGGER.debug("Connected to Redis", extra={"database": connection.database})
        return connection

    @property
    def is_connected(self) -> bool:
        return self._connected and not self._closed

    @property
    def outstanding(self) -> int:
        return self._outstanding

    async def get(self, key: str) -> bytes | None:
        return await self._execute("GET", key, self._client.get(key))

    async def set(
        self,
        key: str,
        value: bytes,
        ttl: timedelta | None = None,
        fire_and_forget: bool = False,
    ) -> None:
        px = int(ttl.total_seconds() * 1000) if ttl else None
        command = self._client.set(key, value, px=px)
        if fire_and_forget:
            self._in_background("SET", key, command)
        else:
            await self._execute("SET", key, command)

    async def delete(self, key: str, fire_and_forget: bool = False) -> None:
        command = self._client.delete(key)
        if fire_and_forget:
            self._in_background("DEL", key, command)
        else:
            await self._execute("DEL", key, command)

    async def iter_keys_matching(
        self, database: int, pattern: str, limit: int
    ) -> AsyncIterator[str]:
        if limit <= 0:
            return

        client, pool = self._client, None
        if database != self.database:
            # SCAN only sees the selected database
            current = self._client.connection_pool
            pool = aioredis.ConnectionPool(
                connection_class=current.connection_class,
                **{**current.connection_kwargs, "db": database},
            )
            client = aioredis.Redis(connection_pool=pool)

        count = 0
        self._outstanding += 1
        try:
            async for key in client.scan_iter(match=pattern, count=min(limit, 1000)):
                yield _text(key)
                count += 1
                if count >= limit:
                    break
        except RedisError as e:
            raise BackendError(f"SCAN '{pattern}' failed: {e}") from e
        finally:
            self._outstanding -= 1
            if pool is not None:
                await client.aclose()
                await pool.disconnect()

    async def publish(self, channel: str, value: bytes) -> int:
        return await self._execute("PUBLISH", channel, self._client.publish(channel, value))

    async def subscribe(self, channel: str, handler: NotificationHandler) -> None:
        if self._pubsub is None:
            self._pubsub = self._client.pubsub()

        handlers = self._handlers.setdefault(channel, [])
        if handler in handlers:
            return
        handlers.append(handler)
        if len(handlers) == 1:
            try:
                if is_pattern(channel):
                    await self._pubsub.psubscribe(channel)
                else:
                    await self._pubsub.subscribe(channel)
            except RedisError as e:
                self._handlers.pop(channel, None)
                raise BackendError(f"SUBSCRIBE '{channel}' failed: {e}") from e

        if self._listener is None or self._listener.done():
            self._listener = asyncio.create_task(self._listen())

    async def unsubscribe(self, channel: str, handler: NotificationHandler) -> None:
        handlers = self._handlers.get(channel, [])
        if handler in handlers:
            handlers.remove(handler)
        if handlers or self._pubsub is None:
            return

        self._handlers.pop(channel, None)
        try:
            if is_pattern(channel):
                await self._pubsub.punsubscribe(channel)
            else:
                await self._pubsub.unsubscribe(channel)
        except RedisError as e:
            raise BackendError(f"UNSUBSCRIBE '{channel}' failed: {e}") from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None

        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        self._handlers.clear()
        await self._client.aclose()

    async def _execute(self, operation: str, key: str, command: Awaitable[T]) -> T:
        self._outstanding += 1
        try:
            result = await command
        except RedisError as e:
            if isinstance(e, (RedisConnectionError, RedisTimeoutError)):
                self._connected = False
            raise BackendError(f"{operation} '{key}' failed: {e}") from e
        finally:
            self._outstanding -= 1
        self._connected = True
        return result

    def _in_background(self, operation: str, key: str, command: Awaitable[Any]) -> None:
        task = asyncio.create_task(self._execute(operation, key, command))
        self._background.add(task)
        task.add_done_callback(partial(self._forget, operation, key))

    def _forget(self, operation: str, key: str, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        if (error := task.exception()) is not None:
            LOGGER.warning(
                f"Unconfirmed {operation} of '{key}' failed: {error}",
                extra={"operation": operation, "key": key},
            )

    async def _listen(self) -> None:
        while not self._closed:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=LISTEN_TIMEOUT
                )
            except RedisError as e:
                self._connected = False
                LOGGER.warning(f"Subscription connection failed, retrying: {e}")
                await asyncio.sleep(LISTEN_TIMEOUT)
                continue
            if message is not None:
                await self._dispatch(message)

    async def _dispatch(self, message: dict[str, Any]) -> None:
        channel = _text(message["channel"])
        subscription = _text(message["pattern"]) if message["type"] == "pmessage" else channel
        for handler in list(self._handlers.get(subscription, ())):
            try:
                await handler(channel, message["data"])
            except Exception:
                LOGGER.exception("Notification handler failed", extra={"channel": channel})
