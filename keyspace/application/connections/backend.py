"""Key-value backend interface and an in-memory implementation.

This module provides:
- KeyValueBackend: Abstract interface over the key-value/pub-sub store
- InMemoryBackend: Simple in-memory implementation for testing
"""

import fnmatch
import time
from abc import ABC, abstractmethod
from collections import Counter, defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import timedelta

from ...domain.exceptions import BackendError

NotificationHandler = Callable[[str, bytes], Awaitable[None]]

GLOB_CHARACTERS = frozenset("*?[")


def is_pattern(channel: str) -> bool:
    """Check whether a channel name must be subscribed as a glob pattern."""
    return any(character in GLOB_CHARACTERS for character in channel)


def keyspace_channel(database: int, pattern: str) -> str:
    """Build the keyspace notification channel for a key or key pattern.

    Examples:
        >>> keyspace_channel(0, "member:*")
        '__keyspace@0__:member:*'
    """
    return f"{keyspace_channel_prefix(database)}{pattern}"


def keyspace_channel_prefix(database: int) -> str:
    return f"__keyspace@{database}__:"


class KeyValueBackend(ABC):
    """Abstract interface for one connection to the key-value store.

    A backend offers plain get/set/delete/scan primitives plus publish and
    subscribe. It performs no retries of its own: failures surface as
    `BackendError` and it is up to the caller to decide whether to try again.

    Writes accept a `fire_and_forget` flag. When set, the call returns as soon
    as the command has been handed off; delivery is not confirmed and a failed
    write is only logged. This is an at-most-once trade-off callers opt into
    for latency.

    Implementations might use:
    - In-memory dictionaries (for testing or single-process apps)
    - Redis or any Redis-protocol compatible server

    Attributes:
        database: The default logical database index of this connection.
    """

    database: int

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the connection is established and currently usable."""
        ...

    @property
    @abstractmethod
    def outstanding(self) -> int:
        """Number of requests issued on this connection and not yet answered."""
        ...

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Read the raw value stored under key, None if there is none."""
        ...

    @abstractmethod
    async def set(
        self,
        key: str,
        value: bytes,
        ttl: timedelta | None = None,
        fire_and_forget: bool = False,
    ) -> None:
        """Store value under key, optionally expiring after ttl."""
        ...

    @abstractmethod
    async def delete(self, key: str, fire_and_forget: bool = False) -> None:
        """Remove key. Removing a missing key is not an error."""
        ...

    @abstractmethod
    def iter_keys_matching(
        self, database: int, pattern: str, limit: int
    ) -> AsyncIterator[str]:
        """Stream at most limit keys matching a glob pattern.

        The iteration is best-effort: keys written or removed while it runs
        may or may not be reported.
        """
        ...

    async def keys_matching(self, database: int, pattern: str, limit: int) -> list[str]:
        """Collect the keys streamed by `iter_keys_matching` into a list."""
        return [key async for key in self.iter_keys_matching(database, pattern, limit)]

    @abstractmethod
    async def publish(self, channel: str, value: bytes) -> int:
        """Publish value on channel and return the number of receivers."""
        ...

    @abstractmethod
    async def subscribe(self, channel: str, handler: NotificationHandler) -> None:
        """Register handler for messages on channel.

        Channels containing glob characters are treated as patterns. The
        handler receives the concrete channel a message arrived on.
        """
        ...

    @abstractmethod
    async def unsubscribe(self, channel: str, handler: NotificationHandler) -> None:
        """Remove a handler previously registered with `subscribe`."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the connection and drop all subscriptions."""
        ...


class InMemoryBackend(KeyValueBackend):
    """Simple in-memory backend for testing.

    Values live in a dictionary, expirations are checked lazily on access and
    messages are delivered to handlers synchronously inside `publish`. When
    `keyspace_notifications` is enabled every set and delete also publishes a
    keyspace notification (`set`/`del`) the way a Redis server configured
    with `notify-keyspace-events` does.

    The backend records how often each key was read and can be told to fail
    the next reads, which makes it suitable for asserting retry and caching
    behavior:

        >>> backend = InMemoryBackend()
        >>> backend.fail_reads(2)
        >>> backend.get_calls["member:abc"]
        0

    Limitations:
    - No persistence and no sharing between processes
    - Handlers run inline; a slow handler slows down the publisher
    """

    def __init__(self, database: int = 0, keyspace_notifications: bool = False) -> None:
        self.database = database
        self.keyspace_notifications = keyspace_notifications
        self.values: dict[str, tuple[bytes, float | None]] = {}
        self.handlers: dict[str, list[NotificationHandler]] = defaultdict(list)
        self.get_calls: Counter[str] = Counter()
        self.published: list[tuple[str, bytes]] = []
        self.connected = True
        self.load = 0
        self._failures_remaining = 0

    @property
    def is_connected(self) -> bool:
        return self.connected

    @property
    def outstanding(self) -> int:
        return self.load

    def fail_reads(self, count: int) -> None:
        """Make the next count calls to `get` raise `BackendError`."""
        self._failures_remaining = count

    async def get(self, key: str) -> bytes | None:
        self.get_calls[key] += 1
        if self._failures_remaining > 0:
            self._failures_remaining -= 1
            raise BackendError(f"Simulated read failure for '{key}'")
        return self._read(key)

    async def set(
        self,
        key: str,
        value: bytes,
        ttl: timedelta | None = None,
        fire_and_forget: bool = False,
    ) -> None:
        expires_at = time.monotonic() + ttl.total_seconds() if ttl else None
        self.values[key] = (value, expires_at)
        await self._notify_keyspace(key, b"set")

    async def delete(self, key: str, fire_and_forget: bool = False) -> None:
        if self.values.pop(key, None) is not None:
            await self._notify_keyspace(key, b"del")

    async def iter_keys_matching(
        self, database: int, pattern: str, limit: int
    ) -> AsyncIterator[str]:
        matched = 0
        for key in sorted(self.values):
            if matched >= limit:
                return
            if fnmatch.fnmatchcase(key, pattern) and self._read(key) is not None:
                matched += 1
                yield key

    async def publish(self, channel: str, value: bytes) -> int:
        self.published.append((channel, value))
        receivers = 0
        for subscribed, handlers in list(self.handlers.items()):
            if subscribed == channel or (
                is_pattern(subscribed) and fnmatch.fnmatchcase(channel, subscribed)
            ):
                for handler in list(handlers):
                    receivers += 1
                    await handler(channel, value)
        return receivers

    async def subscribe(self, channel: str, handler: NotificationHandler) -> None:
        self.handlers[channel].append(handler)

    async def unsubscribe(self, channel: str, handler: NotificationHandler) -> None:
        handlers = self.handlers.get(channel, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self.handlers.pop(channel, None)

    async def close(self) -> None:
        self.connected = False
        self.handlers.clear()

    def _read(self, key: str) -> bytes | None:
        entry = self.values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and time.monotonic() >= expires_at:
            del self.values[key]
            return None
        return value

    async def _notify_keyspace(self, key: str, operation: bytes) -> None:
        if self.keyspace_notifications:
            await self.publish(keyspace_channel(self.database, key), operation)
