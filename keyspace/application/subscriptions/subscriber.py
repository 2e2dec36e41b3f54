import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Generic, TypeVar

from ...domain import Document, NotificationHandlingError
from ..cache import DocumentCacheBackend
from ..connections import KeyValueBackend, keyspace_channel
from ..errors import ErrorReporter
from .events import (
    CacheChanged,
    NotificationEvent,
    NotificationListener,
    SubscriptionMode,
    SubscriptionTriggered,
)

LOGGER = logging.getLogger(__name__)

D = TypeVar("D", bound=Document)

REMOVAL_OPERATIONS = frozenset({"del", "expired", "evicted"})


class InvalidationSubscriber(Generic[D]):
    """Keeps the local cache coherent with changes made by other processes.

    The subscriber listens on backend channels for one document type and
    pushes what it learns into the local cache, then tells its listeners.

    **Keyspace mode:**
    The channel is the server's keyspace notification channel for the
    pattern. The payload only names the operation. A `set` causes a fresh
    read of the key; a `del` (or an expiry) removes the key from the cache
    without any read.

    **PubSub mode:**
    The channel is the pattern itself and the payload is the serialized
    document.

    Either way the resolved document goes through the cache's monotonic
    write. If the cache changed, listeners get `CacheChanged`. Unless the
    cache already reflected the value and duplicate notifications are
    suppressed, listeners then get `SubscriptionTriggered`.

    A notification that cannot be resolved or applied purges its key from the
    cache and is handed to the error reporter; the subscription stays up.

    Attributes:
        document_type: Type of the documents arriving on the channels.
        default_mode: Mode used when `subscribe` is called without one.
    """

    def __init__(
        self,
        document_type: type[D],
        connection_provider: Callable[[], Awaitable[KeyValueBackend]],
        fetch: Callable[[str], Awaitable[bytes | None]],
        cache: DocumentCacheBackend,
        errors: ErrorReporter,
        caching_enabled: bool = True,
        suppress_duplicate_notifications: bool = True,
        cache_expiration: timedelta | None = None,
        default_mode: SubscriptionMode = SubscriptionMode.KEYSPACE,
    ):
        self.document_type = document_type
        self.default_mode = default_mode
        self.caching_enabled = caching_enabled
        self.suppress_duplicate_notifications = suppress_duplicate_notifications
        self.cache_expiration = cache_expiration
        self._connection_provider = connection_provider
        self._fetch = fetch
        self._cache = cache
        self._errors = errors
        self._listeners: list[NotificationListener] = []
        # Channel and connection of each subscription, keyed by (pattern, mode)
        self._channels: dict[tuple[str, SubscriptionMode], tuple[str, KeyValueBackend]] = {}

    @property
    def patterns(self) -> list[str]:
        """Patterns this subscriber is currently subscribed to."""
        return [pattern for pattern, _ in self._channels]

    def add_listener(self, listener: NotificationListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: NotificationListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def subscribe(self, pattern: str = "*", mode: SubscriptionMode | None = None) -> None:
        """Subscribe to changes of keys matching pattern.

        The pattern is prefixed with the document type's base key if needed.
        Subscribing to a pattern twice in the same mode does nothing.
        """
        mode = mode or self.default_mode
        pattern = self.document_type.qualify(pattern)
        if (pattern, mode) in self._channels:
            return

        connection = await self._connection_provider()
        channel = self._channel_for(pattern, mode, connection)
        await connection.subscribe(channel, self._handler_for(mode))
        self._channels[(pattern, mode)] = (channel, connection)
        LOGGER.debug(
            "Subscribed to changes",
            extra={"pattern": pattern, "mode": mode.value, "channel": channel},
        )

    async def unsubscribe(self, pattern: str, mode: SubscriptionMode | None = None) -> None:
        mode = mode or self.default_mode
        pattern = self.document_type.qualify(pattern)
        if (subscription := self._channels.pop((pattern, mode), None)) is None:
            return

        # Resolving a connection here could recreate an owner during close
        channel, connection = subscription
        await connection.unsubscribe(channel, self._handler_for(mode))

    async def close(self) -> None:
        """Unsubscribe from everything, logging instead of raising failures."""
        for pattern, mode in list(self._channels):
            try:
                await self.unsubscribe(pattern, mode)
            except Exception as error:
                self._channels.pop((pattern, mode), None)
                LOGGER.warning(
                    f"Failed to unsubscribe from '{pattern}' during teardown: {error}"
                )
        self._listeners.clear()

    async def handle_keyspace(self, channel: str, message: bytes) -> None:
        """Handle a keyspace notification (`set`, `del`, ...) for one key."""
        key = channel.partition("__:")[2]
        operation = message.decode()
        try:
            if operation == "set":
                if (raw := await self._fetch(key)) is None:
                    self._cache.remove(key)
                    return
                await self._apply(self.document_type.deserialize(raw), channel)
            elif operation in REMOVAL_OPERATIONS:
                self._cache.remove(key)
        except Exception as error:
            self._fail(key, channel, error)

    async def handle_message(self, channel: str, message: bytes) -> None:
        """Handle a published document whose key is the channel name."""
        try:
            await self._apply(self.document_type.deserialize(message), channel)
        except Exception as error:
            self._fail(channel, channel, error)

    async def _apply(self, document: Document, channel: str) -> None:
        changed = self.caching_enabled and self._cache.set(document, self.cache_expiration)
        if changed:
            await self._emit(CacheChanged(document, channel))
        elif self.caching_enabled and self.suppress_duplicate_notifications:
            return
        await self._emit(SubscriptionTriggered(document, channel))

    async def _emit(self, event: NotificationEvent) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception as error:
                self._errors.report(self, error)

    def _fail(self, key: str, channel: str, error: Exception) -> None:
        self._cache.remove(key)
        failure = NotificationHandlingError(key, channel)
        failure.__cause__ = error
        self._errors.report(self, failure)

    def _handler_for(self, mode: SubscriptionMode) -> Callable[[str, bytes], Awaitable[None]]:
        if mode is SubscriptionMode.KEYSPACE:
            return self.handle_keyspace
        return self.handle_message

    @staticmethod
    def _channel_for(pattern: str, mode: SubscriptionMode, connection: KeyValueBackend) -> str:
        if mode is SubscriptionMode.KEYSPACE:
            return keyspace_channel(connection.database, pattern)
        return pattern
