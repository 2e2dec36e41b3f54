import asyncio
import logging
from collections.abc import Iterable
from datetime import timedelta
from typing import TYPE_CHECKING, ClassVar, Generic, TypeVar, get_args, get_origin

from ...domain import BackendError, BackendUnavailableError, Document, utc_now
from ..cache import ABSENT, DocumentCacheBackend
from ..connections import ConnectionMode, KeyValueBackend
from ..subscriptions import InvalidationSubscriber, NotificationListener, SubscriptionMode
from .config import RepositoryConfig

if TYPE_CHECKING:
    from ..store import DocumentStore

LOGGER = logging.getLogger(__name__)

D = TypeVar("D", bound=Document)


class DocumentRepository(Generic[D]):
    """A per-session façade for loading, changing and saving documents of one type.

    A repository instance represents one unit of work. It keeps a working set
    of the documents it created, loaded or was given, and a snapshot of the
    serialized form of every document it loaded or saved. `save` writes only
    the documents whose serialized form no longer matches their snapshot (or
    that have none, i.e. new documents).

    Reads consult the process-wide local cache first and fall back to the
    backend, retrying failed reads with a linear backoff. Writes and deletes
    are fire-and-forget: they return without waiting for the backend to
    acknowledge them.

    Instances are cheap and are meant to be created per request or per task.
    They are not safe for concurrent use by several tasks at once; the shared
    state they rely on (connections, cache) lives on the `DocumentStore`.

    Examples:
        >>> class MemberRepository(DocumentRepository[Member]):
        ...     pass
        >>>
        >>> async with MemberRepository(store) as members:
        ...     member = members.create_new()
        ...     member.member_id = "abc"
        ...     member.title = "Alice"
        ...     await members.save()
        >>>
        >>> async with MemberRepository(store) as members:
        ...     member = await members.get_by_id("abc")
        ...     member.title = "Alice Smith"
        ...     members.has_changes(member)
        True
    """

    document_type: ClassVar[type[Document]]

    def __init_subclass__(cls, **kwargs: object) -> None:
        """Pick up the document type from `DocumentRepository[SomeDocument]`."""
        super().__init_subclass__(**kwargs)  # type: ignore[arg-type]
        for base in getattr(cls, "__orig_bases__", ()):
            origin = get_origin(base)
            if not (isinstance(origin, type) and issubclass(origin, DocumentRepository)):
                continue
            for argument in get_args(base):
                if isinstance(argument, type) and issubclass(argument, Document):
                    cls.document_type = argument
                    return

    def __init__(
        self,
        store: "DocumentStore",
        document_type: type[D] | None = None,
        config: RepositoryConfig | None = None,
    ):
        if document_type is not None:
            self.document_type = document_type
        elif not hasattr(self, "document_type"):
            raise TypeError(
                f"{type(self).__name__} needs a document type, either as "
                "DocumentRepository[SomeDocument] or as the document_type argument"
            )

        self.store = store
        self.config = config or store.configs.get(self.document_type)
        self.cache: DocumentCacheBackend = (
            store.cache if self.config.enable_caching else DocumentCacheBackend.null()
        )
        self.subscriber: InvalidationSubscriber[D] = InvalidationSubscriber(
            self.document_type,  # type: ignore[arg-type]
            connection_provider=self._subscription_connection,
            fetch=self._read,
            cache=self.cache,
            errors=store.errors,
            caching_enabled=self.config.enable_caching,
            suppress_duplicate_notifications=self.config.suppress_duplicate_notifications,
            cache_expiration=self.config.cache_expiration,
            default_mode=self.config.subscription_mode,
        )
        self._items: list[D] = []
        self._snapshots: dict[str, str] = {}
        self._own_connection: KeyValueBackend | None = None

    @property
    def items(self) -> tuple[D, ...]:
        """The documents in the working set, in insertion order."""
        return tuple(self._items)

    async def connection(self) -> KeyValueBackend:
        """Resolve the backend connection for the next request.

        The first call for a document type also makes sure the type's
        invalidation owner exists.
        """
        await self.store.owners.ensure_owner(self.document_type)
        config = self.config
        if config.connection_mode is ConnectionMode.LAZY_PER_INSTANCE:
            if self._own_connection is None:
                self._own_connection = await self.store.connections.connect(
                    config.connection_string
                )
            return self._own_connection
        return await self.store.connections.get_connection(
            config.connection_string,
            config.connection_mode,
            config.pool_size,
            config.voting_strategy,
        )

    # Working set

    def create_new(self) -> D:
        """Allocate a new document and add it to the working set.

        Nothing is written or cached until `save`.
        """
        document = self.document_type()
        document.create_date = utc_now()
        document.modify_date = None
        self._items.append(document)  # type: ignore[arg-type]
        return document  # type: ignore[return-value]

    def add(self, documents: D | Iterable[D]) -> None:
        """Add documents to the working set, replacing any with the same id.

        Added documents are always written by the next `save`.
        """
        if isinstance(documents, Document):
            documents = [documents]
        for document in documents:
            self._put(document)
            self._snapshots.pop(document.ensure_id(), None)

    def remove(self, document: D) -> None:
        """Remove a document from the working set. The store is not touched."""
        if document.id is None:
            self._items = [item for item in self._items if item is not document]
        else:
            self._items = [item for item in self._items if item.id != document.id]

    def is_new(self, document: D) -> bool:
        return document.is_new

    def has_changes(self, document: D) -> bool:
        """Whether document differs from what this repository last loaded or saved.

        Documents this repository never loaded or saved always have changes.
        """
        if document.id is None or (snapshot := self._snapshots.get(document.id)) is None:
            return True
        return document.serialize() != snapshot

    # Reads

    async def get_by_id(self, id: str, bypass_cache: bool = False) -> D | None:
        """Load one document by id, with or without its base key prefix.

        Returns None if the document does not exist. Absence is not cached
        by this method, but a cached absence (see `get_all`) is honored.

        Raises:
            BackendUnavailableError: If the backend could not be read after
                all retry attempts.
        """
        key = self.document_type.qualify(id)
        if not bypass_cache:
            cached = self.cache.get(key)
            if cached is ABSENT:
                return None
            if isinstance(cached, Document):
                return self._track_loaded(cached)  # type: ignore[arg-type]

        async with self.store.lock_for(key):
            # Another task may have loaded the key while we waited.
            if not bypass_cache and isinstance(cached := self.cache.get(key), Document):
                return self._track_loaded(cached)  # type: ignore[arg-type]

            if (raw := await self._read(key)) is None:
                return None
            return self._load(raw)

    async def get_all(self, ids: Iterable[str]) -> list[D]:
        """Load several documents by id.

        Cache hits are served directly. Every miss is read from the backend;
        ids without a value are cached as absent so that asking again within
        the cache TTL does not reach the backend. Repeated ids are loaded once.
        """
        documents: list[D] = []
        misses: list[str] = []
        for key in dict.fromkeys(self.document_type.qualify(id) for id in ids):
            cached = self.cache.get(key)
            if cached is ABSENT:
                continue
            if isinstance(cached, Document):
                documents.append(self._track_loaded(cached))  # type: ignore[arg-type]
            else:
                misses.append(key)

        for key in misses:
            if (raw := await self._read(key)) is None:
                self.cache.set_absent(key, self.config.cache_expiration)
            else:
                documents.append(self._load(raw))
        return documents

    async def scan(self, pattern: str, limit: int = 10000) -> list[str]:
        """Return at most limit keys matching pattern under the base key.

        The result is a best-effort snapshot of the keyspace.
        """
        pattern = self.document_type.qualify(pattern)
        connection = await self.connection()
        return await connection.keys_matching(connection.database, pattern, limit)

    async def get_all_matching(self, pattern: str, limit: int = 10000) -> list[D]:
        return await self.get_all(await self.scan(pattern, limit))

    # Writes

    async def save(
        self,
        force_update: bool = False,
        expiration: timedelta | None = None,
        publish: bool = False,
    ) -> None:
        """Write every changed document of the working set.

        Each written document gets a fresh `modify_date`, and a cached copy of
        it has its modify date moved forward to match. Documents without
        changes are skipped unless force_update is set.

        Args:
            force_update: Write every document, changed or not.
            expiration: Record TTL, defaults to the configured
                `default_record_expiration`. A zero TTL stores the record
                without expiry.
            publish: Also publish each written document on a channel named
                by its id.
        """
        ttl = self.config.default_record_expiration if expiration is None else expiration
        for document in list(self._items):
            if not (force_update or self.has_changes(document)):
                continue

            key = document.ensure_id()
            document.modify_date = utc_now()
            self.cache.advance(document)

            value = document.serialize()
            payload = value.encode()
            connection = await self.connection()
            await connection.set(key, payload, ttl, fire_and_forget=True)
            if publish:
                await connection.publish(key, payload)
            self._snapshots[key] = value

    async def delete(self, target: D | str) -> None:
        """Delete a document from the store and the local cache.

        The working set is left as it is.
        """
        if isinstance(target, Document):
            key = target.ensure_id()
        else:
            key = self.document_type.qualify(target)
        connection = await self.connection()
        await connection.delete(key, fire_and_forget=True)
        self.cache.remove(key)

    async def publish(self, target: D | str, value: str | bytes | None = None) -> int:
        """Publish a document on its id, or value on an arbitrary channel.

        Returns:
            The number of receivers reported by the backend.
        """
        if isinstance(target, Document):
            channel, payload = target.ensure_id(), target.serialize().encode()
        else:
            if value is None:
                raise ValueError("A value is required when publishing on a channel")
            channel = target
            payload = value.encode() if isinstance(value, str) else value
        connection = await self.connection()
        return await connection.publish(channel, payload)

    # Subscriptions

    async def subscribe(self, pattern: str = "*", mode: SubscriptionMode | None = None) -> None:
        await self.subscriber.subscribe(pattern, mode)

    async def unsubscribe(self, pattern: str, mode: SubscriptionMode | None = None) -> None:
        await self.subscriber.unsubscribe(pattern, mode)

    def add_listener(self, listener: NotificationListener) -> None:
        self.subscriber.add_listener(listener)

    def remove_listener(self, listener: NotificationListener) -> None:
        self.subscriber.remove_listener(listener)

    # Lifecycle

    async def close(self) -> None:
        """Forget the working set and drop this instance's subscriptions.

        Documents are not deleted from the store.
        """
        self._items.clear()
        self._snapshots.clear()
        await self.subscriber.close()
        if self._own_connection is not None:
            await self._own_connection.close()
            self._own_connection = None

    async def __aenter__(self) -> "DocumentRepository[D]":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False

    # Internals

    async def _read(self, key: str) -> bytes | None:
        attempts = self.config.retry_attempts
        last_error: BackendError | None = None
        for attempt in range(1, attempts + 1):
            try:
                connection = await self.connection()
                return await connection.get(key)
            except BackendError as e:
                last_error = e
                LOGGER.warning(
                    f"Read of '{key}' failed on attempt {attempt}/{attempts}: {e}"
                )
                # Don't sleep after the last attempt
                if attempt < attempts:
                    await asyncio.sleep(attempt * self.config.retry_backoff.total_seconds())
        LOGGER.error(f"Giving up on reading '{key}' after {attempts} attempts")
        raise BackendUnavailableError(key, attempts) from last_error

    async def _subscription_connection(self) -> KeyValueBackend:
        await self.store.owners.ensure_owner(self.document_type)
        return await self.store.connections.get_subscription_connection(
            self.config.connection_string
        )

    def _load(self, raw: bytes) -> D:
        document: D = self.document_type.deserialize(raw)  # type: ignore[assignment]
        self._track_loaded(document)
        self.cache.set(document, self.config.cache_expiration)
        return document

    def _track_loaded(self, document: D) -> D:
        self._put(document)
        self._snapshots[document.ensure_id()] = document.serialize()
        return document

    def _put(self, document: D) -> None:
        key = document.ensure_id()
        self._items = [item for item in self._items if item.id != key]
        self._items.append(document)
