import asyncio
import logging
from typing import Protocol, runtime_checkable
from weakref import WeakValueDictionary

from .cache import DocumentCacheBackend, LocalCache
from .connections import ConnectionFactory, ConnectionRegistry
from .errors import ErrorReporter
from .repository import InvalidationOwnerRegistry, RepositoryConfigRegistry

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class HasLifecycle(Protocol):
    async def on_startup(self) -> None:
        """Called when the application is started."""
        ...

    async def on_shutdown(self) -> None:
        """Called when the application is shutdown."""
        ...


class DocumentStore:
    """The process-level state shared by every repository.

    A store is created once at start-up and handed to every repository the
    application creates. It owns:
    - `connections`: the `ConnectionRegistry` handing out backend connections
    - `cache`: the process-wide document cache
    - `configs`: the per-document-type `RepositoryConfigRegistry`
    - `owners`: the `InvalidationOwnerRegistry`
    - `errors`: the `ErrorReporter` receiving contained failures

    Shutting the store down closes every invalidation owner and every
    connection the store opened.

    Examples:
        >>> store = DocumentStore(RedisConnection.connect)
        >>> store.owners.register(Member, lambda: MemberRepository(store))
        >>> async with store:
        ...     async with MemberRepository(store) as members:
        ...         member = await members.get_by_id("abc")
    """

    def __init__(
        self,
        connection_factory: ConnectionFactory,
        configs: RepositoryConfigRegistry | None = None,
        cache: DocumentCacheBackend | None = None,
        errors: ErrorReporter | None = None,
    ):
        self.connections = ConnectionRegistry(connection_factory)
        self.configs = configs or RepositoryConfigRegistry()
        self.cache = cache or LocalCache()
        self.errors = errors or ErrorReporter()
        self.owners = InvalidationOwnerRegistry(self.errors)
        self._key_locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    def lock_for(self, key: str) -> asyncio.Lock:
        """The lock serializing backend loads of key within this process."""
        lock = self._key_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[key] = lock
        return lock

    def discover(self, package_name: str) -> None:
        """Register invalidation owners for the repositories in a package."""
        discovered = self.owners.discover(package_name, self)
        LOGGER.debug(
            "Discovered repositories",
            extra={
                "package": package_name,
                "document_types": [document_type.__name__ for document_type in discovered],
            },
        )

    async def on_startup(self) -> None:
        pass

    async def on_shutdown(self) -> None:
        await self.owners.close()
        await self.connections.close()

    async def __aenter__(self) -> "DocumentStore":
        await self.on_startup()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.on_shutdown()
        return False
