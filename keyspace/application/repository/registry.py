"""Registry of the repositories owning each document type's invalidation subscription."""

import asyncio
import logging
from collections.abc import Callable
from functools import partial
from typing import TYPE_CHECKING

from ...domain import Document
from ..discovery import ClassScanner, ModuleScanner
from ..errors import ErrorReporter
from .repository import DocumentRepository

if TYPE_CHECKING:
    from ..store import DocumentStore

LOGGER = logging.getLogger(__name__)

RepositoryFactory = Callable[[], DocumentRepository]


class InvalidationOwnerRegistry:
    """Ensures one long-lived repository per document type keeps its cache coherent.

    Applications create short-lived repositories per request. If each of
    them subscribed to change notifications the backend would see one
    redundant subscription per request. Instead, the first time a document
    type is used, the registry creates its designated owner repository from
    the registered factory and subscribes it to every key of the type. The
    owner lives until the registry is closed.

    A type without a factory, or one that was disabled, simply gets no owner;
    its cache then relies on TTLs alone. The owner subscribes only when
    caching is enabled for its type.

    Examples:
        >>> owners = InvalidationOwnerRegistry()
        >>> owners.register(Member, lambda: MemberRepository(store))
        >>> await owners.ensure_owner(Member)
        >>> owners.get(Member)
        <MemberRepository ...>
    """

    def __init__(self, errors: ErrorReporter | None = None):
        self._errors = errors or ErrorReporter()
        self._factories: dict[type[Document], RepositoryFactory] = {}
        self._owners: dict[type[Document], DocumentRepository | None] = {}
        self._disabled: set[type[Document]] = set()
        self._misses: set[type[Document]] = set()
        self._lock = asyncio.Lock()

    def register(self, document_type: type[Document], factory: RepositoryFactory) -> None:
        """Register the factory creating the owner of document_type.

        Args:
            document_type: Document type the owner subscribes for.
            factory: Zero-argument callable returning the owner repository.
        """
        self._factories[document_type] = factory
        self._misses.discard(document_type)

    def disable(self, document_type: type[Document]) -> None:
        """Opt document_type out of owner subscriptions."""
        self._disabled.add(document_type)

    def is_registered(self, document_type: type[Document]) -> bool:
        return document_type in self._factories

    def get(self, document_type: type[Document]) -> DocumentRepository | None:
        """The owner created for document_type, if any."""
        return self._owners.get(document_type)

    async def ensure_owner(self, document_type: type[Document]) -> None:
        """Create and subscribe the owner of document_type unless it exists.

        Never raises: a failed subscription is reported and retried the next
        time the type is used.
        """
        if document_type in self._owners or document_type in self._disabled:
            return

        async with self._lock:
            if document_type in self._owners:
                return
            if (factory := self._factories.get(document_type)) is None:
                if document_type not in self._misses:
                    self._misses.add(document_type)
                    LOGGER.debug(
                        "No invalidation owner registered",
                        extra={"document_type": document_type.__name__},
                    )
                return
            # The owner's own subscription resolves connections through this
            # method, so the slot is taken before subscribing.
            self._owners[document_type] = None

        owner = factory()
        self._owners[document_type] = owner
        if not owner.config.enable_caching:
            return

        try:
            await owner.subscribe("*")
        except Exception as error:
            self._owners.pop(document_type, None)
            self._errors.report(self, error)
            return
        LOGGER.debug(
            "Invalidation owner subscribed",
            extra={"document_type": document_type.__name__, "owner": type(owner).__name__},
        )

    def discover(self, package_name: str, store: "DocumentStore") -> list[type[Document]]:
        """Register an owner for every document type with a repository in a package.

        Every public module of the package is imported and scanned for
        concrete `DocumentRepository` subclasses. The first repository found
        for a document type becomes its owner; types that already have a
        factory keep it.

        Returns:
            The document types registered by this call.
        """
        discovered: list[type[Document]] = []
        for module in ModuleScanner(package_name).scan_all_modules():
            for repository_type in ClassScanner.find_subclasses(module, DocumentRepository):
                document_type = getattr(repository_type, "document_type", None)
                if document_type is None:
                    continue
                if self.is_registered(document_type):
                    LOGGER.debug(
                        "Skipping repository, owner already registered",
                        extra={
                            "document_type": document_type.__name__,
                            "repository": repository_type.__name__,
                        },
                    )
                    continue
                self.register(document_type, partial(repository_type, store))
                discovered.append(document_type)
        return discovered

    async def close(self) -> None:
        """Close every owner and forget them."""
        owners = [owner for owner in self._owners.values() if owner is not None]
        for owner in owners:
            try:
                await owner.close()
            except Exception as error:
                LOGGER.warning(f"Failed to close invalidation owner {owner!r}: {error}")
        self._owners.clear()
