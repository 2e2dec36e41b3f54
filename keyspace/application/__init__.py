"""Caching document repositories over a shared key-value store.

This package contains the runtime of keyspace: backend connections and
pooling, the process-wide document cache, change-notification subscriptions,
the repositories themselves and the store tying them together.
"""

from .cache import ABSENT, CacheMarker, DocumentCacheBackend, LocalCache, NullDocumentCache
from .connections import (
    ConnectionMode,
    ConnectionPool,
    ConnectionRegistry,
    InMemoryBackend,
    KeyValueBackend,
    VotingStrategy,
)
from .errors import ErrorHandler, ErrorReporter
from .repository import (
    BlockingRepository,
    DocumentRepository,
    EventLoopThread,
    InvalidationOwnerRegistry,
    KeyspaceSettings,
    RepositoryConfig,
    RepositoryConfigRegistry,
)
from .store import DocumentStore, HasLifecycle
from .subscriptions import (
    CacheChanged,
    InvalidationSubscriber,
    NotificationEvent,
    SubscriptionMode,
    SubscriptionTriggered,
)

__all__ = [
    # Store
    "DocumentStore",
    "HasLifecycle",
    "ErrorReporter",
    "ErrorHandler",
    # Repositories
    "DocumentRepository",
    "BlockingRepository",
    "EventLoopThread",
    "InvalidationOwnerRegistry",
    "RepositoryConfig",
    "RepositoryConfigRegistry",
    "KeyspaceSettings",
    # Cache
    "DocumentCacheBackend",
    "LocalCache",
    "NullDocumentCache",
    "CacheMarker",
    "ABSENT",
    # Connections
    "KeyValueBackend",
    "InMemoryBackend",
    "ConnectionMode",
    "ConnectionPool",
    "ConnectionRegistry",
    "VotingStrategy",
    # Subscriptions
    "InvalidationSubscriber",
    "SubscriptionMode",
    "CacheChanged",
    "SubscriptionTriggered",
    "NotificationEvent",
]
