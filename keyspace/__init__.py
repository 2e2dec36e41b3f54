"""Keyspace - Caching document repositories for Redis.

This module provides the public API for storing pydantic documents in a
key-value store behind a coherent, process-wide local cache.
"""

from .application import (
    BlockingRepository,
    CacheChanged,
    ConnectionMode,
    DocumentRepository,
    DocumentStore,
    InMemoryBackend,
    KeyspaceSettings,
    LocalCache,
    RepositoryConfig,
    RepositoryConfigRegistry,
    SubscriptionMode,
    SubscriptionTriggered,
    VotingStrategy,
)
from .domain import (
    BackendError,
    BackendUnavailableError,
    Document,
    InvalidKeyError,
    KeyspaceError,
    NotificationHandlingError,
)

__all__ = [
    # Store and repositories
    "DocumentStore",
    "DocumentRepository",
    "BlockingRepository",
    "LocalCache",
    "InMemoryBackend",
    # Configuration
    "RepositoryConfig",
    "RepositoryConfigRegistry",
    "KeyspaceSettings",
    "ConnectionMode",
    "SubscriptionMode",
    "VotingStrategy",
    # Domain
    "Document",
    "CacheChanged",
    "SubscriptionTriggered",
    # Errors
    "KeyspaceError",
    "InvalidKeyError",
    "BackendError",
    "BackendUnavailableError",
    "NotificationHandlingError",
]
