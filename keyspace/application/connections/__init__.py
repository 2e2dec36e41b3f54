"""Backend connections: the store interface, pools and the registry.

This package provides:
- KeyValueBackend: Interface over one connection to the key-value store
- InMemoryBackend: In-memory backend for tests and single-process use
- ConnectionPool / VotingStrategy: Fixed-size pools with pluggable selection
- ConnectionRegistry / ConnectionMode: Process-level connection sharing
"""

from .backend import (
    InMemoryBackend,
    KeyValueBackend,
    NotificationHandler,
    is_pattern,
    keyspace_channel,
    keyspace_channel_prefix,
)
from .pool import (
    ConnectionFactory,
    ConnectionPool,
    ConnectionSlot,
    CustomVote,
    LeastLoaded,
    RandomVote,
    VotingStrategy,
)
from .registry import ConnectionMode, ConnectionRegistry

__all__ = [
    # Backend
    "KeyValueBackend",
    "InMemoryBackend",
    "NotificationHandler",
    "is_pattern",
    "keyspace_channel",
    "keyspace_channel_prefix",
    # Pooling
    "ConnectionFactory",
    "ConnectionPool",
    "ConnectionSlot",
    "VotingStrategy",
    "LeastLoaded",
    "RandomVote",
    "CustomVote",
    # Registry
    "ConnectionMode",
    "ConnectionRegistry",
]
