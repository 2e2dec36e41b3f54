"""Redis integration for keyspace repositories.

This module provides the Redis implementation of the KeyValueBackend
interface using the asyncio client of redis-py.

Installation:
    pip install keyspace

Usage:
    >>> from keyspace.integrations.redis import (
    ...     RedisConfiguration,
    ...     RedisConnection,
    ...     create_store,
    ... )
    >>>
    >>> # Store configured from KEYSPACE_* environment variables
    >>> store = create_store()
    >>>
    >>> # Or wired by hand
    >>> store = DocumentStore(RedisConnection.connect)
    >>>
    >>> # Keyspace subscriptions need notifications enabled on the server:
    >>> #   CONFIG SET notify-keyspace-events K$gx
"""

from .config import RedisConfiguration
from .connection import RedisConnection
from .store import create_store

__all__ = [
    "RedisConfiguration",
    "RedisConnection",
    "create_store",
]
