"""Configuration for document repositories."""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from pydantic import Field
from pydantic_settings import BaseSettings

from ..connections import ConnectionMode, VotingStrategy
from ..subscriptions.events import SubscriptionMode

if TYPE_CHECKING:
    from ...domain import Document


@dataclass
class RepositoryConfig:
    """Configuration for the repositories of one document type.

    Each field has a default matching the usual deployment: a single shared
    connection to a local Redis, caching enabled and keyspace notifications
    used to keep the cache coherent.

    Attributes:
        connection_string: DSN of the store. A logical database index in the
            DSN (e.g. `redis://host:6379/2`) becomes the default database.
        connection_mode: How connections are obtained, see `ConnectionMode`.
        pool_size: Number of pooled connections (POOLED mode only).
        voting_strategy: How a pooled connection is chosen.
        enable_caching: Whether the process-wide local cache is used.
        cache_expiration: TTL of local cache entries for this type.
        default_record_expiration: TTL of records written by `save` when no
            explicit expiration is passed.
        suppress_duplicate_notifications: Skip subscription events for
            notifications whose value the cache already reflects.
        subscription_mode: Notification source used by `subscribe`.
        retry_attempts: Attempts made by reads before giving up.
        retry_backoff: Unit of the linear backoff; attempt n waits n units.

    Examples:
        Default configuration:

        >>> config = RepositoryConfig()

        Pooled connections without local caching:

        >>> config = RepositoryConfig(
        ...     connection_string="redis://cache:6379/1",
        ...     connection_mode=ConnectionMode.POOLED,
        ...     pool_size=4,
        ...     enable_caching=False,
        ... )
    """

    connection_string: str = "redis://localhost:6379/0"
    connection_mode: ConnectionMode = ConnectionMode.SHARED
    pool_size: int = 1
    voting_strategy: VotingStrategy = field(default_factory=VotingStrategy.least_loaded)
    enable_caching: bool = True
    cache_expiration: timedelta = timedelta(minutes=30)
    default_record_expiration: timedelta = timedelta(days=15)
    suppress_duplicate_notifications: bool = True
    subscription_mode: SubscriptionMode = SubscriptionMode.KEYSPACE
    retry_attempts: int = 5
    retry_backoff: timedelta = timedelta(milliseconds=5)

    def __post_init__(self) -> None:
        if self.pool_size <= 0:
            raise ValueError("pool_size must be positive")
        if self.retry_attempts <= 0:
            raise ValueError("retry_attempts must be positive")


class KeyspaceSettings(BaseSettings):
    """Process defaults read from the environment.

    All settings can be configured via environment variables with the
    KEYSPACE_ prefix. For example:
    - KEYSPACE_REDIS_URL=redis://cache:6379/1
    - KEYSPACE_CONNECTION_MODE=pooled
    - KEYSPACE_CACHE_EXPIRATION=PT10M

    Example:
        >>> settings = KeyspaceSettings()
        >>> registry = RepositoryConfigRegistry(settings.to_repository_config())
    """

    redis_url: str = "redis://localhost:6379/0"
    connection_mode: ConnectionMode = ConnectionMode.SHARED
    pool_size: int = Field(default=1, ge=1)
    enable_caching: bool = True
    cache_expiration: timedelta = timedelta(minutes=30)
    sliding_cache_expiration: bool = True
    default_record_expiration: timedelta = timedelta(days=15)
    suppress_duplicate_notifications: bool = True
    subscription_mode: SubscriptionMode = SubscriptionMode.KEYSPACE

    model_config = {"env_prefix": "KEYSPACE_"}

    def to_repository_config(self) -> RepositoryConfig:
        return RepositoryConfig(
            connection_string=self.redis_url,
            connection_mode=self.connection_mode,
            pool_size=self.pool_size,
            enable_caching=self.enable_caching,
            cache_expiration=self.cache_expiration,
            default_record_expiration=self.default_record_expiration,
            suppress_duplicate_notifications=self.suppress_duplicate_notifications,
            subscription_mode=self.subscription_mode,
        )


class RepositoryConfigRegistry:
    """Registry mapping document types to repository configurations.

    Supports a default configuration for all document types and per-type
    overrides.

    Examples:
        >>> registry = RepositoryConfigRegistry()
        >>> registry.register(Member, RepositoryConfig(enable_caching=False))
        >>> registry.get(Member).enable_caching
        False
    """

    def __init__(self, default: RepositoryConfig | None = None):
        self._default = default or RepositoryConfig()
        self._overrides: dict[type["Document"], RepositoryConfig] = {}

    def set_default(self, config: RepositoryConfig) -> None:
        self._default = config

    def register(self, document_type: type["Document"], config: RepositoryConfig) -> None:
        self._overrides[document_type] = config

    def get(self, document_type: type["Document"]) -> RepositoryConfig:
        """Return the override registered for document_type, otherwise the default."""
        return self._overrides.get(document_type, self._default)
