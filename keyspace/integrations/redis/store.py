from functools import partial

from ...application import (
    DocumentStore,
    KeyspaceSettings,
    LocalCache,
    RepositoryConfigRegistry,
)
from .config import RedisConfiguration
from .connection import RedisConnection


def create_store(
    settings: KeyspaceSettings | None = None,
    redis_config: RedisConfiguration | None = None,
) -> DocumentStore:
    """Build a `DocumentStore` backed by Redis, configured from the environment.

    The settings provide the default repository configuration and the local
    cache expiration policy; the redis configuration tunes every client the
    store opens.

    Example:
        >>> store = create_store()
        >>> store.owners.register(Member, lambda: MemberRepository(store))
        >>> async with store:
        ...     ...
    """
    settings = settings or KeyspaceSettings()
    redis_config = redis_config or RedisConfiguration()
    return DocumentStore(
        partial(RedisConnection.connect, config=redis_config),
        configs=RepositoryConfigRegistry(settings.to_repository_config()),
        cache=LocalCache(
            default_ttl=settings.cache_expiration,
            sliding=settings.sliding_cache_expiration,
        ),
    )
