"""Document repository infrastructure."""

from .config import KeyspaceSettings, RepositoryConfig, RepositoryConfigRegistry
from .repository import DocumentRepository
from .registry import InvalidationOwnerRegistry, RepositoryFactory
from .blocking import BlockingRepository, EventLoopThread

__all__ = [
    "DocumentRepository",
    "BlockingRepository",
    "EventLoopThread",
    "InvalidationOwnerRegistry",
    "RepositoryFactory",
    "RepositoryConfig",
    "RepositoryConfigRegistry",
    "KeyspaceSettings",
]
