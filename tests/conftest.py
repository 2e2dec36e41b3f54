"""Central test fixtures - imports from unified test_app."""

from datetime import timedelta

import pytest

from keyspace import DocumentStore, InMemoryBackend, LocalCache, RepositoryConfig
from keyspace.application import RepositoryConfigRegistry

# Import all test domain objects from unified test app
from tests.fixtures.test_app import Member, MemberRepository


@pytest.fixture
def backend() -> InMemoryBackend:
    """Create an in-memory backend emitting keyspace notifications."""
    return InMemoryBackend(keyspace_notifications=True)


@pytest.fixture
def config() -> RepositoryConfig:
    """Default repository configuration with a zero retry backoff."""
    return RepositoryConfig(retry_backoff=timedelta(0))


@pytest.fixture
def store(backend: InMemoryBackend, config: RepositoryConfig) -> DocumentStore:
    """Create a store whose every connection is the in-memory backend."""

    async def connect(connection_string: str) -> InMemoryBackend:
        return backend

    return DocumentStore(
        connect,
        configs=RepositoryConfigRegistry(config),
        cache=LocalCache(),
    )


@pytest.fixture
def members(store: DocumentStore) -> MemberRepository:
    """Create a member repository on the test store."""
    return MemberRepository(store)


@pytest.fixture
def member() -> Member:
    """Create an unsaved member."""
    return Member(member_id="abc", title="Alice")


@pytest.fixture
def seed(backend: InMemoryBackend):
    """Write documents straight into the backend, bypassing repositories."""

    async def write(*documents: Member) -> None:
        for document in documents:
            await backend.set(document.ensure_id(), document.serialize().encode())

    return write
