import asyncio
import logging
import random
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence

from ...domain.exceptions import BackendError
from .backend import KeyValueBackend

LOGGER = logging.getLogger(__name__)

ConnectionFactory = Callable[[str], Awaitable[KeyValueBackend]]


class VotingStrategy(ABC):
    """Decides which live connection of a full pool serves the next request."""

    @staticmethod
    def least_loaded() -> "VotingStrategy":
        return LeastLoaded()

    @staticmethod
    def random() -> "VotingStrategy":
        return RandomVote()

    @staticmethod
    def custom(scorer: Callable[[KeyValueBackend], float]) -> "VotingStrategy":
        return CustomVote(scorer)

    @abstractmethod
    def select(self, connections: Sequence[KeyValueBackend]) -> KeyValueBackend: ...


class LeastLoaded(VotingStrategy):
    def select(self, connections: Sequence[KeyValueBackend]) -> KeyValueBackend:
        return min(connections, key=lambda connection: connection.outstanding)


class RandomVote(VotingStrategy):
    def select(self, connections: Sequence[KeyValueBackend]) -> KeyValueBackend:
        return random.choice(connections)


class CustomVote(VotingStrategy):
    """Picks the connection with the lowest caller-supplied score."""

    def __init__(self, scorer: Callable[[KeyValueBackend], float]):
        self.scorer = scorer

    def select(self, connections: Sequence[KeyValueBackend]) -> KeyValueBackend:
        return min(connections, key=self.scorer)


class ConnectionSlot:
    """One position in a connection pool, empty until first connected."""

    __slots__ = ("index", "connection")

    def __init__(self, index: int):
        self.index = index
        self.connection: KeyValueBackend | None = None

    @property
    def is_live(self) -> bool:
        return self.connection is not None and self.connection.is_connected


class ConnectionPool:
    """A fixed-size set of connections to one connection string.

    The pool is filled lazily. While some slot has never been connected, each
    call to `acquire` connects the next empty slot and returns it, so the first
    `size` calls produce `size` distinct connections. Once every slot holds a
    connection, the live ones are put to a vote using the pool's
    `VotingStrategy`.

    A connection that reports itself disconnected is left out of the vote and
    its slot is reconnected by the next `acquire`, so a pool does not stay
    degraded after a connection drops. If that reconnect fails while other
    connections are live, the failure is logged and the live ones are voted
    on instead; the slot is tried again on a later call.

    Slot selection and slot mutation happen under a single lock, so
    concurrent callers never connect the same slot twice. Failures to connect
    an empty slot, or to reconnect when nothing is live, propagate to the
    caller. The pool itself never retries.

    Examples:
        >>> pool = ConnectionPool(
        ...     "redis://localhost:6379/0",
        ...     size=3,
        ...     voting_strategy=VotingStrategy.least_loaded(),
        ...     connection_factory=RedisConnection.connect,
        ... )
        >>> connection = await pool.acquire()
    """

    def __init__(
        self,
        connection_string: str,
        size: int,
        voting_strategy: VotingStrategy,
        connection_factory: ConnectionFactory,
    ):
        if size <= 0:
            raise ValueError("size must be positive")
        self.connection_string = connection_string
        self.size = size
        self.voting_strategy = voting_strategy
        self.slots = [ConnectionSlot(index) for index in range(size)]
        self._connection_factory = connection_factory
        self._lock = asyncio.Lock()

    async def acquire(self) -> KeyValueBackend:
        async with self._lock:
            for slot in self.slots:
                if slot.connection is None:
                    return await self._fill(slot)

            live = [slot.connection for slot in self.slots if slot.is_live]
            stale = next((slot for slot in self.slots if not slot.is_live), None)
            if stale is not None:
                try:
                    return await self._reconnect(stale)
                except BackendError as e:
                    if not live:
                        raise
                    LOGGER.warning(
                        f"Reconnecting pool slot {stale.index} failed: {e}",
                        extra={"slot": stale.index, "pool_size": self.size},
                    )
            return self.voting_strategy.select(live)  # type: ignore[arg-type]

    async def close(self) -> None:
        async with self._lock:
            for slot in self.slots:
                if slot.connection is not None:
                    await slot.connection.close()
                    slot.connection = None

    async def _reconnect(self, slot: ConnectionSlot) -> KeyValueBackend:
        LOGGER.warning(
            "Pool connection is down, reconnecting",
            extra={"slot": slot.index, "pool_size": self.size},
        )
        # The dead connection stays in the slot until a replacement is up
        dead = slot.connection
        connection = await self._fill(slot)
        if dead is not None:
            await dead.close()
        return connection

    async def _fill(self, slot: ConnectionSlot) -> KeyValueBackend:
        connection = await self._connection_factory(self.connection_string)
        slot.connection = connection
        LOGGER.debug(
            "Connected pool slot",
            extra={"slot": slot.index, "pool_size": self.size},
        )
        return connection
