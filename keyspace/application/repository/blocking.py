"""Blocking access to document repositories for synchronous callers."""

import asyncio
import logging
import threading
from collections.abc import Coroutine, Iterable
from datetime import timedelta
from typing import Any, Generic, TypeVar

from ...domain import Document
from ..subscriptions import SubscriptionMode
from .repository import DocumentRepository

LOGGER = logging.getLogger(__name__)

D = TypeVar("D", bound=Document)
T = TypeVar("T")


class EventLoopThread:
    """An event loop running forever in a daemon thread.

    Every coroutine submitted through `run` executes on that one loop, so
    the asyncio locks and connections of a store are only ever used from a
    single loop, whichever thread the caller is on.

    Examples:
        >>> loop_thread = EventLoopThread()
        >>> loop_thread.start()
        >>> loop_thread.run(asyncio.sleep(0, result=42))
        42
        >>> loop_thread.stop()
    """

    def __init__(self, name: str = "keyspace-loop"):
        self.name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.is_running:
                return
            loop = asyncio.new_event_loop()
            ready = threading.Event()

            def _serve() -> None:
                asyncio.set_event_loop(loop)
                loop.call_soon(ready.set)
                loop.run_forever()
                loop.close()

            self._loop = loop
            self._thread = threading.Thread(target=_serve, daemon=True, name=self.name)
            self._thread.start()
            ready.wait()
            LOGGER.debug("Event loop thread started", extra={"thread": self.name})

    def run(self, coroutine: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        """Run coroutine on the loop thread and block until it completes.

        Exceptions raised by the coroutine are re-raised in the caller.
        """
        if not self.is_running:
            self.start()
        assert self._loop is not None
        future = asyncio.run_coroutine_threadsafe(coroutine, self._loop)
        return future.result(timeout)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop, waiting up to timeout seconds for the thread to exit."""
        with self._lock:
            if not self.is_running or self._loop is None or self._thread is None:
                return
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                LOGGER.warning("Event loop thread did not stop cleanly")
            self._thread = None
            self._loop = None


class BlockingRepository(Generic[D]):
    """Synchronous façade over a `DocumentRepository`.

    Each method runs the corresponding coroutine of the wrapped repository on
    an `EventLoopThread` and blocks until it finishes, so blocking and async
    callers share the same caching, retry and change-tracking behavior.
    Operations that never touch the backend are called directly.

    All repositories of one store must use the same loop thread.

    Examples:
        >>> loop_thread = EventLoopThread()
        >>> with BlockingRepository(MemberRepository(store), loop_thread) as members:
        ...     member = members.get_by_id("abc")
        ...     member.title = "Alice Smith"
        ...     members.save()
    """

    def __init__(self, repository: DocumentRepository[D], loop_thread: EventLoopThread):
        self.repository = repository
        self.loop_thread = loop_thread

    def create_new(self) -> D:
        return self.repository.create_new()

    def add(self, documents: D | Iterable[D]) -> None:
        self.repository.add(documents)

    def remove(self, document: D) -> None:
        self.repository.remove(document)

    def has_changes(self, document: D) -> bool:
        return self.repository.has_changes(document)

    def is_new(self, document: D) -> bool:
        return self.repository.is_new(document)

    def get_by_id(self, id: str, bypass_cache: bool = False) -> D | None:
        return self.loop_thread.run(self.repository.get_by_id(id, bypass_cache))

    def get_all(self, ids: Iterable[str]) -> list[D]:
        return self.loop_thread.run(self.repository.get_all(list(ids)))

    def get_all_matching(self, pattern: str, limit: int = 10000) -> list[D]:
        return self.loop_thread.run(self.repository.get_all_matching(pattern, limit))

    def scan(self, pattern: str, limit: int = 10000) -> list[str]:
        return self.loop_thread.run(self.repository.scan(pattern, limit))

    def save(
        self,
        force_update: bool = False,
        expiration: timedelta | None = None,
        publish: bool = False,
    ) -> None:
        self.loop_thread.run(self.repository.save(force_update, expiration, publish))

    def delete(self, target: D | str) -> None:
        self.loop_thread.run(self.repository.delete(target))

    def publish(self, target: D | str, value: str | bytes | None = None) -> int:
        return self.loop_thread.run(self.repository.publish(target, value))

    def subscribe(self, pattern: str = "*", mode: SubscriptionMode | None = None) -> None:
        self.loop_thread.run(self.repository.subscribe(pattern, mode))

    def unsubscribe(self, pattern: str, mode: SubscriptionMode | None = None) -> None:
        self.loop_thread.run(self.repository.unsubscribe(pattern, mode))

    def close(self) -> None:
        self.loop_thread.run(self.repository.close())

    def __enter__(self) -> "BlockingRepository[D]":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
