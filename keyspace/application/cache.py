import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from ..domain import Document


class CacheMarker(Enum):
    """Non-document values a cache lookup can produce."""

    ABSENT = "absent"


ABSENT = CacheMarker.ABSENT

CacheLookup = Document | CacheMarker | None


class DocumentCacheBackend(ABC):
    """Mechanism for caching documents in the local process.

    A cache lookup has three outcomes: a document (hit), `ABSENT` (the key is
    known not to exist in the store) or None (miss, nothing is known).

    Writes of documents obey a monotonic-write guard: a document only replaces
    a cached one if its `modify_date` is strictly newer, so an out-of-order
    notification or a stale read can never roll the cache back.
    """

    @staticmethod
    def null() -> "DocumentCacheBackend":
        return NullDocumentCache()

    @abstractmethod
    def get(self, key: str) -> CacheLookup: ...

    @abstractmethod
    def set(self, document: Document, ttl: timedelta | None = None) -> bool:
        """Cache document unless a newer one is cached. Returns whether it was written."""
        ...

    @abstractmethod
    def set_absent(self, key: str, ttl: timedelta | None = None) -> None:
        """Record that key does not exist in the store."""
        ...

    @abstractmethod
    def advance(self, document: Document) -> bool:
        """Bring an already cached entry for document up to date.

        A cached copy is replaced if document is newer, and a cached absence
        is replaced unconditionally. Unlike `set`, nothing is cached if the
        key has no entry, and the entry keeps its expiry.
        """
        ...

    @abstractmethod
    def remove(self, key: str) -> None: ...


class NullDocumentCache(DocumentCacheBackend):
    """A cache that never holds anything, used when caching is disabled."""

    def get(self, key: str) -> CacheLookup:
        return None

    def set(self, document: Document, ttl: timedelta | None = None) -> bool:
        return False

    def set_absent(self, key: str, ttl: timedelta | None = None) -> None:
        pass

    def advance(self, document: Document) -> bool:
        return False

    def remove(self, key: str) -> None:
        pass


@dataclass
class CacheEntry:
    value: Document | CacheMarker
    ttl: float
    expires_at: float


def _is_newer(incoming: datetime | None, cached: datetime | None) -> bool:
    if incoming is None:
        return False
    return cached is None or cached < incoming


class LocalCache(DocumentCacheBackend):
    """Process-wide, time-expiring document cache.

    One instance is shared by every document type and every repository in a
    process; keys do not collide because document ids carry their type's base
    key. All operations are guarded by a single lock and are safe to call from
    several threads.

    Documents are copied on the way in and on the way out, so mutating a
    document obtained from the cache (or one that was cached from a working
    set) never changes what other repositories see.

    Expiration is time based only. With `sliding=True` every hit pushes the
    expiry of the entry forward by its TTL, otherwise entries expire a fixed
    TTL after they were written. Expired entries are dropped lazily when
    touched, or in bulk by `sweep`.

    Examples:
        >>> cache = LocalCache(default_ttl=timedelta(minutes=30))
        >>> cache.set(member)
        True
        >>> cache.set_absent("member:missing")
        >>> cache.get("member:missing") is ABSENT
        True
    """

    def __init__(
        self,
        default_ttl: timedelta = timedelta(minutes=30),
        sliding: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = default_ttl
        self.sliding = sliding
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> CacheLookup:
        with self._lock:
            if (entry := self._live_entry(key)) is None:
                return None
            if self.sliding:
                entry.expires_at = self._clock() + entry.ttl
            value = entry.value
            if isinstance(value, CacheMarker):
                return value
            return value.model_copy(deep=True)

    def set(self, document: Document, ttl: timedelta | None = None) -> bool:
        key = document.ensure_id()
        with self._lock:
            entry = self._live_entry(key)
            if (
                entry is not None
                and isinstance(entry.value, Document)
                and not _is_newer(document.modify_date, entry.value.modify_date)
            ):
                return False
            self._write(key, document.model_copy(deep=True), ttl)
            return True

    def set_absent(self, key: str, ttl: timedelta | None = None) -> None:
        with self._lock:
            self._write(key, ABSENT, ttl)

    def advance(self, document: Document) -> bool:
        key = document.ensure_id()
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return False
            if isinstance(entry.value, Document) and not _is_newer(
                document.modify_date, entry.value.modify_date
            ):
                return False
            entry.value = document.model_copy(deep=True)
            return True

    def remove(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def sweep(self) -> int:
        """Drop every expired entry and return how many were dropped."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        """Return the number of entries, expired ones included until swept."""
        return len(self._entries)

    def _live_entry(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _write(self, key: str, value: Document | CacheMarker, ttl: timedelta | None) -> None:
        seconds = (ttl or self.default_ttl).total_seconds()
        self._entries[key] = CacheEntry(value, seconds, self._clock() + seconds)
