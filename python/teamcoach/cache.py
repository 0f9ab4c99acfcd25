"""Bounded TTL cache used by the data-access stores.

Each store owns its own TTLCache instance; nothing here is a process-wide
singleton. Entries expire after a fixed TTL (checked on every read) and the
cache is bounded by entry count with least-recently-used eviction.

The cache is never a source of truth. It does not raise to its callers:
an internal failure is logged and treated as a miss, so callers always fall
back to the durable store.

CacheSweeper is an optional daemon thread that purges expired entries. It is
a memory optimization only; TTL correctness comes from the check in get().
"""

import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from threading import Lock
from typing import Any

from teamcoach.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_MAX_ENTRIES = 1000


@dataclass
class CacheEntry:
    """Cached value with its insertion time (clock seconds)."""

    value: Any
    stored_at: float


class TTLCache:
    """Thread-safe LRU cache with per-entry time-to-live.

    Args:
        ttl_seconds: Maximum entry age. An entry is a hit only while
            ``now - stored_at < ttl_seconds``.
        max_entries: Capacity; inserting beyond it evicts LRU entries.
        clock: Monotonic clock returning seconds. Injectable for tests.
        name: Label used in log events and stats.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.name = name
        self._clock = clock
        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = Lock()
        self._hits = 0
        self._misses = 0
        # Bumped by every invalidation; see begin_fill()
        self._epoch = 0

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None on miss or expiry.

        A hit moves the key to the most-recently-used position. An expired
        entry is evicted before the miss is reported.
        """
        try:
            with self._lock:
                entry = self._cache.get(key)
                if entry is None:
                    self._misses += 1
                    return None
                if self._clock() - entry.stored_at >= self.ttl_seconds:
                    del self._cache[key]
                    self._misses += 1
                    return None
                self._cache.move_to_end(key)
                self._hits += 1
                return entry.value
        except Exception as e:
            logger.warning("cache_get_failed", cache=self.name, key=key, error=str(e))
            return None

    def begin_fill(self) -> int:
        """Return the invalidation epoch to pass to set() after a durable read.

        A reader that misses, reads the database, then fills the cache can
        race a writer that commits and invalidates in between. Passing the
        epoch observed before the read makes set() drop such a fill.
        """
        with self._lock:
            return self._epoch

    def set(self, key: str, value: Any, epoch: int | None = None) -> None:
        """Insert or overwrite a value, evicting LRU entries beyond capacity.

        If epoch is given and any invalidation happened since begin_fill()
        returned it, the value is discarded.
        """
        try:
            with self._lock:
                if epoch is not None and epoch != self._epoch:
                    return
                self._cache[key] = CacheEntry(value=value, stored_at=self._clock())
                self._cache.move_to_end(key)
                # The new key sits at the MRU end, so popping from the front never removes it
                while len(self._cache) > self.max_entries:
                    self._cache.popitem(last=False)
        except Exception as e:
            logger.warning("cache_set_failed", cache=self.name, key=key, error=str(e))

    def invalidate(self, key: str) -> bool:
        """Remove a key unconditionally. Returns True if it was present."""
        try:
            with self._lock:
                self._epoch += 1
                return self._cache.pop(key, None) is not None
        except Exception as e:
            logger.warning("cache_invalidate_failed", cache=self.name, key=key, error=str(e))
            return False

    def invalidate_many(self, keys: Iterable[str]) -> int:
        """Remove several keys; returns how many were present."""
        return sum(1 for key in keys if self.invalidate(key))

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove every key starting with prefix."""
        try:
            with self._lock:
                self._epoch += 1
                doomed = [key for key in self._cache if key.startswith(prefix)]
                for key in doomed:
                    del self._cache[key]
                return len(doomed)
        except Exception as e:
            logger.warning("cache_invalidate_failed", cache=self.name, prefix=prefix, error=str(e))
            return 0

    def clear(self) -> int:
        """Clear all entries. Returns how many were removed."""
        with self._lock:
            self._epoch += 1
            count = len(self._cache)
            self._cache.clear()
            return count

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [
                key
                for key, entry in self._cache.items()
                if now - entry.stored_at >= self.ttl_seconds
            ]
            for key in expired:
                del self._cache[key]
            return len(expired)

    def __contains__(self, key: str) -> bool:
        """Presence check that ignores TTL and does not touch recency."""
        with self._lock:
            return key in self._cache

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    @property
    def stats(self) -> dict[str, Any]:
        """Snapshot of size and hit ratio."""
        with self._lock:
            total = self._hits + self._misses
            return {
                "name": self.name,
                "size": len(self._cache),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total else 0.0,
            }


class CacheSweeper:
    """Daemon thread that periodically purges expired entries.

    Each cache is locked only for the duration of its own purge_expired()
    call, never across the wait between sweeps.
    """

    def __init__(self, caches: Iterable[TTLCache], interval_seconds: float):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.caches = list(caches)
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def sweep_once(self) -> int:
        """Purge every cache once. Returns total entries removed."""
        removed = 0
        for cache in self.caches:
            try:
                removed += cache.purge_expired()
            except Exception as e:
                logger.warning("cache_sweep_failed", cache=cache.name, error=str(e))
        if removed:
            logger.debug("cache_sweep_complete", removed=removed)
        return removed

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.sweep_once()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="cache-sweeper", daemon=True)
        self._thread.start()
        logger.info("cache_sweeper_started", interval_seconds=self.interval_seconds)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("cache_sweeper_stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
