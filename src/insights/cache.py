"""
Aggregation caching layer.

Full-scan aggregations are expensive, and the underlying data is read-only
reference data refreshed out-of-band, so computed results are cached
in-process with a TTL (default 10 minutes).  Keys are derived from the
aggregation identity (source + requested dimensions) and the *normalised*
FilterSpec, so equivalent filters in any parameter order share an entry.

Expiry is lazy: an entry older than its TTL reads as a miss, but is kept
(until overwritten, evicted, or swept by ``cleanup_expired``) so callers can
fall back to it via ``get_stale`` when recomputation fails.

Concurrent misses on the same key are collapsed by ``get_or_compute``: one
caller computes, the others wait for its result (or its error).

The cache is process-local.  A restart or deploy empties it, which is fine
for reference data.
"""
from __future__ import annotations

import hashlib
import time
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from src.core.logging import get_logger
from src.filters.normalizer import FilterSpec

logger = get_logger(__name__)


# ── Configuration ───────────────────────────────────────

DEFAULT_TTL_SECONDS = 600  # 10 minutes
DEFAULT_MAX_SIZE = 512


# ── Cache entry ─────────────────────────────────────────


@dataclass
class CacheEntry:
    """A single cached result."""
    key: str
    value: Any
    created_at: float
    ttl: float
    hit_count: int = 0

    def is_expired(self, now: float) -> bool:
        return (now - self.created_at) > self.ttl


@dataclass
class _InFlight:
    """A computation other callers can wait on."""
    event: threading.Event = field(default_factory=threading.Event)
    value: Any = None
    error: BaseException | None = None


def make_key(identity: str, filters: FilterSpec, dimensions: Sequence[str] | None = None) -> str:
    """Deterministic cache key from aggregation identity and normalised filters."""
    dims = ",".join(sorted(set(dimensions))) if dimensions else "*"
    raw = f"{identity}|{dims}|{filters.canonical()}"
    return hashlib.sha256(raw.encode()).hexdigest()


# ── Cache implementation ────────────────────────────────


class AggregationCache:
    """Thread-safe in-memory TTL cache for aggregation results.

    Parameters
    ----------
    ttl : float
        Time-to-live in seconds for each entry.
    max_size : int
        Maximum number of entries. Oldest entries are evicted when full.
    clock : callable
        Returns the current time in seconds (seam for tests).
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        max_size: int = DEFAULT_MAX_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store: dict[str, CacheEntry] = {}
        self._inflight: dict[str, _InFlight] = {}
        self._lock = threading.Lock()
        self._ttl = ttl
        self._max_size = max_size
        self._clock = clock
        self._hits = 0
        self._misses = 0
        self._collapsed = 0

    # ── Public API ──────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Retrieve a fresh cached result, or ``None`` on miss / expiry."""
        with self._lock:
            return self._get_locked(key)

    def get_stale(self, key: str) -> Any | None:
        """Retrieve an entry regardless of age (fallback when recompute fails)."""
        with self._lock:
            entry = self._store.get(key)
            return entry.value if entry is not None else None

    def put(self, key: str, value: Any) -> None:
        """Store a result in the cache."""
        with self._lock:
            # At capacity: drop expired entries first, then the oldest
            if len(self._store) >= self._max_size and key not in self._store:
                if not self._sweep_locked():
                    self._evict_oldest()
            self._store[key] = CacheEntry(
                key=key, value=value, created_at=self._clock(), ttl=self._ttl,
            )
            size = len(self._store)
        logger.debug("Cache PUT key=%s size=%d", key[:16], size)

    def get_or_compute(self, key: str, compute: Callable[[], Any]) -> tuple[Any, bool]:
        """Return ``(value, cached)``; compute once per key across concurrent callers.

        Errors raised by *compute* propagate to the computing caller and to
        every caller that was waiting on it.  Nothing is stored on error.
        """
        with self._lock:
            value = self._get_locked(key)
            if value is not None:
                return value, True
            call = self._inflight.get(key)
            leader = call is None
            if leader:
                call = _InFlight()
                self._inflight[key] = call
            else:
                self._collapsed += 1

        if not leader:
            logger.debug("Cache WAIT key=%s (computation in flight)", key[:16])
            call.event.wait()
            if call.error is not None:
                raise call.error
            return call.value, False

        try:
            value = compute()
            self.put(key, value)
            call.value = value
            return value, False
        except BaseException as exc:
            call.error = exc
            raise
        finally:
            with self._lock:
                self._inflight.pop(key, None)
            call.event.set()

    def invalidate(self, key: str | None = None) -> int:
        """Remove specific entry or flush all. Returns number of entries removed."""
        with self._lock:
            if key is None:
                count = len(self._store)
                self._store.clear()
                return count
            if key in self._store:
                del self._store[key]
                return 1
            return 0

    def clear(self) -> int:
        return self.invalidate()

    def stats(self) -> dict[str, Any]:
        """Return cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._store),
                "max_size": self._max_size,
                "ttl_seconds": self._ttl,
                "hits": self._hits,
                "misses": self._misses,
                "collapsed": self._collapsed,
                "hit_rate": round(self._hits / total, 3) if total else 0.0,
            }

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count removed."""
        with self._lock:
            return self._sweep_locked()

    # ── Internals ───────────────────────────────────────

    def _get_locked(self, key: str) -> Any | None:
        entry = self._store.get(key)
        if entry is None or entry.is_expired(self._clock()):
            self._misses += 1
            return None
        entry.hit_count += 1
        self._hits += 1
        logger.debug("Cache HIT key=%s hits=%d", key[:16], entry.hit_count)
        return entry.value

    def _sweep_locked(self) -> int:
        now = self._clock()
        expired = [k for k, v in self._store.items() if v.is_expired(now)]
        for k in expired:
            del self._store[k]
        return len(expired)

    def _evict_oldest(self) -> None:
        """Remove the entry with the earliest creation time."""
        if not self._store:
            return
        oldest_key = min(self._store, key=lambda k: self._store[k].created_at)
        del self._store[oldest_key]
