"""
Unit tests -- aggregation caching layer.
"""
import threading
import time

import pytest

from src.filters.normalizer import normalize_filters
from src.insights.cache import AggregationCache, make_key


def _wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        time.sleep(0.005)


# ── Keys ────────────────────────────────────────────────

def test_key_independent_of_filter_and_dimension_order():
    a = make_key("aggregation:startups", normalize_filters({"search": "ai", "country": "us"}), ["b", "a"])
    b = make_key("aggregation:startups", normalize_filters({"country": "us", "search": "ai"}), ["a", "b"])
    assert a == b


def test_key_ignores_sentinel_and_blank_filters():
    a = make_key("aggregation:startups", normalize_filters({"search": "ai"}))
    b = make_key("aggregation:startups", normalize_filters({"search": " ai ", "country": "all", "state": ""}))
    assert a == b


def test_key_differs_by_identity_filters_and_dimensions():
    spec = normalize_filters({"search": "ai"})
    keys = {
        make_key("aggregation:startups", spec),
        make_key("aggregation:growth", spec),
        make_key("aggregation:startups", normalize_filters({"search": "bio"})),
        make_key("aggregation:startups", spec, ["countries"]),
    }
    assert len(keys) == 4


# ── Basic get / put ─────────────────────────────────────

def test_put_and_get(clock):
    cache = AggregationCache(ttl=60, clock=clock)
    cache.put("k", {"result": "data"})
    assert cache.get("k") == {"result": "data"}


def test_cache_miss(clock):
    cache = AggregationCache(ttl=60, clock=clock)
    assert cache.get("unknown") is None


def test_cache_expiry_uses_clock(clock):
    cache = AggregationCache(ttl=600, clock=clock)
    cache.put("k", "value")
    clock.advance(599)
    assert cache.get("k") == "value"
    clock.advance(2)
    assert cache.get("k") is None


def test_stale_entry_retained(clock):
    cache = AggregationCache(ttl=10, clock=clock)
    cache.put("k", "old")
    clock.advance(11)
    assert cache.get("k") is None
    assert cache.get_stale("k") == "old"
    assert cache.get_stale("missing") is None


def test_invalidate_specific(clock):
    cache = AggregationCache(ttl=60, clock=clock)
    cache.put("q1", "v1")
    cache.put("q2", "v2")
    assert cache.invalidate("q1") == 1
    assert cache.get("q1") is None
    assert cache.get("q2") == "v2"
    assert cache.invalidate("q1") == 0


def test_clear(clock):
    cache = AggregationCache(ttl=60, clock=clock)
    cache.put("q1", "v1")
    cache.put("q2", "v2")
    assert cache.clear() == 2
    assert cache.get("q1") is None
    assert cache.get_stale("q2") is None


def test_max_size_eviction(clock):
    cache = AggregationCache(ttl=60, max_size=2, clock=clock)
    cache.put("q1", "v1")
    clock.advance(1)
    cache.put("q2", "v2")
    clock.advance(1)
    cache.put("q3", "v3")
    assert cache.get("q1") is None
    assert cache.get("q2") == "v2"
    assert cache.get("q3") == "v3"


def test_full_cache_drops_expired_before_live(clock):
    cache = AggregationCache(ttl=10, max_size=2, clock=clock)
    cache.put("q1", "v1")
    clock.advance(11)
    cache.put("q2", "v2")
    clock.advance(1)
    cache.put("q3", "v3")
    assert cache.get_stale("q1") is None
    assert cache.get("q2") == "v2"
    assert cache.get("q3") == "v3"


def test_cleanup_expired(clock):
    cache = AggregationCache(ttl=10, clock=clock)
    cache.put("old", 1)
    clock.advance(8)
    cache.put("new", 2)
    clock.advance(5)
    assert cache.cleanup_expired() == 1
    assert cache.get_stale("old") is None
    assert cache.get("new") == 2


def test_stats(clock):
    cache = AggregationCache(ttl=60, clock=clock)
    cache.put("k", "v")
    cache.get("k")
    cache.get("k")
    cache.get("nope")
    stats = cache.stats()
    assert stats["size"] == 1
    assert stats["hits"] == 2
    assert stats["misses"] == 1
    assert stats["hit_rate"] == pytest.approx(0.667, abs=0.001)


# ── get_or_compute ──────────────────────────────────────

def test_get_or_compute_computes_once(clock):
    cache = AggregationCache(ttl=60, clock=clock)
    calls = []

    def compute():
        calls.append(1)
        return object()

    first, cached_first = cache.get_or_compute("k", compute)
    second, cached_second = cache.get_or_compute("k", compute)
    assert first is second
    assert (cached_first, cached_second) == (False, True)
    assert len(calls) == 1


def test_get_or_compute_error_not_stored(clock):
    cache = AggregationCache(ttl=60, clock=clock)

    def fail():
        raise RuntimeError("upstream down")

    with pytest.raises(RuntimeError):
        cache.get_or_compute("k", fail)
    assert cache.get_stale("k") is None
    value, cached = cache.get_or_compute("k", lambda: "ok")
    assert (value, cached) == ("ok", False)


def test_concurrent_misses_collapse_to_one_computation():
    cache = AggregationCache(ttl=60)
    started = threading.Event()
    release = threading.Event()
    calls = []

    def compute():
        calls.append(1)
        started.set()
        release.wait(5)
        return {"total": 42}

    results = []

    def worker():
        results.append(cache.get_or_compute("k", compute))

    leader = threading.Thread(target=worker)
    leader.start()
    assert started.wait(5)
    followers = [threading.Thread(target=worker) for _ in range(4)]
    for t in followers:
        t.start()
    _wait_for(lambda: cache.stats()["collapsed"] == 4)
    release.set()
    for t in [leader, *followers]:
        t.join(5)

    assert len(calls) == 1
    assert len(results) == 5
    assert all(value is results[0][0] for value, _ in results)


def test_waiters_see_leader_error():
    cache = AggregationCache(ttl=60)
    started = threading.Event()
    release = threading.Event()
    errors = []

    def compute():
        started.set()
        release.wait(5)
        raise RuntimeError("scan failed")

    def worker():
        try:
            cache.get_or_compute("k", compute)
        except RuntimeError as exc:
            errors.append(str(exc))

    leader = threading.Thread(target=worker)
    leader.start()
    assert started.wait(5)
    follower = threading.Thread(target=worker)
    follower.start()
    _wait_for(lambda: cache.stats()["collapsed"] == 1)
    release.set()
    leader.join(5)
    follower.join(5)

    assert errors == ["scan failed", "scan failed"]
