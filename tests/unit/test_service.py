"""
Unit tests -- InsightsService orchestration: paging, error channel,
cached aggregations and stale fallback.
"""
import pytest

from src.core.config import Settings
from src.core.errors import AggregationError, DataSourceError, UnknownSourceError
from src.db.memory_source import InMemoryDataSource
from src.insights.cache import AggregationCache
from src.insights.service import InsightsService, coerce_record_id


class SwitchableSource:
    """In-memory source that can be told to fail every call."""

    def __init__(self, inner: InMemoryDataSource):
        self.inner = inner
        self.broken = False

    def _check(self):
        if self.broken:
            raise DataSourceError("Query failed: OperationalError")

    def query(self, *args):
        self._check()
        return self.inner.query(*args)

    def count(self, *args):
        self._check()
        return self.inner.count(*args)

    def get(self, *args):
        self._check()
        return self.inner.get(*args)

    def distinct_values(self, *args):
        self._check()
        return self.inner.distinct_values(*args)


@pytest.fixture
def rows():
    industries = ["Fintech", "Biotech", "AI"]
    return [
        {"id": i, "name": f"Deal {i}", "industry": industries[i % 3], "country": "United States" if i % 2 else "Germany",
         "amount": float(i)}
        for i in range(1, 121)
    ]


@pytest.fixture
def source(rows):
    return SwitchableSource(InMemoryDataSource({"deals": rows}))


def _service(catalog, source, clock, **overrides):
    settings = Settings(**{"scan_batch_size": 50, "max_page_size": 100, **overrides})
    cache = AggregationCache(ttl=settings.cache_ttl_seconds, clock=clock)
    return InsightsService(catalog, source, cache, settings=settings, clock=clock)


# ── Lists / counts ──────────────────────────────────────

def test_list_page(catalog, source, clock):
    result = _service(catalog, source, clock).list_page("deals", {}, page=2, page_size=10)
    assert result.ok
    assert [r["id"] for r in result.records] == list(range(11, 21))
    assert (result.page, result.page_size, result.offset) == (2, 10, 10)
    assert result.has_more


def test_list_page_explicit_offset(catalog, source, clock):
    result = _service(catalog, source, clock).list_page("deals", {}, page_size=25, offset=50)
    assert [r["id"] for r in result.records] == list(range(51, 76))
    assert result.page == 3


def test_list_page_filters(catalog, source, clock):
    result = _service(catalog, source, clock).list_page(
        "deals", {"country": "us", "industry": "all", "bogus": "x"}, page_size=100,
    )
    assert len(result.records) == 60
    assert {r["country"] for r in result.records} == {"United States"}


def test_list_page_clamps_page_size(catalog, source, clock):
    result = _service(catalog, source, clock).list_page("deals", {}, page_size=10_000)
    assert result.page_size == 100
    assert len(result.records) == 100


def test_upstream_failure_is_not_an_empty_result(catalog, source, clock):
    service = _service(catalog, source, clock)
    source.broken = True
    result = service.list_page("deals", {})
    assert not result.ok
    assert result.records == []
    assert "OperationalError" in result.error

    count = service.get_count("deals", {})
    assert (count.ok, count.count) == (False, 0)


def test_true_empty_result_is_ok(catalog, source, clock):
    result = _service(catalog, source, clock).list_page("deals", {"search": "zzz"})
    assert result.ok
    assert result.records == []
    assert not result.has_more


def test_count(catalog, source, clock):
    count = _service(catalog, source, clock).get_count("deals", {"industry": "AI"})
    assert count.ok
    assert count.count == 40


def test_get_record(catalog, source, clock):
    service = _service(catalog, source, clock)
    assert service.get_record("deals", "7").record["name"] == "Deal 7"
    assert service.get_record("deals", "999").record is None


def test_malformed_record_id_is_not_found_without_touching_source(catalog, source, clock):
    service = _service(catalog, source, clock)
    source.broken = True
    result = service.get_record("deals", "abc")
    assert result.ok
    assert result.record is None


def test_coerce_record_id(deals):
    assert coerce_record_id(deals, " 7 ") == 7
    with pytest.raises(ValueError):
        coerce_record_id(deals, "abc")


def test_distinct_values(catalog, source, clock):
    result = _service(catalog, source, clock).distinct_values("deals", "industry")
    assert result.values == ["AI", "Biotech", "Fintech"]


def test_unknown_source(catalog, source, clock):
    service = _service(catalog, source, clock)
    with pytest.raises(UnknownSourceError):
        service.list_page("nope", {})
    with pytest.raises(UnknownSourceError):
        service.distinct_values("deals", "nope")


# ── Aggregation ─────────────────────────────────────────

def test_aggregation_cached_across_filter_order(catalog, source, clock):
    service = _service(catalog, source, clock)
    first = service.get_aggregation("deals", {"country": "us", "search": "deal"})
    second = service.get_aggregation("deals", {"search": "deal", "country": "us"})
    assert not first.cached
    assert second.cached
    assert second.result is first.result
    assert first.result.total_records == 60
    assert first.status == "ok"


def test_aggregation_recomputed_after_ttl(catalog, source, clock):
    service = _service(catalog, source, clock)
    first = service.get_aggregation("deals", {})
    clock.advance(601)
    again = service.get_aggregation("deals", {})
    assert not again.cached
    assert again.result is not first.result


def test_aggregation_empty_status(catalog, source, clock):
    response = _service(catalog, source, clock).get_aggregation("deals", {"search": "zzz"})
    assert response.status == "empty"
    assert response.to_dict()["totalRecords"] == 0


def test_aggregation_serves_stale_on_failure(catalog, source, clock):
    service = _service(catalog, source, clock)
    fresh = service.get_aggregation("deals", {}, ["industry"])
    clock.advance(601)
    source.broken = True
    response = service.get_aggregation("deals", {}, ["industry"])
    assert response.stale
    assert response.result is fresh.result
    assert response.to_dict()["stale"] is True


def test_aggregation_failure_without_stale_raises(catalog, source, clock):
    service = _service(catalog, source, clock, serve_stale_on_error=False)
    service.get_aggregation("deals", {})
    clock.advance(601)
    source.broken = True
    with pytest.raises(AggregationError):
        service.get_aggregation("deals", {})


def test_aggregation_failure_with_nothing_cached_raises(catalog, source, clock):
    service = _service(catalog, source, clock)
    source.broken = True
    with pytest.raises(AggregationError):
        service.get_aggregation("deals", {})


def test_unknown_dimension_rejected_before_scan(catalog, source, clock):
    service = _service(catalog, source, clock)
    with pytest.raises(UnknownSourceError):
        service.get_aggregation("deals", {}, ["bogus"])
    assert source.inner.query_log == []


def test_clear_cache_and_stats(catalog, source, clock):
    service = _service(catalog, source, clock)
    service.get_aggregation("deals", {})
    service.get_aggregation("deals", {})
    assert service.cache_stats()["hits"] == 1
    assert service.clear_cache() == 1
    assert not service.get_aggregation("deals", {}).cached
