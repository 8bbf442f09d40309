"""
Unit tests -- full-scan aggregation: bucketing, batching, row cap,
failure and deadline handling.
"""
import datetime

import pytest

from src.core.errors import AggregationError, AggregationTimeout, DataSourceError, UnknownSourceError
from src.db.memory_source import InMemoryDataSource
from src.filters.predicates import Predicate, PredicateKind
from src.insights.aggregator import FullScanAggregator, bucket_label, dimension_keys
from src.insights.shaper import Bucket


class FlakySource:
    """Delegates to an in-memory source, failing from the *fail_on*-th query."""

    def __init__(self, inner: InMemoryDataSource, fail_on: int):
        self.inner = inner
        self.fail_on = fail_on
        self.calls = 0

    def query(self, source, predicates, order_by, limit, offset):
        self.calls += 1
        if self.calls >= self.fail_on:
            raise DataSourceError("connection reset")
        return self.inner.query(source, predicates, order_by, limit, offset)


class SlowSource:
    """Advances a fake clock on every query."""

    def __init__(self, inner: InMemoryDataSource, clock, step: float):
        self.inner = inner
        self.clock = clock
        self.step = step

    def query(self, source, predicates, order_by, limit, offset):
        self.clock.advance(self.step)
        return self.inner.query(source, predicates, order_by, limit, offset)


# ── Grouping ────────────────────────────────────────────

def test_categorical_with_unknown_label(deals, memory_source):
    rows = [
        {"id": 1, "industry": "Fintech"},
        {"id": 2, "industry": "Fintech"},
        {"id": 3, "industry": "Biotech"},
        {"id": 4, "industry": None},
    ]
    result = FullScanAggregator(memory_source(rows)).aggregate(deals, [], ["industry"])
    assert result.dimensions["industry"] == [
        Bucket("Fintech", 2), Bucket("Biotech", 1), Bucket("Unknown", 1),
    ]
    assert result.total_records == 4
    assert not result.truncated


def test_numeric_buckets_are_half_open(deals, memory_source):
    rows = [{"id": i, "amount": a} for i, a in enumerate([5, 10, 49, 50, 1000], start=1)]
    result = FullScanAggregator(memory_source(rows)).aggregate(deals, [], ["amountRanges"])
    assert result.dimensions["amountRanges"] == [
        Bucket("0-10", 1), Bucket("10-50", 2), Bucket("50+", 2),
    ]


def test_label_policy_counts_every_record_once(deals, memory_source):
    rows = [{"id": i, "industry": ["A", "B", None, "  ", "C"][i % 5]} for i in range(1, 38)]
    result = FullScanAggregator(memory_source(rows)).aggregate(deals, [], ["industry"])
    assert sum(b.value for b in result.dimensions["industry"]) == result.total_records == 37


def test_skip_policy_drops_unbucketable(deals, memory_source):
    rows = [{"id": 1, "amount": "n/a"}, {"id": 2, "amount": None}, {"id": 3, "amount": "$12"}]
    result = FullScanAggregator(memory_source(rows)).aggregate(deals, [], ["amountRanges"])
    assert result.dimensions["amountRanges"] == [Bucket("10-50", 1)]


def test_year_dimension(deals, memory_source):
    rows = [
        {"id": 1, "closed": datetime.date(2023, 5, 1)},
        {"id": 2, "closed": "2021-02-03"},
        {"id": 3, "closed": datetime.date(2023, 12, 31)},
        {"id": 4, "closed": None},
    ]
    result = FullScanAggregator(memory_source(rows)).aggregate(deals, [], ["years"])
    assert result.dimensions["years"] == [Bucket("2021", 1), Bucket("2023", 2)]


def test_split_dimension_counts_tags(deals, memory_source):
    rows = [{"id": 1, "tags": "AI, Fintech"}, {"id": 2, "tags": "AI"}, {"id": 3, "tags": "AI,AI"}]
    result = FullScanAggregator(memory_source(rows)).aggregate(deals, [], ["tags"])
    assert result.dimensions["tags"] == [Bucket("AI", 3), Bucket("Fintech", 1)]


def test_ranking(deals, memory_source):
    rows = [
        {"id": 1, "name": "A", "amount": 5},
        {"id": 2, "name": "B", "amount": 500},
        {"id": 3, "name": "C", "amount": None},
        {"id": 4, "name": "D", "amount": 50},
    ]
    result = FullScanAggregator(memory_source(rows)).aggregate(deals, [], ["topDeals"])
    assert result.rankings["topDeals"] == [Bucket("B", 500), Bucket("D", 50)]
    assert result.dimensions == {}


def test_all_outputs_by_default(deals, memory_source):
    result = FullScanAggregator(memory_source([])).aggregate(deals, [])
    assert set(result.dimensions) == {"industry", "amountRanges", "years", "tags"}
    assert set(result.rankings) == {"topDeals"}
    assert result.is_empty
    assert result.to_dict()["totalRecords"] == 0


def test_predicates_applied(deals, memory_source):
    rows = [{"id": 1, "industry": "Fintech"}, {"id": 2, "industry": "Biotech"}]
    pred = Predicate(("industry",), PredicateKind.EQUALS, "Biotech")
    result = FullScanAggregator(memory_source(rows)).aggregate(deals, [pred], ["industry"])
    assert result.dimensions["industry"] == [Bucket("Biotech", 1)]


def test_unknown_dimension_rejected(deals, memory_source):
    with pytest.raises(UnknownSourceError):
        FullScanAggregator(memory_source([])).aggregate(deals, [], ["nope"])


def test_bucket_helpers(deals):
    dim = deals.dimensions["amountRanges"]
    assert bucket_label(dim, "9.99") == "0-10"
    assert bucket_label(dim, -1) is None
    assert dimension_keys(dim, None) == []


# ── Batching / cap ──────────────────────────────────────

def test_scans_in_batches(deals, numbered_rows, memory_source):
    source = memory_source(numbered_rows(2500))
    result = FullScanAggregator(source, batch_size=1000).aggregate(deals, [], ["industry"])
    assert result.total_records == 2500
    assert not result.truncated
    assert source.query_log == [("deals", 1000, 0), ("deals", 1000, 1000), ("deals", 1000, 2000)]


def test_exact_multiple_of_batch_size(deals, numbered_rows, memory_source):
    source = memory_source(numbered_rows(2000))
    result = FullScanAggregator(source, batch_size=1000).aggregate(deals, [], ["industry"])
    assert result.total_records == 2000
    assert not result.truncated
    assert len(source.query_log) == 3


def test_row_cap_sets_truncated(deals, numbered_rows, memory_source):
    source = memory_source(numbered_rows(2500))
    result = FullScanAggregator(source, batch_size=1000, row_cap=1500).aggregate(deals, [], ["industry"])
    assert result.total_records == 1500
    assert result.truncated
    assert source.query_log == [("deals", 1000, 0), ("deals", 500, 1000), ("deals", 1, 1500)]


def test_row_cap_equal_to_size_not_truncated(deals, numbered_rows, memory_source):
    source = memory_source(numbered_rows(1500))
    result = FullScanAggregator(source, batch_size=1000, row_cap=1500).aggregate(deals, [], ["industry"])
    assert result.total_records == 1500
    assert not result.truncated


def test_every_record_visited_once(deals, numbered_rows, memory_source):
    source = memory_source(numbered_rows(2345))
    scan = FullScanAggregator(source, batch_size=100).scan(deals, [])
    assert [r["id"] for r in scan.records] == list(range(1, 2346))


def test_invalid_batch_size():
    with pytest.raises(ValueError):
        FullScanAggregator(InMemoryDataSource(), batch_size=0)


# ── Failure / deadline ──────────────────────────────────

def test_failed_batch_raises(deals, numbered_rows, memory_source):
    source = FlakySource(memory_source(numbered_rows(2500)), fail_on=2)
    with pytest.raises(AggregationError) as exc_info:
        FullScanAggregator(source, batch_size=1000).aggregate(deals, [])
    assert exc_info.value.rows_scanned == 1000
    assert isinstance(exc_info.value.__cause__, DataSourceError)


def test_deadline_aborts_scan(deals, numbered_rows, memory_source, clock):
    source = SlowSource(memory_source(numbered_rows(2500)), clock, step=20)
    aggregator = FullScanAggregator(source, batch_size=1000, deadline_seconds=30, clock=clock)
    with pytest.raises(AggregationTimeout) as exc_info:
        aggregator.aggregate(deals, [])
    assert exc_info.value.rows_scanned == 2000


def test_no_deadline(deals, numbered_rows, memory_source, clock):
    source = SlowSource(memory_source(numbered_rows(2500)), clock, step=1000)
    aggregator = FullScanAggregator(source, batch_size=1000, deadline_seconds=None, clock=clock)
    assert aggregator.aggregate(deals, []).total_records == 2500
