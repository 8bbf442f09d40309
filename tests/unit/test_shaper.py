"""
Unit tests -- result shaping (sort orders, top-N, rankings).
"""
from src.insights.shaper import Bucket, buckets_to_dicts, shape_counts, shape_ranking


def test_value_desc_ties_by_name():
    buckets = shape_counts({"b": 2, "a": 2, "c": 5})
    assert [b.name for b in buckets] == ["c", "a", "b"]


def test_name_asc():
    buckets = shape_counts({"2024": 1, "2019": 7, "2021": 3}, sort="name_asc")
    assert [b.name for b in buckets] == ["2019", "2021", "2024"]


def test_bucket_order_puts_undeclared_last():
    buckets = shape_counts(
        {"Unknown": 9, "50+": 1, "0-10": 3},
        sort="bucket",
        bucket_order=["0-10", "10-50", "50+"],
    )
    assert [b.name for b in buckets] == ["0-10", "50+", "Unknown"]


def test_top_n_truncates_after_sort():
    buckets = shape_counts({"a": 1, "b": 5, "c": 3, "d": 4}, top_n=2)
    assert buckets == [Bucket("b", 5), Bucket("d", 4)]


def test_empty_counts():
    assert shape_counts({}) == []


def test_ranking_ties_keep_scan_order():
    ranked = shape_ranking([("x", 1.0), ("y", 3.0), ("z", 3.0), ("w", 2.0)], top_n=3)
    assert [b.name for b in ranked] == ["y", "z", "w"]


def test_to_dicts():
    assert buckets_to_dicts([Bucket("Fintech", 2)]) == [{"name": "Fintech", "value": 2}]
