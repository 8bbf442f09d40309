"""
Shared fixtures -- a small self-contained catalog, in-memory data and a
controllable clock, so unit tests never touch Postgres or real time.
"""
import pytest
import yaml

from src.catalog.loader import parse_catalog
from src.db.memory_source import InMemoryDataSource

DEALS_CATALOG = """
version: 1
sources:
  - name: deals
    table: deals
    primary_key: id
    order_by: [id]
    fields:
      - {name: id, type: integer}
      - {name: name, type: text}
      - {name: description, type: text}
      - {name: industry, type: text}
      - {name: country, type: text}
      - {name: amount, type: number}
      - {name: rank, type: text, text_formats: ["#{n}"]}
      - {name: closed, type: date}
      - {name: tags, type: text}
      - {name: hq, column: info, type: json, json_key: country}
    filters:
      - {key: search, kind: contains, fields: [name, description]}
      - {key: industry, kind: equals, fields: [industry]}
      - key: country
        kind: membership
        fields: [country]
        aliases: {us: United States, uk: United Kingdom}
      - {key: amount, kind: range, fields: [amount]}
      - {key: rank, kind: range, fields: [rank]}
      - {key: minAmount, kind: minimum, fields: [amount]}
      - {key: year, kind: year, fields: [closed]}
      - {key: hq, kind: equals, fields: [hq]}
    dimensions:
      - {name: industry, field: industry}
      - name: amountRanges
        field: amount
        kind: bucketed
        sort: bucket
        missing: skip
        buckets:
          - {label: "0-10", low: 0, high: 10}
          - {label: "10-50", low: 10, high: 50}
          - {label: "50+", low: 50}
      - {name: years, field: closed, kind: year, sort: name_asc, missing: skip}
      - {name: tags, field: tags, split: ",", missing: skip}
    rankings:
      - {name: topDeals, label_field: name, measure_field: amount, top_n: 2}
"""


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def raw_catalog():
    return yaml.safe_load(DEALS_CATALOG)


@pytest.fixture
def catalog(raw_catalog):
    return parse_catalog(raw_catalog)


@pytest.fixture
def deals(catalog):
    return catalog.source("deals")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def numbered_rows():
    """``numbered_rows(n)`` -> n deal rows with ids 1..n."""
    def _make(n: int) -> list[dict]:
        return [{"id": i, "name": f"Deal {i}", "industry": "Fintech", "amount": float(i)} for i in range(1, n + 1)]
    return _make


@pytest.fixture
def memory_source():
    """``memory_source(rows)`` -> InMemoryDataSource holding *rows* as the deals table."""
    def _make(rows: list[dict]) -> InMemoryDataSource:
        return InMemoryDataSource({"deals": rows})
    return _make
