"""
Data-source capability consumed by the query layer.

Two implementations:
  - ``SqlDataSource``      (src/db/sql_source.py)     Postgres / Supabase
  - ``InMemoryDataSource`` (src/db/memory_source.py)  tests and demo data

Both honour the same predicate semantics:
  - predicates are AND-combined; a multi-field predicate matches if any field does
  - ``contains`` is a case-insensitive substring match
  - a null / absent value never satisfies any predicate
Implementations raise ``DataSourceError`` on upstream failure.
"""
from __future__ import annotations

from typing import Any, Protocol, Sequence

from src.catalog.loader import SortKey, SourceDef
from src.filters.predicates import Predicate

Record = dict[str, Any]


class DataSource(Protocol):
    def query(
        self,
        source: SourceDef,
        predicates: Sequence[Predicate],
        order_by: Sequence[SortKey],
        limit: int,
        offset: int,
    ) -> list[Record]:
        ...

    def count(self, source: SourceDef, predicates: Sequence[Predicate]) -> int:
        ...

    def get(self, source: SourceDef, record_id: Any) -> Record | None:
        ...

    def distinct_values(self, source: SourceDef, field: str, limit: int = 500) -> list[str]:
        ...
