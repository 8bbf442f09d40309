"""
In-memory data source.

Evaluates predicates over plain Python rows with the same semantics as
``SqlDataSource``.  Used by the unit tests and by ``DATA_SOURCE=memory``,
which serves the seed generator's demo rows without a database.
"""
from __future__ import annotations

import datetime
import re
import threading
from typing import Any, Iterable, Sequence

from src.catalog.loader import FieldDef, SortKey, SourceDef
from src.core.logging import get_logger
from src.db.source import Record
from src.filters.normalizer import parse_date, parse_number
from src.filters.predicates import Predicate, PredicateKind, Range, is_like_pattern

logger = get_logger(__name__)


def like_to_regex(pattern: str) -> re.Pattern:
    """Translate a SQL LIKE pattern (``%`` / ``_``) to a case-insensitive regex."""
    parts = []
    for ch in pattern:
        if ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE | re.DOTALL)


def _in_range(value: Any, rng: Range) -> bool:
    bound = rng.low if rng.low is not None else rng.high
    if isinstance(bound, datetime.date):
        x = parse_date(value)
    else:
        x = parse_number(value)
    if x is None:
        return False
    if rng.low is not None and x < rng.low:
        return False
    if rng.high is not None:
        if rng.high_inclusive and x > rng.high:
            return False
        if not rng.high_inclusive and x >= rng.high:
            return False
    return True


def _matches_candidates(value: Any, candidates: tuple[str, ...]) -> bool:
    text = str(value)
    for c in candidates:
        if is_like_pattern(c):
            if like_to_regex(c).match(text):
                return True
        elif text == c:
            return True
    return False


def _matches_one(value: Any, predicate: Predicate) -> bool:
    if value is None:
        return False
    kind = predicate.kind
    if kind == PredicateKind.EQUALS:
        return str(value) == predicate.value
    if kind == PredicateKind.CONTAINS:
        return predicate.value.lower() in str(value).lower()
    if kind == PredicateKind.MEMBERSHIP:
        return str(value) in predicate.value
    if predicate.uses_candidates:
        return _matches_candidates(value, predicate.candidates)
    return _in_range(value, predicate.value)


class InMemoryDataSource:
    """Rows held per table name, keyed by physical column name."""

    def __init__(self, tables: dict[str, list[dict[str, Any]]] | None = None):
        self._tables: dict[str, list[dict[str, Any]]] = tables or {}
        self._lock = threading.Lock()
        self.query_log: list[tuple[str, int, int]] = []

    def load(self, table: str, rows: Iterable[dict[str, Any]]) -> None:
        self._tables[table] = list(rows)

    # ── Row helpers ─────────────────────────────────────

    @staticmethod
    def _extract(row: dict[str, Any], fdef: FieldDef) -> Any:
        value = row.get(fdef.column)
        if fdef.json_key:
            return value.get(fdef.json_key) if isinstance(value, dict) else None
        return value

    def _record(self, source: SourceDef, row: dict[str, Any]) -> Record:
        return {name: self._extract(row, f) for name, f in source.fields.items()}

    def _filtered(self, source: SourceDef, predicates: Sequence[Predicate]) -> list[Record]:
        records = [self._record(source, row) for row in self._tables.get(source.table, [])]
        return [
            r for r in records
            if all(any(_matches_one(r.get(f), p) for f in p.fields) for p in predicates)
        ]

    @staticmethod
    def _sorted(records: list[Record], order_by: Sequence[SortKey]) -> list[Record]:
        # Apply keys last-to-first; Python's sort is stable. Nulls always last.
        for key in reversed(order_by):
            present = [r for r in records if r.get(key.field) is not None]
            nulls = [r for r in records if r.get(key.field) is None]
            present.sort(key=lambda r: r[key.field], reverse=key.descending)
            records = present + nulls
        return records

    # ── DataSource API ──────────────────────────────────

    def query(
        self,
        source: SourceDef,
        predicates: Sequence[Predicate],
        order_by: Sequence[SortKey],
        limit: int,
        offset: int,
    ) -> list[Record]:
        with self._lock:
            self.query_log.append((source.name, limit, offset))
        rows = self._sorted(self._filtered(source, predicates), order_by)
        return rows[offset:offset + limit]

    def count(self, source: SourceDef, predicates: Sequence[Predicate]) -> int:
        return len(self._filtered(source, predicates))

    def get(self, source: SourceDef, record_id: Any) -> Record | None:
        for row in self._tables.get(source.table, []):
            if str(row.get(source.field(source.primary_key).column)) == str(record_id):
                return self._record(source, row)
        return None

    def distinct_values(self, source: SourceDef, field: str, limit: int = 500) -> list[str]:
        fdef = source.field(field)
        values = {
            str(v) for v in (self._extract(row, fdef) for row in self._tables.get(source.table, []))
            if v is not None and str(v).strip()
        }
        return sorted(values)[:limit]
