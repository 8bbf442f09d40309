"""
Postgres-backed data source.

Predicates are compiled to SQLAlchemy Core expressions over lightweight
``table()`` / ``column()`` constructs built from the catalog, so every
value travels as a bound parameter.  Statements are executed through
`execute_readonly` (READ ONLY transaction + statement timeout).

  equals       col = :v
  contains     col ILIKE '%v%'            (LIKE metacharacters escaped)
  membership   col IN (:v1, :v2 ...)
  range        col >= :low AND col <= :high  (or < for half-open)
  candidates   col IN (exact ...) OR col ILIKE pattern ...
  json field   company_info ->> 'hq_country'

Every predicate also requires the field to be NOT NULL.
"""
from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy import Text, and_, cast, column, false, func, or_, select, table
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import ColumnElement, Select
from sqlalchemy.sql.expression import TableClause

from src.catalog.loader import FieldDef, SortKey, SourceDef
from src.core.logging import get_logger
from src.db.executor import execute_readonly
from src.db.source import Record
from src.filters.predicates import Predicate, PredicateKind, is_like_pattern

logger = get_logger(__name__)


# ── Statement building ──────────────────────────────────


def escape_like(value: str) -> str:
    """Escape LIKE metacharacters in user input."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _table(source: SourceDef) -> TableClause:
    json_columns = {f.column for f in source.fields.values() if f.type == "json"}
    names = dict.fromkeys(f.column for f in source.fields.values())
    return table(
        source.table,
        *[column(name, JSONB) if name in json_columns else column(name) for name in names],
    )


def _field_expr(tbl: TableClause, fdef: FieldDef) -> ColumnElement:
    col = tbl.c[fdef.column]
    if fdef.json_key:
        return col[fdef.json_key].astext
    return col


def _field_clause(expr: ColumnElement, fdef: FieldDef, predicate: Predicate) -> ColumnElement:
    kind = predicate.kind
    if kind == PredicateKind.EQUALS:
        clause = expr == predicate.value
    elif kind == PredicateKind.CONTAINS:
        target = expr if fdef.type in ("text", "json") else cast(expr, Text)
        clause = target.ilike(f"%{escape_like(predicate.value)}%", escape="\\")
    elif kind == PredicateKind.MEMBERSHIP:
        clause = expr.in_(list(predicate.value)) if predicate.value else false()
    elif predicate.uses_candidates:
        exact = [c for c in predicate.candidates if not is_like_pattern(c)]
        patterns = [c for c in predicate.candidates if is_like_pattern(c)]
        parts = [expr.ilike(p) for p in patterns]
        if exact:
            parts.insert(0, expr.in_(exact))
        clause = or_(*parts)
    else:
        rng = predicate.value
        parts = []
        if rng.low is not None:
            parts.append(expr >= rng.low)
        if rng.high is not None:
            parts.append(expr <= rng.high if rng.high_inclusive else expr < rng.high)
        clause = and_(*parts) if parts else expr.isnot(None)
    return and_(expr.isnot(None), clause)


def where_clauses(tbl: TableClause, source: SourceDef, predicates: Sequence[Predicate]) -> list[ColumnElement]:
    clauses = []
    for p in predicates:
        per_field = []
        for name in p.fields:
            fdef = source.field(name)
            per_field.append(_field_clause(_field_expr(tbl, fdef), fdef, p))
        clauses.append(per_field[0] if len(per_field) == 1 else or_(*per_field))
    return clauses


def build_query(
    source: SourceDef,
    predicates: Sequence[Predicate],
    order_by: Sequence[SortKey],
    limit: int,
    offset: int,
) -> Select:
    tbl = _table(source)
    stmt = select(*[_field_expr(tbl, f).label(f.name) for f in source.fields.values()])
    stmt = stmt.select_from(tbl).where(*where_clauses(tbl, source, predicates))
    for key in order_by:
        expr = _field_expr(tbl, source.field(key.field))
        stmt = stmt.order_by(expr.desc().nullslast() if key.descending else expr.asc().nullslast())
    return stmt.limit(limit).offset(offset)


def build_count(source: SourceDef, predicates: Sequence[Predicate]) -> Select:
    tbl = _table(source)
    return select(func.count().label("n")).select_from(tbl).where(*where_clauses(tbl, source, predicates))


# ── DataSource implementation ───────────────────────────


class SqlDataSource:
    def __init__(self, timeout_ms: int | None = None):
        self._timeout_ms = timeout_ms

    def query(
        self,
        source: SourceDef,
        predicates: Sequence[Predicate],
        order_by: Sequence[SortKey],
        limit: int,
        offset: int,
    ) -> list[Record]:
        stmt = build_query(source, predicates, order_by, limit, offset)
        return execute_readonly(stmt, timeout_ms=self._timeout_ms)

    def count(self, source: SourceDef, predicates: Sequence[Predicate]) -> int:
        rows = execute_readonly(build_count(source, predicates), timeout_ms=self._timeout_ms)
        return int(rows[0]["n"]) if rows else 0

    def get(self, source: SourceDef, record_id: Any) -> Record | None:
        tbl = _table(source)
        pk = _field_expr(tbl, source.field(source.primary_key))
        stmt = (
            select(*[_field_expr(tbl, f).label(f.name) for f in source.fields.values()])
            .select_from(tbl)
            .where(pk == record_id)
            .limit(1)
        )
        rows = execute_readonly(stmt, timeout_ms=self._timeout_ms)
        return rows[0] if rows else None

    def distinct_values(self, source: SourceDef, field: str, limit: int = 500) -> list[str]:
        tbl = _table(source)
        expr = _field_expr(tbl, source.field(field))
        stmt = (
            select(expr.label("value"))
            .select_from(tbl)
            .where(expr.isnot(None))
            .distinct()
            .order_by(expr)
            .limit(limit)
        )
        rows = execute_readonly(stmt, timeout_ms=self._timeout_ms)
        return [str(r["value"]) for r in rows if str(r["value"]).strip()]
