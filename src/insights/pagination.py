"""
Paginated fetch -- one bounded, deterministically ordered page of records.

Ordering is the source's declared ``order_by`` with the primary key
appended as final tie-breaker, so the same request always returns the same
rows.  ``limit`` is clamped to ``max_page_size``; anything bigger belongs to
the full-scan aggregator.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from src.catalog.loader import SourceDef
from src.core.logging import get_logger
from src.db.source import DataSource, Record
from src.filters.predicates import Predicate

logger = get_logger(__name__)


@dataclass
class Page:
    records: list[Record] = field(default_factory=list)
    limit: int = 0
    offset: int = 0

    @property
    def has_more(self) -> bool:
        """A full page suggests (but does not guarantee) more rows follow."""
        return self.limit > 0 and len(self.records) == self.limit


def clamp_limit(limit: int | None, max_page_size: int, default: int = 50) -> int:
    if limit is None:
        limit = default
    if limit > max_page_size:
        logger.warning("Requested limit %d clamped to %d", limit, max_page_size)
        return max_page_size
    return max(1, limit)


def fetch_page(
    data_source: DataSource,
    source: SourceDef,
    predicates: Sequence[Predicate],
    limit: int | None,
    offset: int | None,
    *,
    max_page_size: int,
    default_limit: int = 50,
) -> Page:
    """Fetch one page; raises ``DataSourceError`` on upstream failure."""
    limit = clamp_limit(limit, max_page_size, default_limit)
    offset = max(0, offset or 0)
    records = data_source.query(source, predicates, source.stable_order(), limit, offset)
    return Page(records=records[:limit], limit=limit, offset=offset)
