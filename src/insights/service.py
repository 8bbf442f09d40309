"""
Insights service -- the operations the HTTP layer calls.

  list_page       normalise -> translate -> paginated fetch
  get_count       normalise -> translate -> count
  get_record      primary-key lookup
  distinct_values dropdown values for one field
  get_aggregation normalise -> cache -> translate -> full scan -> shape -> cache

Upstream failures on list/count/detail/values degrade to an empty payload
with ``ok=False`` and an error message, so "no matching rows" and "the
database failed" stay distinguishable.  Aggregation failures raise
``AggregationError``, unless a stale cached result exists and
``serve_stale_on_error`` is set, in which case that result is returned
flagged ``stale``.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Mapping, Sequence

from src.catalog.loader import Catalog, SourceDef, load_catalog
from src.core.config import Settings, get_settings
from src.core.errors import AggregationError, DataSourceError
from src.core.logging import get_logger
from src.core.utils import timer
from src.db.source import DataSource, Record
from src.filters.normalizer import FilterSpec, normalize_filters
from src.filters.predicates import Predicate
from src.filters.translator import translate
from src.insights.aggregator import AggregationResult, FullScanAggregator, select_outputs
from src.insights.cache import AggregationCache, make_key
from src.insights.pagination import clamp_limit, fetch_page

logger = get_logger(__name__)


# ── Result types ────────────────────────────────────────


@dataclass
class PageResult:
    records: list[Record] = field(default_factory=list)
    page: int = 1
    page_size: int = 0
    offset: int = 0
    has_more: bool = False
    ok: bool = True
    error: str | None = None


@dataclass
class CountResult:
    count: int = 0
    ok: bool = True
    error: str | None = None


@dataclass
class RecordResult:
    record: Record | None = None
    ok: bool = True
    error: str | None = None


@dataclass
class ValuesResult:
    values: list[str] = field(default_factory=list)
    ok: bool = True
    error: str | None = None


@dataclass
class AggregationResponse:
    result: AggregationResult
    cached: bool = False
    stale: bool = False

    @property
    def status(self) -> str:
        return "empty" if self.result.is_empty else "ok"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "cached": self.cached,
            "stale": self.stale,
            **self.result.to_dict(),
        }


# ── Record ids ──────────────────────────────────────────


def coerce_record_id(source: SourceDef, record_id: Any) -> Any:
    """Convert a path id to the primary key's type; raises ``ValueError`` if it cannot be."""
    if source.field(source.primary_key).type == "integer":
        return int(str(record_id).strip())
    return record_id


# ── Service ─────────────────────────────────────────────


class InsightsService:
    """Filtered list, count, and aggregation reads over catalog sources.

    Constructed once at process start; the cache instance is shared by
    every request handled by this service.
    """

    def __init__(
        self,
        catalog: Catalog,
        data_source: DataSource,
        cache: AggregationCache,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.catalog = catalog
        self._ds = data_source
        self._cache = cache
        self._settings = settings or get_settings()
        self._aggregator = FullScanAggregator(
            data_source,
            batch_size=self._settings.scan_batch_size,
            row_cap=self._settings.scan_row_cap,
            deadline_seconds=self._settings.scan_deadline_seconds,
            clock=clock,
        )

    # ── Helpers ─────────────────────────────────────────

    def _prepare(
        self, source_name: str, raw_filters: Mapping[str, Any] | None,
    ) -> tuple[SourceDef, FilterSpec, list[Predicate]]:
        source = self.catalog.source(source_name)
        spec = normalize_filters(raw_filters, source)
        predicates = translate(spec, source, pattern_cap=self._settings.pattern_cap)
        return source, spec, predicates

    # ── Exposed operations ──────────────────────────────

    def list_page(
        self,
        source_name: str,
        raw_filters: Mapping[str, Any] | None = None,
        page: int = 1,
        page_size: int | None = None,
        offset: int | None = None,
    ) -> PageResult:
        """One page of filtered records.

        ``offset`` (if given) overrides the offset derived from ``page``.
        """
        source, spec, predicates = self._prepare(source_name, raw_filters)
        size = clamp_limit(page_size, self._settings.max_page_size, self._settings.default_page_size)
        page = max(1, page or 1)
        start = offset if offset is not None else (page - 1) * size

        try:
            with timer() as t:
                result = fetch_page(
                    self._ds, source, predicates, size, start,
                    max_page_size=self._settings.max_page_size,
                )
        except DataSourceError as exc:
            logger.error("list_page(%s) upstream failure: %s", source_name, exc)
            return PageResult(page=page, page_size=size, offset=max(0, start), ok=False, error=str(exc))

        logger.info("list_page %s | filters=%s | offset=%d | rows=%d | %dms",
                    source_name, spec.as_dict(), result.offset, len(result.records), t["elapsed_ms"])
        return PageResult(
            records=result.records,
            page=result.offset // size + 1,
            page_size=size,
            offset=result.offset,
            has_more=result.has_more,
        )

    def get_count(self, source_name: str, raw_filters: Mapping[str, Any] | None = None) -> CountResult:
        source, _, predicates = self._prepare(source_name, raw_filters)
        try:
            return CountResult(count=self._ds.count(source, predicates))
        except DataSourceError as exc:
            logger.error("get_count(%s) upstream failure: %s", source_name, exc)
            return CountResult(ok=False, error=str(exc))

    def get_record(self, source_name: str, record_id: Any) -> RecordResult:
        source = self.catalog.source(source_name)
        try:
            key = coerce_record_id(source, record_id)
        except ValueError:
            logger.warning("get_record(%s): malformed id %r", source_name, record_id)
            return RecordResult()
        try:
            return RecordResult(record=self._ds.get(source, key))
        except DataSourceError as exc:
            logger.error("get_record(%s, %r) upstream failure: %s", source_name, record_id, exc)
            return RecordResult(ok=False, error=str(exc))

    def distinct_values(self, source_name: str, field_name: str, limit: int = 500) -> ValuesResult:
        source = self.catalog.source(source_name)
        source.field(field_name)
        try:
            return ValuesResult(values=self._ds.distinct_values(source, field_name, limit))
        except DataSourceError as exc:
            logger.error("distinct_values(%s.%s) upstream failure: %s", source_name, field_name, exc)
            return ValuesResult(ok=False, error=str(exc))

    def get_aggregation(
        self,
        source_name: str,
        raw_filters: Mapping[str, Any] | None = None,
        dimensions: Sequence[str] | None = None,
    ) -> AggregationResponse:
        """Chart buckets for the whole filtered set, served from cache when fresh."""
        source, spec, predicates = self._prepare(source_name, raw_filters)
        select_outputs(source, dimensions)  # reject unknown names before any work
        key = make_key(f"aggregation:{source.name}", spec, dimensions)

        try:
            result, cached = self._cache.get_or_compute(
                key, lambda: self._aggregator.aggregate(source, predicates, dimensions),
            )
        except AggregationError as exc:
            if self._settings.serve_stale_on_error:
                stale = self._cache.get_stale(key)
                if stale is not None:
                    logger.warning("Serving stale aggregation for %s after failure: %s", source_name, exc)
                    return AggregationResponse(result=stale, cached=True, stale=True)
            logger.error("Aggregation of %s failed after %d rows: %s",
                         source_name, exc.rows_scanned, exc)
            raise

        if cached:
            logger.info("Cache HIT aggregation %s | filters=%s", source_name, spec.as_dict())
        return AggregationResponse(result=result, cached=cached)

    def clear_cache(self) -> int:
        return self._cache.clear()

    def cache_stats(self) -> dict[str, Any]:
        return self._cache.stats()


# ── Process-wide instance ───────────────────────────────


def build_data_source(settings: Settings) -> DataSource:
    if settings.data_source == "memory":
        from pipelines.seed.seed_data import build_memory_source

        logger.info("Using in-memory demo data source")
        return build_memory_source()
    from src.db.sql_source import SqlDataSource

    return SqlDataSource(timeout_ms=settings.query_timeout_ms)


@lru_cache
def get_service() -> InsightsService:
    """Return the process-wide service (built on first use)."""
    settings = get_settings()
    return InsightsService(
        catalog=load_catalog(),
        data_source=build_data_source(settings),
        cache=AggregationCache(ttl=settings.cache_ttl_seconds, max_size=settings.cache_max_size),
        settings=settings,
    )
