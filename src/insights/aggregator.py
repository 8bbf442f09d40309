"""
Full-scan aggregation.

Chart endpoints need a distribution over the *whole* filtered set, not one
page.  The store caps page size, so the scan walks the set in fixed-size
batches at increasing offsets until a short page comes back, or until the
single configurable row cap is reached (the result is then flagged
``truncated``).  A failed batch aborts the scan with ``AggregationError``;
a partial scan is never reported as complete.

Per record and per dimension:
  - categorical  the trimmed value; optional ``split`` explodes comma-joined
                 tags (``all``) or keeps only the first entry (``first``)
  - bucketed     ``parse_number(value) * scale`` placed in the unique
                 half-open bucket ``[low, high)``
  - year         four-digit year of a date value

Values that are null, unparseable, or outside every bucket are "missing":
counted under ``missing_label`` (default "Unknown") or skipped, per dimension.
With the label policy each record lands in exactly one bucket (split
dimensions count tag occurrences instead).
"""
from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from src.catalog.loader import DimensionDef, RankingDef, SourceDef
from src.core.errors import AggregationError, AggregationTimeout, DataSourceError, UnknownSourceError
from src.core.logging import get_logger
from src.core.utils import Deadline, timer
from src.db.source import DataSource, Record
from src.filters.normalizer import parse_date, parse_number
from src.filters.predicates import Predicate
from src.insights.shaper import Bucket, buckets_to_dicts, shape_counts, shape_ranking

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 1000
DEFAULT_ROW_CAP = 100_000


# ── Results ─────────────────────────────────────────────


@dataclass
class ScanResult:
    records: list[Record] = field(default_factory=list)
    truncated: bool = False


@dataclass
class AggregationResult:
    """Chart-ready buckets for one source and filter set."""
    source: str
    dimensions: dict[str, list[Bucket]] = field(default_factory=dict)
    rankings: dict[str, list[Bucket]] = field(default_factory=dict)
    total_records: int = 0
    truncated: bool = False
    computed_at: float = field(default_factory=time.time)

    @property
    def is_empty(self) -> bool:
        return self.total_records == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "dimensions": {k: buckets_to_dicts(v) for k, v in self.dimensions.items()},
            "rankings": {k: buckets_to_dicts(v) for k, v in self.rankings.items()},
            "totalRecords": self.total_records,
            "truncated": self.truncated,
        }


# ── Bucketing ───────────────────────────────────────────


def _scaled(number: float, scale: float) -> float:
    # Rounding keeps boundary values (5_000_000 * 1e-6) on the boundary
    return round(number * scale, 9)


def bucket_label(dim: DimensionDef, value: Any) -> str | None:
    """Label of the single bucket *value* falls into, or ``None``."""
    number = parse_number(value)
    if number is None:
        return None
    scaled = _scaled(number, dim.scale)
    for bucket in dim.buckets:
        if bucket.contains(scaled):
            return bucket.label
    return None


def dimension_keys(dim: DimensionDef, value: Any) -> list[str]:
    """Bucket names one record contributes to for *dim* (empty = missing)."""
    if value is None:
        return []
    if dim.kind == "bucketed":
        label = bucket_label(dim, value)
        return [label] if label is not None else []
    if dim.kind == "year":
        d = parse_date(value)
        return [f"{d.year:04d}"] if d is not None else []

    text = str(value).strip()
    if not text:
        return []
    if dim.split:
        parts = [p.strip() for p in text.split(dim.split) if p.strip()]
        if dim.split_mode == "first":
            parts = parts[:1]
        return list(dict.fromkeys(parts))
    return [text]


def count_dimension(dim: DimensionDef, records: Sequence[Record]) -> Counter:
    counts: Counter = Counter()
    for record in records:
        keys = dimension_keys(dim, record.get(dim.field))
        if keys:
            counts.update(keys)
        elif dim.missing == "label":
            counts[dim.missing_label] += 1
    return counts


def rank_records(ranking: RankingDef, records: Sequence[Record]) -> list[Bucket]:
    pairs = []
    for record in records:
        measure = parse_number(record.get(ranking.measure_field))
        if measure is None:
            continue
        label = record.get(ranking.label_field) or "Unknown"
        pairs.append((str(label), _scaled(measure, ranking.scale)))
    return shape_ranking(pairs, ranking.top_n)


# ── Aggregator ──────────────────────────────────────────


class FullScanAggregator:
    """Batch-scans a filtered source and groups it into chart buckets.

    Parameters
    ----------
    data_source : DataSource
        Where batches are read from.
    batch_size : int
        Rows per batch; must not exceed the store's page cap.
    row_cap : int
        Hard ceiling on rows visited per aggregation.
    deadline_seconds : float | None
        Overall time budget; checked before every batch.
    clock : callable
        Monotonic clock (seam for tests).
    """

    def __init__(
        self,
        data_source: DataSource,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        row_cap: int = DEFAULT_ROW_CAP,
        deadline_seconds: float | None = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if batch_size < 1 or row_cap < 1:
            raise ValueError("batch_size and row_cap must be positive")
        self._ds = data_source
        self._batch_size = batch_size
        self._row_cap = row_cap
        self._deadline_seconds = deadline_seconds
        self._clock = clock

    def scan(self, source: SourceDef, predicates: Sequence[Predicate]) -> ScanResult:
        """Visit every matching record once, in stable order."""
        deadline = Deadline(self._deadline_seconds, self._clock)
        order = source.stable_order()
        records: list[Record] = []
        offset = 0

        while True:
            if deadline.expired:
                raise AggregationTimeout(
                    f"Scan of {source.name} exceeded {self._deadline_seconds}s deadline",
                    rows_scanned=len(records),
                )
            want = min(self._batch_size, self._row_cap - len(records))
            try:
                batch = self._ds.query(source, predicates, order, want, offset)
            except DataSourceError as exc:
                logger.error("Scan of %s failed at offset %d after %d rows",
                             source.name, offset, len(records))
                raise AggregationError(
                    f"Batch at offset {offset} of {source.name} failed: {exc}",
                    rows_scanned=len(records),
                ) from exc

            records.extend(batch)
            offset += len(batch)
            if len(batch) < want:
                return ScanResult(records=records)

            if len(records) >= self._row_cap:
                try:
                    more = self._ds.query(source, predicates, order, 1, offset)
                except DataSourceError as exc:
                    raise AggregationError(
                        f"Row-cap probe on {source.name} failed: {exc}",
                        rows_scanned=len(records),
                    ) from exc
                if more:
                    logger.warning("Scan of %s stopped at row cap %d", source.name, self._row_cap)
                return ScanResult(records=records, truncated=bool(more))

    def aggregate(
        self,
        source: SourceDef,
        predicates: Sequence[Predicate],
        dimensions: Sequence[str] | None = None,
    ) -> AggregationResult:
        """Scan and group.

        *dimensions* may name declared dimensions and/or rankings; ``None``
        selects all of them.
        """
        dims, rankings = select_outputs(source, dimensions)

        with timer() as t:
            scan = self.scan(source, predicates)
            result = AggregationResult(
                source=source.name,
                total_records=len(scan.records),
                truncated=scan.truncated,
            )
            for dim in dims:
                counts = count_dimension(dim, scan.records)
                result.dimensions[dim.name] = shape_counts(
                    counts,
                    sort=dim.sort,
                    top_n=dim.top_n,
                    bucket_order=[b.label for b in dim.buckets],
                )
            for ranking in rankings:
                result.rankings[ranking.name] = rank_records(ranking, scan.records)

        logger.info("Aggregated %s | records=%d | dims=%d | truncated=%s | %dms",
                    source.name, result.total_records, len(dims), result.truncated,
                    t["elapsed_ms"])
        return result


def select_outputs(
    source: SourceDef,
    names: Sequence[str] | None,
) -> tuple[list[DimensionDef], list[RankingDef]]:
    """Resolve requested output names against the source's declarations."""
    if not names:
        return list(source.dimensions.values()), list(source.rankings.values())
    dims: list[DimensionDef] = []
    rankings: list[RankingDef] = []
    for name in dict.fromkeys(names):
        if name in source.dimensions:
            dims.append(source.dimensions[name])
        elif name in source.rankings:
            rankings.append(source.rankings[name])
        else:
            raise UnknownSourceError(
                f"{source.name}.{name}",
                list(source.dimensions) + list(source.rankings),
            )
    return dims, rankings
