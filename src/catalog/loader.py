"""
Loads, validates, and caches the source catalog YAML into strongly-typed objects.

The catalog is the single source of truth for:
  - which tables can be read     (table, primary key, default ordering)
  - field descriptors            (column, storage type, JSON key, text formats)
  - filter declarations          (query key -> fields + match kind)
  - chart dimensions             (categorical / bucketed / year, top-N, sort)
  - rankings                     (top-N records by a numeric measure)

Call sites never assume a record's shape; they ask the catalog.
"""
from __future__ import annotations

import string
from dataclasses import dataclass, field
from pathlib import Path
from functools import lru_cache
from typing import Any

import yaml

from src.core.config import get_settings
from src.core.errors import CatalogError, UnknownSourceError

FIELD_TYPES = {"text", "integer", "number", "date", "json"}
FILTER_KINDS = {"equals", "contains", "membership", "range", "minimum", "year"}
DIMENSION_KINDS = {"categorical", "bucketed", "year"}
SORT_ORDERS = {"value_desc", "name_asc", "bucket"}


# ── Typed domain objects ─────────────────────────────────

@dataclass(frozen=True)
class FieldDef:
    name: str
    column: str
    type: str = "text"
    json_key: str | None = None
    text_formats: tuple[str, ...] = ()


@dataclass(frozen=True)
class FilterDef:
    key: str
    kind: str
    fields: tuple[str, ...]
    scale: float = 1.0
    aliases: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class BucketDef:
    label: str
    low: float | None = None
    high: float | None = None

    def contains(self, value: float) -> bool:
        """Half-open membership test: ``low <= value < high``."""
        if self.low is not None and value < self.low:
            return False
        if self.high is not None and value >= self.high:
            return False
        return True


@dataclass(frozen=True)
class DimensionDef:
    name: str
    field: str
    kind: str = "categorical"
    buckets: tuple[BucketDef, ...] = ()
    scale: float = 1.0
    split: str | None = None
    split_mode: str = "all"  # all | first
    missing: str = "label"   # label | skip
    missing_label: str = "Unknown"
    sort: str = "value_desc"
    top_n: int | None = None


@dataclass(frozen=True)
class RankingDef:
    name: str
    label_field: str
    measure_field: str
    top_n: int = 20
    scale: float = 1.0


@dataclass(frozen=True)
class SortKey:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class SourceDef:
    name: str
    table: str
    primary_key: str
    order_by: tuple[SortKey, ...]
    fields: dict[str, FieldDef]
    filters: dict[str, FilterDef]
    dimensions: dict[str, DimensionDef]
    rankings: dict[str, RankingDef]

    def field(self, name: str) -> FieldDef:
        try:
            return self.fields[name]
        except KeyError:
            raise UnknownSourceError(f"{self.name}.{name}", list(self.fields)) from None

    def filter(self, key: str) -> FilterDef | None:
        return self.filters.get(key)

    def stable_order(self) -> tuple[SortKey, ...]:
        """Declared ordering with the primary key appended as final tie-breaker."""
        keys = list(self.order_by)
        if not any(k.field == self.primary_key for k in keys):
            keys.append(SortKey(self.primary_key))
        return tuple(keys)


@dataclass
class Catalog:
    """Fully parsed source catalog."""

    version: int
    sources: dict[str, SourceDef]

    def source(self, name: str) -> SourceDef:
        src = self.sources.get(name)
        if src is None:
            raise UnknownSourceError(name, self.source_names())
        return src

    def source_names(self) -> list[str]:
        return list(self.sources.keys())

    def describe(self, name: str) -> dict[str, Any]:
        """Return one source's metadata as a dict (for API responses)."""
        src = self.source(name)
        return {
            "name": src.name,
            "fields": [{"name": f.name, "type": f.type} for f in src.fields.values()],
            "filters": [{"key": f.key, "kind": f.kind} for f in src.filters.values()],
            "dimensions": [
                {"name": d.name, "kind": d.kind, "top_n": d.top_n}
                for d in src.dimensions.values()
            ],
            "rankings": list(src.rankings.keys()),
        }


# ── Parsing ──────────────────────────────────────────────

def _opt_float(raw: Any) -> float | None:
    return None if raw is None else float(raw)


def _check_text_format(field_name: str, template: str) -> None:
    """A text format renders exactly one ``{n}`` field, plain or comma-grouped."""
    fields = [(name, spec) for _, name, spec, _ in string.Formatter().parse(template) if name is not None]
    if fields not in ([("n", "")], [("n", ",")]):
        raise CatalogError(
            f"Field '{field_name}': text format {template!r} must contain exactly one {{n}} or {{n:,}}"
        )


def _parse_field(raw: dict[str, Any]) -> FieldDef:
    ftype = raw.get("type", "text")
    if ftype not in FIELD_TYPES:
        raise CatalogError(f"Field '{raw['name']}' has unknown type '{ftype}'")
    formats = tuple(raw.get("text_formats") or ())
    if formats and ftype != "text":
        raise CatalogError(f"Field '{raw['name']}': text_formats only apply to text fields")
    for template in formats:
        _check_text_format(raw["name"], template)
    if ftype == "json" and not raw.get("json_key"):
        raise CatalogError(f"Field '{raw['name']}': json fields need a json_key")
    return FieldDef(
        name=raw["name"],
        column=raw.get("column", raw["name"]),
        type=ftype,
        json_key=raw.get("json_key"),
        text_formats=formats,
    )


def _parse_filter(raw: dict[str, Any]) -> FilterDef:
    kind = raw.get("kind", "equals")
    if kind not in FILTER_KINDS:
        raise CatalogError(f"Filter '{raw['key']}' has unknown kind '{kind}'")
    fields = tuple(raw.get("fields") or ())
    if not fields:
        raise CatalogError(f"Filter '{raw['key']}' declares no fields")
    return FilterDef(
        key=raw["key"],
        kind=kind,
        fields=fields,
        scale=float(raw.get("scale", 1.0)),
        aliases={str(k).lower(): v for k, v in (raw.get("aliases") or {}).items()},
    )


def _parse_buckets(dim_name: str, raw: list[dict[str, Any]]) -> tuple[BucketDef, ...]:
    buckets = tuple(
        BucketDef(label=b["label"], low=_opt_float(b.get("low")), high=_opt_float(b.get("high")))
        for b in raw
    )
    if not buckets:
        raise CatalogError(f"Bucketed dimension '{dim_name}' declares no buckets")
    labels = [b.label for b in buckets]
    if len(set(labels)) != len(labels):
        raise CatalogError(f"Dimension '{dim_name}' has duplicate bucket labels")
    for b in buckets:
        if b.low is not None and b.high is not None and b.low >= b.high:
            raise CatalogError(f"Bucket '{b.label}' in '{dim_name}' is empty or reversed")
    # Contiguous, ascending, only the ends may be open
    for prev, nxt in zip(buckets, buckets[1:]):
        if prev.high is None or nxt.low is None or prev.high != nxt.low:
            raise CatalogError(
                f"Buckets '{prev.label}' and '{nxt.label}' in '{dim_name}' are not contiguous"
            )
    return buckets


def _parse_dimension(raw: dict[str, Any]) -> DimensionDef:
    kind = raw.get("kind", "categorical")
    if kind not in DIMENSION_KINDS:
        raise CatalogError(f"Dimension '{raw['name']}' has unknown kind '{kind}'")
    sort = raw.get("sort", "value_desc")
    if sort not in SORT_ORDERS:
        raise CatalogError(f"Dimension '{raw['name']}' has unknown sort '{sort}'")
    buckets = _parse_buckets(raw["name"], raw.get("buckets") or []) if kind == "bucketed" else ()
    if sort == "bucket" and kind != "bucketed":
        raise CatalogError(f"Dimension '{raw['name']}': sort 'bucket' needs buckets")
    return DimensionDef(
        name=raw["name"],
        field=raw["field"],
        kind=kind,
        buckets=buckets,
        scale=float(raw.get("scale", 1.0)),
        split=raw.get("split"),
        split_mode=raw.get("split_mode", "all"),
        missing=raw.get("missing", "label"),
        missing_label=raw.get("missing_label", "Unknown"),
        sort=sort,
        top_n=raw.get("top_n"),
    )


def _parse_ranking(raw: dict[str, Any]) -> RankingDef:
    return RankingDef(
        name=raw["name"],
        label_field=raw["label_field"],
        measure_field=raw["measure_field"],
        top_n=int(raw.get("top_n", 20)),
        scale=float(raw.get("scale", 1.0)),
    )


def _parse_order(raw: list[str]) -> tuple[SortKey, ...]:
    keys = []
    for item in raw:
        item = str(item)
        if item.startswith("-"):
            keys.append(SortKey(item[1:], descending=True))
        else:
            keys.append(SortKey(item))
    return tuple(keys)


def _check_references(src: SourceDef) -> None:
    """Every filter, dimension, ranking and sort key must name a declared field."""
    referenced: list[tuple[str, str]] = []
    referenced += [(f"filter '{f.key}'", name) for f in src.filters.values() for name in f.fields]
    referenced += [(f"dimension '{d.name}'", d.field) for d in src.dimensions.values()]
    for r in src.rankings.values():
        referenced += [(f"ranking '{r.name}'", r.label_field), (f"ranking '{r.name}'", r.measure_field)]
    referenced += [("order_by", k.field) for k in src.order_by]
    referenced.append(("primary_key", src.primary_key))
    for where, name in referenced:
        if name not in src.fields:
            raise CatalogError(f"Source '{src.name}': {where} references unknown field '{name}'")


def _parse_source(raw: dict[str, Any]) -> SourceDef:
    fields = {f["name"]: _parse_field(f) for f in raw.get("fields", [])}
    src = SourceDef(
        name=raw["name"],
        table=raw.get("table", raw["name"]),
        primary_key=raw.get("primary_key", "id"),
        order_by=_parse_order(raw.get("order_by") or []),
        fields=fields,
        filters={f["key"]: _parse_filter(f) for f in raw.get("filters", [])},
        dimensions={d["name"]: _parse_dimension(d) for d in raw.get("dimensions", [])},
        rankings={r["name"]: _parse_ranking(r) for r in raw.get("rankings", [])},
    )
    _check_references(src)
    return src


def parse_catalog(raw_yaml: dict[str, Any]) -> Catalog:
    sources = {s["name"]: _parse_source(s) for s in raw_yaml.get("sources", [])}
    return Catalog(version=raw_yaml.get("version", 1), sources=sources)


# ── Public API ───────────────────────────────────────────

@lru_cache
def load_catalog(path: str | None = None) -> Catalog:
    """Load and cache the source catalog from YAML."""
    catalog_path = Path(path or get_settings().catalog_path)
    with open(catalog_path) as f:
        raw = yaml.safe_load(f)
    return parse_catalog(raw)


def get_source_names() -> list[str]:
    return load_catalog().source_names()
