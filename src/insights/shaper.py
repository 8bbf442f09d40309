"""
Result shaping -- counters to the ordered ``[{name, value}]`` arrays the
chart components consume.

Sort orders:
  - value_desc  (default)  count descending, ties broken by name ascending
  - name_asc               name ascending (years, ordinal labels)
  - bucket                 declared bucket order (numeric ranges low -> high)

``top_n`` truncates after sorting.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence


@dataclass(frozen=True)
class Bucket:
    """A named group and its count (or, for rankings, its measure)."""
    name: str
    value: float

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "value": self.value}


def shape_counts(
    counts: Mapping[str, int],
    sort: str = "value_desc",
    top_n: int | None = None,
    bucket_order: Sequence[str] = (),
) -> list[Bucket]:
    """Convert a name -> count mapping into a sorted, truncated bucket list."""
    items = list(counts.items())
    if sort == "name_asc":
        items.sort(key=lambda kv: kv[0])
    elif sort == "bucket":
        position = {label: i for i, label in enumerate(bucket_order)}
        # Labels outside the declared order (e.g. "Unknown") go last
        items.sort(key=lambda kv: (position.get(kv[0], len(position)), kv[0]))
    else:
        items.sort(key=lambda kv: (-kv[1], kv[0]))
    if top_n is not None:
        items = items[:top_n]
    return [Bucket(name=name, value=value) for name, value in items]


def shape_ranking(pairs: Iterable[tuple[str, float]], top_n: int) -> list[Bucket]:
    """Top-N (label, measure) pairs by measure descending; ties keep scan order."""
    ranked = sorted(pairs, key=lambda p: p[1], reverse=True)
    return [Bucket(name=label, value=measure) for label, measure in ranked[:top_n]]


def buckets_to_dicts(buckets: Sequence[Bucket]) -> list[dict[str, Any]]:
    return [b.to_dict() for b in buckets]
