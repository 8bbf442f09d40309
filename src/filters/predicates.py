"""
Predicate -- one normalised constraint against one or more fields.

A list of predicates is AND-combined.  A predicate naming several fields
(free-text search) matches when any of them matches.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class PredicateKind(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    RANGE = "range"
    MEMBERSHIP = "membership"


@dataclass(frozen=True)
class Range:
    """Inclusive lower bound; upper bound inclusive unless ``high_inclusive`` is False."""

    low: Any = None
    high: Any = None
    high_inclusive: bool = True

    def __post_init__(self):
        if self.low is not None and self.high is not None and self.low > self.high:
            raise ValueError(f"Range low {self.low!r} > high {self.high!r}")

    @property
    def is_open(self) -> bool:
        return self.high is None


@dataclass(frozen=True)
class Predicate:
    fields: tuple[str, ...]
    kind: PredicateKind
    value: Any
    # Range over a text column: the enumerated exact/LIKE candidates
    candidates: tuple[str, ...] = ()
    truncated: bool = False

    @property
    def field(self) -> str:
        return self.fields[0]

    @property
    def uses_candidates(self) -> bool:
        return bool(self.candidates)

    def describe(self) -> str:
        target = "|".join(self.fields)
        if self.candidates:
            return f"{target} {self.kind.value} {len(self.candidates)} candidates"
        return f"{target} {self.kind.value} {self.value!r}"


def is_like_pattern(candidate: str) -> bool:
    """Candidates containing a ``%`` or ``_`` wildcard are LIKE patterns; others are exact."""
    return "%" in candidate or "_" in candidate
