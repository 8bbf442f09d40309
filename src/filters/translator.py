"""
Predicate translation -- FilterSpec + source declaration -> Predicate list.

Each declared filter kind has one builder:

  equals      exact match on enum-like fields (status, type codes)
  contains    case-insensitive substring over one or more fields
  membership  alias lookup ("us" -> "United States") then exact match
  range       "a-b" / "a+" numeric range (scaled)
  minimum     single number -> open-topped range
  year        "2023" -> [2023-01-01, 2024-01-01)

Ranges over fields stored as formatted text ("#48", "1,065") cannot be
compared numerically by the store.  For those the range is enumerated into
a finite list of candidates rendered through the field's ``text_formats``:
exact values at the edges, digit-length LIKE patterns (``"# 2___"``) for
whole runs in between.  A list that would exceed ``pattern_cap`` is cut
and flagged ``truncated``, a known precision loss of text-stored numbers.
"""
from __future__ import annotations

import datetime
import math
import string
from typing import Any, Callable, Iterator

from src.catalog.loader import FieldDef, FilterDef, SourceDef
from src.core.config import get_settings
from src.core.logging import get_logger
from src.filters.normalizer import FilterSpec, parse_range_token
from src.filters.predicates import Predicate, PredicateKind, Range

logger = get_logger(__name__)


# ── Candidate enumeration (range over text) ─────────────

MAX_DIGITS = 15


def digit_blocks(low: int, high: int) -> Iterator[str]:
    """Cover the integers ``[low, high]`` with digit patterns, in numeric order.

    ``"42"`` is one number, ``"4_"`` is 40-49 and ``"___"`` is every
    three-digit number.
    """
    n = low
    while n <= high:
        width = len(str(n))
        if width > 1 and n == 10 ** (width - 1) and 10 ** width - 1 <= high:
            yield "_" * width
            n = 10 ** width
            continue
        free = 0
        while n > 0 and n % 10 ** (free + 1) == 0 and n + 10 ** (free + 1) - 1 <= high:
            free += 1
        yield f"{n // 10 ** free}" + "_" * free if free else str(n)
        n += 10 ** free


def _group_thousands(digits: str) -> str:
    head = len(digits) % 3 or 3
    return ",".join([digits[:head]] + [digits[i:i + 3] for i in range(head, len(digits), 3)])


def render_digits(template: str, digits: str) -> str:
    """Render a digit pattern through a text format (``"{n}"`` or ``"{n:,}"``)."""
    if "_" not in digits:
        return template.format(n=int(digits))
    out = []
    for literal, name, spec, _ in string.Formatter().parse(template):
        out.append(literal)
        if name is not None:
            out.append(_group_thousands(digits) if spec == "," else digits)
    return "".join(out)


def enumerate_candidates(
    fdef: FieldDef,
    low: float,
    high: float | None,
    cap: int,
) -> tuple[tuple[str, ...], bool]:
    """Render ``[low, high]`` through the field's text formats.

    Runs of numbers sharing a prefix collapse into LIKE patterns
    (``"# 1___"``), so an open top (``1000+``) is covered through
    ``MAX_DIGITS`` digits.  Returns ``(candidates, truncated)``.
    """
    cap = max(1, cap)
    start = max(0, math.ceil(low))
    stop = math.floor(high) if high is not None else 10 ** MAX_DIGITS - 1

    candidates: list[str] = []
    seen: set[str] = set()
    for block in digit_blocks(start, stop):
        for template in fdef.text_formats:
            rendered = render_digits(template, block)
            if rendered in seen:
                continue
            if len(candidates) >= cap:
                return tuple(candidates), True
            seen.add(rendered)
            candidates.append(rendered)
    return tuple(candidates), False


def _range_predicate(
    fdef: FilterDef,
    source: SourceDef,
    low: float | None,
    high: float | None,
    cap: int,
) -> Predicate:
    target = source.field(fdef.fields[0])
    if not target.text_formats:
        return Predicate(fdef.fields, PredicateKind.RANGE, Range(low, high))

    candidates, truncated = enumerate_candidates(target, low or 0, high, cap)
    if truncated:
        logger.warning(
            "Range %s on text field %s.%s truncated to %d candidates",
            Range(low, high), source.name, target.name, len(candidates),
        )
    if not candidates:
        # e.g. 1.2-1.8 -> no integers in range; match nothing
        return Predicate(fdef.fields, PredicateKind.MEMBERSHIP, ())
    return Predicate(
        fdef.fields, PredicateKind.RANGE, Range(low, high),
        candidates=candidates, truncated=truncated,
    )


# ── Builders ────────────────────────────────────────────


def _build_equals(fdef: FilterDef, value: Any, source: SourceDef, cap: int) -> Predicate | None:
    return Predicate(fdef.fields, PredicateKind.EQUALS, str(value))


def _build_contains(fdef: FilterDef, value: Any, source: SourceDef, cap: int) -> Predicate | None:
    return Predicate(fdef.fields, PredicateKind.CONTAINS, str(value))


def _build_membership(fdef: FilterDef, value: Any, source: SourceDef, cap: int) -> Predicate | None:
    parts = [p.strip() for p in str(value).split(",") if p.strip()]
    allowed = tuple(dict.fromkeys(fdef.aliases.get(p.lower(), p) for p in parts))
    if not allowed:
        return None
    return Predicate(fdef.fields, PredicateKind.MEMBERSHIP, allowed)


def _build_range(fdef: FilterDef, value: Any, source: SourceDef, cap: int) -> Predicate | None:
    token = parse_range_token(value)
    if token is None:
        logger.warning("Skipping malformed range %s=%r on %s", fdef.key, value, source.name)
        return None
    low = token.low * fdef.scale
    high = token.high * fdef.scale if token.high is not None else None
    return _range_predicate(fdef, source, low, high, cap)


def _build_minimum(fdef: FilterDef, value: Any, source: SourceDef, cap: int) -> Predicate | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        logger.warning("Skipping non-numeric %s=%r on %s", fdef.key, value, source.name)
        return None
    return _range_predicate(fdef, source, value * fdef.scale, None, cap)


def _build_year(fdef: FilterDef, value: Any, source: SourceDef, cap: int) -> Predicate | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not float(value).is_integer():
        logger.warning("Skipping non-numeric year %s=%r on %s", fdef.key, value, source.name)
        return None
    year = int(value)
    if not 1 <= year < 9999:
        logger.warning("Skipping out-of-range year %s=%r on %s", fdef.key, value, source.name)
        return None
    return Predicate(
        fdef.fields,
        PredicateKind.RANGE,
        Range(datetime.date(year, 1, 1), datetime.date(year + 1, 1, 1), high_inclusive=False),
    )


_BUILDERS: dict[str, Callable[[FilterDef, Any, SourceDef, int], Predicate | None]] = {
    "equals": _build_equals,
    "contains": _build_contains,
    "membership": _build_membership,
    "range": _build_range,
    "minimum": _build_minimum,
    "year": _build_year,
}


# ── Public API ──────────────────────────────────────────


def translate(
    filters: FilterSpec,
    source: SourceDef,
    *,
    pattern_cap: int | None = None,
) -> list[Predicate]:
    """Translate a normalised FilterSpec into AND-combined predicates.

    Parameters
    ----------
    filters : FilterSpec
        Output of ``normalize_filters``.
    source : SourceDef
        Declares which filter key maps to which fields, by which kind.
    pattern_cap : int, optional
        Maximum candidates for a range over a text field.  Defaults to
        ``settings.pattern_cap``.
    """
    cap = pattern_cap if pattern_cap is not None else get_settings().pattern_cap
    predicates: list[Predicate] = []
    for key, value in filters.entries:
        fdef = source.filter(key)
        if fdef is None:
            logger.debug("No filter '%s' declared on %s -- skipped", key, source.name)
            continue
        predicate = _BUILDERS[fdef.kind](fdef, value, source, cap)
        if predicate is not None:
            predicates.append(predicate)
    logger.debug("Translated %d filters on %s -> %s",
                 len(filters), source.name, [p.describe() for p in predicates])
    return predicates
