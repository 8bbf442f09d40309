"""
Filter normalisation -- raw query parameters to a canonical FilterSpec.

All parsing of loosely-typed filter input happens here.  Nothing in this
module raises on bad input: a value that cannot be understood degrades to
"no constraint" (or, for single-number filters, is passed through for the
translator to skip) and a warning is logged.

Range tokens:
    "10-50"       -> low=10, high=50
    "100+"        -> low=100, open top
    "1,000-5,000" -> low=1000, high=5000
"""
from __future__ import annotations

import datetime
import json
import math
import re
from dataclasses import dataclass
from typing import Any, Mapping

from src.catalog.loader import SourceDef
from src.core.logging import get_logger

logger = get_logger(__name__)

SENTINEL_ALL = "all"

_MULTIPLIERS = {"k": 1e3, "m": 1e6, "b": 1e9}
_NUMBER_RE = re.compile(r"^(-?\d+(?:\.\d+)?)\s*([kmb])?$", re.IGNORECASE)


# ── FilterSpec ──────────────────────────────────────────


@dataclass(frozen=True)
class FilterSpec:
    """Normalised, order-independent set of filter constraints.

    Entries are kept sorted by key, so two specs built from the same
    pairs in any order compare (and hash) equal.
    """

    entries: tuple[tuple[str, Any], ...] = ()

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "FilterSpec":
        return cls(tuple(sorted(values.items())))

    def get(self, key: str, default: Any = None) -> Any:
        for k, v in self.entries:
            if k == key:
                return v
        return default

    def as_dict(self) -> dict[str, Any]:
        return dict(self.entries)

    def canonical(self) -> str:
        """Stable JSON used for cache keys."""
        return json.dumps(self.entries, separators=(",", ":"), default=str)

    def __bool__(self) -> bool:
        return bool(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class RangeToken:
    low: float
    high: float | None = None

    def render(self) -> str:
        if self.high is None:
            return f"{_fmt(self.low)}+"
        return f"{_fmt(self.low)}-{_fmt(self.high)}"


# ── Scalar helpers ──────────────────────────────────────


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else repr(float(value))


def decommify(value: str) -> str:
    """Strip thousands separators: ``"1,065"`` -> ``"1065"``."""
    return value.replace(",", "")


def parse_number(value: Any) -> float | None:
    """Best-effort numeric parse of a stored or user-supplied value.

    Accepts plain numbers, ``"1,065"``, ``"$1.5M"``, ``"# 48"``, ``"12%"``
    and K/M/B suffixes.  Returns ``None`` when nothing numeric is found.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = decommify(str(value)).strip()
    for ch in ("$", "#", "%", "€", "£"):
        text = text.replace(ch, "")
    text = text.strip()
    match = _NUMBER_RE.match(text)
    if not match:
        return None
    number = float(match.group(1))
    suffix = match.group(2)
    if suffix:
        number *= _MULTIPLIERS[suffix.lower()]
    return number


def parse_date(value: Any) -> datetime.date | None:
    """Date from a date/datetime or an ISO-8601 string prefix, else ``None``."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if value is None:
        return None
    try:
        return datetime.date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def _parse_plain(text: str) -> float | None:
    """Strict numeric parse for range bounds (no currency, no suffixes)."""
    try:
        number = float(decommify(text).strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def parse_range_token(value: Any) -> RangeToken | None:
    """Parse ``"a-b"`` / ``"a+"`` into a RangeToken, or ``None`` if malformed.

    Reversed bounds, negative numbers, and more than one hyphen are malformed.
    """
    if isinstance(value, RangeToken):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return RangeToken(float(value), float(value))
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("+"):
        low = _parse_plain(text[:-1])
        if low is None or low < 0:
            return None
        return RangeToken(low)
    parts = text.split("-")
    if len(parts) != 2:
        return None
    low, high = _parse_plain(parts[0]), _parse_plain(parts[1])
    if low is None or high is None or low > high:
        return None
    return RangeToken(low, high)


# ── Public API ──────────────────────────────────────────


def _normalize_value(key: str, kind: str, value: Any) -> Any:
    """Return the canonical value for one filter, or ``None`` to drop it."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value or value == SENTINEL_ALL:
            return None

    if kind == "range":
        token = parse_range_token(value)
        if token is None:
            logger.warning("Ignoring malformed range filter %s=%r", key, value)
            return None
        return token.render()

    if kind in ("minimum", "year"):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        number = _parse_plain(str(value))
        if number is None:
            # Passed through; the translator skips and logs it
            logger.warning("Non-numeric value for %s=%r", key, value)
            return str(value)
        return int(number) if number.is_integer() else number

    return str(value)


def normalize_filters(raw: Mapping[str, Any] | FilterSpec | None, source: SourceDef | None = None) -> FilterSpec:
    """Normalise raw request parameters into a FilterSpec.

    With *source*, only keys the source declares are kept and each value
    is normalised according to its filter kind.  Without one, every key is
    kept as a trimmed string.  Never raises.
    """
    if raw is None:
        return FilterSpec()
    items = raw.entries if isinstance(raw, FilterSpec) else raw.items()

    values: dict[str, Any] = {}
    for key, value in items:
        if source is not None:
            fdef = source.filter(key)
            if fdef is None:
                logger.debug("Dropping undeclared filter %s for source %s", key, source.name)
                continue
            kind = fdef.kind
        else:
            kind = "contains"
        try:
            normalized = _normalize_value(key, kind, value)
        except Exception:
            logger.exception("Unexpected error normalising filter %s=%r -- ignoring", key, value)
            continue
        if normalized is not None:
            values[key] = normalized
    return FilterSpec.from_dict(values)
