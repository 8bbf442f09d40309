"""
Typed errors shared across the query layer.

Malformed filter input is never an error (it is normalised away and
logged).  These types cover the failures a caller has to tell apart
from "no matching rows".
"""
from __future__ import annotations


class CatalogError(ValueError):
    """The source catalog YAML is inconsistent (bad buckets, unknown field ...)."""


class UnknownSourceError(KeyError):
    """Requested source or field is not declared in the catalog."""

    def __init__(self, name: str, known: list[str] | None = None):
        super().__init__(name)
        self.name = name
        self.known = known or []

    def __str__(self) -> str:
        what = "name" if "." in self.name else "source"
        if self.known:
            return f"Unknown {what} '{self.name}'. Known: {', '.join(self.known)}"
        return f"Unknown {what} '{self.name}'"


class DataSourceError(RuntimeError):
    """An upstream query (network, timeout, SQL) failed."""


class AggregationError(RuntimeError):
    """A full-scan aggregation could not complete."""

    def __init__(self, message: str, rows_scanned: int = 0):
        super().__init__(message)
        self.rows_scanned = rows_scanned


class AggregationTimeout(AggregationError):
    """The full scan exceeded its deadline."""
