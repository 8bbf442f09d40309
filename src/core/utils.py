"""
Small shared utilities.
"""
from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Callable, Generator


@contextmanager
def timer(clock: Callable[[], float] = time.perf_counter) -> Generator[dict, None, None]:
    """Context manager that records elapsed wall-clock milliseconds."""
    result: dict = {}
    start = clock()
    try:
        yield result
    finally:
        result["elapsed_ms"] = int((clock() - start) * 1000)


class Deadline:
    """A point in time after which long-running work should stop.

    ``seconds=None`` never expires.
    """

    def __init__(self, seconds: float | None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + seconds

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at
