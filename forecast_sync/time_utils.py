"""Epoch-millisecond clock helpers shared by the cache and status layers."""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], int]

MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR


def now_ms() -> int:
    """Return the current wall-clock time in whole epoch milliseconds."""
    return int(time.time() * 1000)


def seconds_to_ms(seconds: float) -> int:
    return int(round(seconds * MS_PER_SECOND))
