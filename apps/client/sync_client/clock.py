"""Epoch-millisecond clocks used to stamp writes and deletions."""
import time
from typing import Callable, Optional


def now_ms() -> int:
    return int(time.time() * 1000)


class MonotonicClock:
    """Wall-clock milliseconds that never repeat or step backwards.

    A replica's successive writes must carry increasing ``updated_at`` values
    even if the system clock is adjusted underneath it.
    """

    def __init__(self, source: Optional[Callable[[], int]] = None):
        self._source = source or now_ms
        self._last = 0

    def __call__(self) -> int:
        self._last = max(self._source(), self._last + 1)
        return self._last
