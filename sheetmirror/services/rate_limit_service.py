"""Token-bucket admission gate for Google Sheets API quota. State is lost on restart."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class TokenBucket:
    """Fixed-window token bucket.

    The bucket holds at most ``capacity`` tokens and is reset to exactly
    ``capacity`` once every ``window_seconds``. Refill is a hard reset, not a
    gradual leak, mirroring the per-100-seconds quota of the Sheets API.
    Denial never blocks: callers skip the operation and try again next cycle.

    Thread-safety: safe under asyncio's single-threaded cooperative model.
    ``try_consume`` checks and deducts with no await point in between.
    """

    def __init__(
        self,
        capacity: int = 80,
        window_seconds: float = 100.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            msg = f"capacity must be >= 1, got {capacity}"
            raise ValueError(msg)
        if window_seconds <= 0:
            msg = f"window_seconds must be > 0, got {window_seconds}"
            raise ValueError(msg)
        self._capacity = capacity
        self._window = window_seconds
        self._clock = clock
        self._tokens = capacity
        self._window_start = clock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def available(self) -> int:
        self._roll_window()
        return self._tokens

    def _roll_window(self) -> None:
        now = self._clock()
        elapsed = now - self._window_start
        if elapsed < self._window:
            return
        # Align to the window grid so refills stay on a fixed period.
        windows = int(elapsed // self._window)
        self._window_start += windows * self._window
        if self._tokens != self._capacity:
            logger.debug("Rate limit window elapsed, refilling to %d tokens", self._capacity)
        self._tokens = self._capacity

    def refill(self) -> None:
        """Reset to full capacity and start a new window now."""
        self._tokens = self._capacity
        self._window_start = self._clock()

    def try_consume(self, n: int = 1) -> bool:
        """Take ``n`` tokens if available. Returns False with no side effect otherwise."""
        self._roll_window()
        if self._tokens >= n:
            self._tokens -= n
            return True
        return False
