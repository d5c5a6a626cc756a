"""Process-wide request throttle shared by every validation task."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from packages.hybrid_validation.errors import CompletionInterrupted

logger = logging.getLogger(__name__)


class RateLimiter:
    """Smooth requests-per-second ceiling. `acquire` blocks, never rejects.

    Permits are handed out on a fixed grid (one every ``1 / rate`` seconds); a
    caller reserves the next free slot under the lock and sleeps outside it.
    """

    def __init__(self, requests_per_second: float, clock: Callable[[], float] = time.monotonic) -> None:
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self._interval = 1.0 / requests_per_second
        self._clock = clock
        self._next_free = 0.0
        self._lock = threading.Lock()
        self._closed = threading.Event()
        logger.info("Rate limiter initialized: %.2f requests/second", requests_per_second)

    @property
    def rate(self) -> float:
        return 1.0 / self._interval

    def acquire(self, cancel: Optional[threading.Event] = None) -> float:
        """Block until a permit is granted; returns seconds spent waiting."""

        with self._lock:
            now = self._clock()
            slot = max(now, self._next_free)
            self._next_free = slot + self._interval
        delay = slot - now
        if delay > 0:
            logger.debug("Waiting %.3fs for rate limit permit", delay)
            wait_interruptibly(delay, cancel, self._closed)
        elif _is_set(cancel) or self._closed.is_set():
            raise CompletionInterrupted("Interrupted while waiting for rate limit permit")
        return max(delay, 0.0)

    def close(self) -> None:
        """Wake and fail every blocked caller."""

        self._closed.set()


def wait_interruptibly(
    seconds: float,
    cancel: Optional[threading.Event] = None,
    closed: Optional[threading.Event] = None,
) -> None:
    """Sleep for `seconds` unless one of the events fires first."""

    deadline = time.monotonic() + seconds
    while True:
        if _is_set(cancel) or _is_set(closed):
            raise CompletionInterrupted("Interrupted while waiting")
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return
        # Poll both events; neither can be waited on jointly.
        waiter = cancel or closed
        if waiter is None:
            time.sleep(remaining)
            return
        waiter.wait(min(remaining, 0.05))


def _is_set(event: Optional[threading.Event]) -> bool:
    return event is not None and event.is_set()


__all__ = ["RateLimiter", "wait_interruptibly"]
