"""In-memory debounce guard for repeated triggers."""

import time
from collections.abc import Callable
from threading import Lock


class Debouncer:
    """Token bucket of size one with a fixed refill window.

    The first call takes the token; any call arriving before ``window_seconds``
    have elapsed since the token was taken is rejected. This is a best-effort
    guard local to the owning object, not a distributed lock.
    """

    def __init__(self, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._last_taken: float | None = None
        self._lock = Lock()

    def try_acquire(self) -> bool:
        """Return True and consume the token if it is available, False otherwise."""
        now = self._clock()

        with self._lock:
            if self._last_taken is not None and now - self._last_taken < self.window_seconds:
                return False
            self._last_taken = now
            return True

    def seconds_until_ready(self) -> float:
        """Time left before the next call would be accepted."""
        with self._lock:
            if self._last_taken is None:
                return 0.0
            return max(0.0, self.window_seconds - (self._clock() - self._last_taken))

    def reset(self) -> None:
        """Clear all tracked state (useful for testing)."""
        with self._lock:
            self._last_taken = None
