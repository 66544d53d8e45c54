import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """
    Fixed-window counter per key.

    A window opens on the first hit for a key and lasts ``window_ms``; the
    count resets once ``now >= reset_at``. Hits are denied once the count
    reaches ``limit``. Counters are process-local.
    """

    def __init__(
        self,
        limit: int,
        window_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")
        self.limit = limit
        self.window_s = window_ms / 1000
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._next_sweep = clock() + self.window_s

    def check(self, key: str) -> bool:
        """Record a hit for ``key``; False when the window is exhausted."""
        window = self._current(key)
        if window.count >= self.limit:
            return False
        window.count += 1
        return True

    def available(self, key: str) -> bool:
        """Whether a hit would be allowed, without recording one."""
        return self._current(key).count < self.limit

    def retry_after_s(self, key: str) -> float:
        window = self._windows.get(key)
        if window is None:
            return 0.0
        return max(0.0, window.reset_at - self._clock())

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._windows.clear()
        else:
            self._windows.pop(key, None)

    def _current(self, key: str) -> _Window:
        now = self._clock()
        if now >= self._next_sweep:
            self._sweep(now)
        window = self._windows.get(key)
        if window is None or now >= window.reset_at:
            window = _Window(count=0, reset_at=now + self.window_s)
            self._windows[key] = window
        return window

    def _sweep(self, now: float) -> None:
        """Drop windows that have run out; at most once per window length."""
        expired = [key for key, window in self._windows.items() if now >= window.reset_at]
        for key in expired:
            del self._windows[key]
        self._next_sweep = now + self.window_s
