import time


class TimerPushThrottle:
    """Rate limit for pushes caused only by the clock.

    At most one timer-only push goes out per window. Every push, timer-only
    or not, restarts the window. A suppressed push is remembered as pending
    so the caller can flush it once the window has passed.
    """

    def __init__(self, window_sec: float = 1.0, clock=None):
        self.window_sec = float(window_sec)
        self._clock = clock or time.monotonic
        self._last_push = None
        self.pending = False

    def allow(self) -> bool:
        if self._last_push is None or self.window_sec <= 0:
            return True
        return self._clock() - self._last_push >= self.window_sec

    def remaining(self) -> float:
        if self._last_push is None:
            return 0.0
        return max(0.0, self.window_sec - (self._clock() - self._last_push))

    def mark_pushed(self) -> None:
        self._last_push = self._clock()
        self.pending = False

    def suppress(self) -> bool:
        """Record a suppressed push. True when a flush is not yet pending."""
        first = not self.pending
        self.pending = True
        return first

    def reset(self) -> None:
        self._last_push = None
        self.pending = False
