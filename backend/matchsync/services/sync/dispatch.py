import logging
import threading
from collections import deque
from typing import Optional


class SerialDispatcher:
    """Run submitted callables one at a time, in submission order.

    Whoever submits into an idle dispatcher drains the queue; submissions made
    while a drain is in progress (from the drain itself, a timer task or
    another request thread) are queued and return at once. A tick can
    therefore never interleave with an operator action.
    """

    def __init__(self, logger=None):
        self.logger = logger or logging.getLogger('matchsync')
        self._queue = deque()
        self._lock = threading.Lock()
        self._draining = False
        self._drainer = None

    def submit(self, fn, *args, **kwargs) -> None:
        with self._lock:
            self._queue.append((fn, args, kwargs))
            if self._draining:
                return
            self._draining = True
            self._drainer = threading.get_ident()
        self._drain()

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Block until everything submitted so far has run.

        Returns False without waiting when called from inside a task, since
        the queue cannot drain past its own caller.
        """
        with self._lock:
            if not self._draining and not self._queue:
                return True
            if self._drainer == threading.get_ident():
                return False
        done = threading.Event()
        self.submit(done.set)
        return done.wait(timeout)

    @property
    def idle(self) -> bool:
        with self._lock:
            return not self._draining and not self._queue

    def _drain(self) -> None:
        while True:
            with self._lock:
                if not self._queue:
                    self._draining = False
                    self._drainer = None
                    return
                fn, args, kwargs = self._queue.popleft()
            try:
                fn(*args, **kwargs)
            except Exception:
                self.logger.exception(f"[dispatch-error] {getattr(fn, '__name__', fn)} failed")
