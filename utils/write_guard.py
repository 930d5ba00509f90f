import time
import threading
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class WriteGuard:
    """Durable write discipline for scheduler ticks.
    Policies (defaults):
      * Max total writes per 60 s window: 12
      * Window resets atomically once it has expired
    A refused write is not lost: the caller keeps the change in memory and
    the next permitted write carries it.
    """
    WINDOW_SECONDS = 60.0
    MAX_WRITES_PER_WINDOW = 12

    def __init__(self, max_writes: Optional[int] = None, window_seconds: Optional[float] = None,
                 clock: Optional[Callable[[], float]] = None):
        self.max_writes = max_writes or self.MAX_WRITES_PER_WINDOW
        self.window_seconds = window_seconds or self.WINDOW_SECONDS
        self.clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._window_start: Optional[float] = None
        self._window_count = 0
        self._deferred: set = set()

    def allow(self, key: str) -> bool:
        """Reserve one write slot; False means skip the durable write this time."""
        with self._lock:
            now = self.clock()
            if self._window_start is None or now - self._window_start >= self.window_seconds:
                self._window_start = now
                self._window_count = 0

            if self._window_count >= self.max_writes:
                if key not in self._deferred:
                    logger.warning("[WriteGuard] Write rate limit reached; deferring writes for %s", key)
                self._deferred.add(key)
                return False

            self._window_count += 1
            self._deferred.discard(key)
            return True

    @property
    def window_count(self) -> int:
        with self._lock:
            return self._window_count
