import threading
import time


class ProgressCounter:
    """Aggregate of media time encoded across all workers.

    Stored in microseconds, reported in milliseconds. Every update happens
    under the lock so concurrent workers never lose an increment.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._total_us = 0
        self._started = time.monotonic()

    def add_us(self, delta_us: int) -> int:
        """Adds a non-negative delta and returns the new total in ms."""
        if delta_us < 0:
            delta_us = 0
        with self._lock:
            self._total_us += delta_us
            return self._total_us // 1000

    @property
    def value_us(self) -> int:
        with self._lock:
            return self._total_us

    @property
    def value_ms(self) -> int:
        return self.value_us // 1000

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)
