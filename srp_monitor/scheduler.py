"""Fixed-period runner for :meth:`StockMonitor.tick`.

Ticks never overlap: a tick that comes due while another one is still
running is skipped, not queued.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Scheduler:
    def __init__(
        self,
        tick: Callable[[], None],
        interval_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._tick = tick
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._busy = threading.Lock()
        self._state_lock = threading.Lock()
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        with self._state_lock:
            return self._stop_event is not None

    def run_once(self) -> bool:
        """Run one tick now unless one is in progress; return whether it ran."""
        if not self._busy.acquire(blocking=False):
            logger.info("Previous check still running; skipping this one")
            return False
        try:
            self._tick()
        except Exception:
            logger.exception("Monitoring tick failed")
        finally:
            self._busy.release()
        return True

    def _loop(self, stop: threading.Event) -> None:
        # Immediate check so new products don't wait a full period.
        self.run_once()
        next_due = self._clock() + self.interval_seconds
        while not stop.wait(max(0.0, next_due - self._clock())):
            self.run_once()
            now = self._clock()
            next_due += self.interval_seconds
            if next_due <= now:
                missed = int((now - next_due) // self.interval_seconds) + 1
                logger.warning("Check took longer than the interval; skipping %d tick(s)", missed)
                next_due += missed * self.interval_seconds

    def start(self) -> bool:
        """Start periodic ticks; return False if already running."""
        with self._state_lock:
            if self._stop_event is not None:
                logger.info("Monitoring already running")
                return False
            stop = threading.Event()
            self._stop_event = stop
            self._thread = threading.Thread(
                target=self._loop, args=(stop,), name="stock-monitor", daemon=True
            )
            self._thread.start()
        logger.info("Starting monitoring (interval: %ss)", self.interval_seconds)
        return True

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Stop periodic ticks; an in-flight tick finishes on its own.

        Waits up to ``timeout`` seconds for the worker thread when given.
        Returns False if the scheduler was not running.
        """
        with self._state_lock:
            stop, thread = self._stop_event, self._thread
            self._stop_event = None
            self._thread = None
        if stop is None:
            return False
        stop.set()
        if timeout is not None and thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.info("Monitoring stopped")
        return True


__all__ = ["Scheduler"]
