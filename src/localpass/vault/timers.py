# Vault - Session timers
#
# Idle auto-lock and clipboard auto-clear each own one ResettableTimer.
# Arming always cancels the pending instance first, so at most one
# callback per timer is ever outstanding.

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# factory(interval_seconds, callback) -> object with start() and cancel()
TimerFactory = Callable[[float, Callable[[], None]], "threading.Timer"]


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _thread_timer(interval: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(interval, callback)
    timer.daemon = True
    return timer


class ResettableTimer:
    """Single-shot timer that can be cancelled and re-armed.

    Args:
        name: Label used in log messages.
        callback: Called with no arguments when the timer fires.
        timer_factory: Builds the underlying timer. Defaults to a daemon
            ``threading.Timer``; tests inject a fake.
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], None],
        timer_factory: Optional[TimerFactory] = None,
    ):
        self.name = name
        self._callback = callback
        self._factory = timer_factory or _thread_timer
        self._lock = threading.Lock()
        self._timer = None
        self._generation = 0

    def arm(self, interval_seconds: float) -> None:
        """Cancel any pending instance and schedule a new one."""
        with self._lock:
            self._cancel_locked()
            generation = self._generation
            self._timer = self._factory(interval_seconds, lambda: self._fire(generation))
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            self._cancel_locked()

    @property
    def armed(self) -> bool:
        with self._lock:
            return self._timer is not None

    def _cancel_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        # Invalidate callbacks that already left the underlying timer
        self._generation += 1

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
        try:
            self._callback()
        except Exception:
            logger.exception("%s timer callback failed", self.name)
