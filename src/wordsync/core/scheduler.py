"""Debounce scheduler for post-mutation syncs.

Rapid successive mutations coalesce into one sync: every schedule() call
restarts the window, and the callback fires once the window elapses
without another call.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 1.2

TimerFactory = Callable[[float, Callable[[], None]], Any]


def _thread_timer(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


class DebounceScheduler:
    """Owns a single pending timer and restarts it on every schedule().

    Attributes:
        delay: Debounce window in seconds
    """

    def __init__(
        self,
        callback: Callable[[], Any],
        delay: float = DEFAULT_DEBOUNCE_SECONDS,
        timer_factory: TimerFactory = _thread_timer,
    ) -> None:
        """Initialize scheduler.

        Args:
            callback: Called once the debounce window elapses
            delay: Debounce window in seconds
            timer_factory: Creates a startable, cancellable timer
                (threading.Timer by default)
        """
        self.callback = callback
        self.delay = delay
        self._timer_factory = timer_factory
        self._timer: Optional[Any] = None
        self._lock = threading.Lock()

    def schedule(self) -> None:
        """Start the window, or restart it if one is already running."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = self._timer_factory(self.delay, lambda: self._fire(timer))
            self._timer = timer
            timer.start()

    def cancel(self) -> None:
        """Drop the pending callback, if any."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @property
    def is_pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def _fire(self, timer: Any) -> None:
        with self._lock:
            # A late tick from a timer that was already replaced
            if self._timer is not timer:
                return
            self._timer = None
        try:
            self.callback()
        except Exception as e:
            logger.error(f"Scheduled callback failed: {e}")
