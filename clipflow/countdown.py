"""Countdown pre-roll: ticks N down to 0 once per second before recording starts."""

import logging

from PySide6.QtCore import QObject, QTimer, Signal

logger = logging.getLogger(__name__)


class CountdownScheduler(QObject):
    """Counts down from N, emitting ``ticked(remaining)`` once per second.

    The timer stops by itself after the tick that reaches 0.  ``cancel()``
    tears it down early; a tick that fires after cancellation is ignored.
    """

    ticked = Signal(int)  # remaining seconds after this tick (N-1 … 0)

    def __init__(self, interval_ms: int = 1000, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._remaining: int = 0
        self._timer = QTimer(self)
        self._timer.setInterval(interval_ms)
        self._timer.timeout.connect(self.tick)

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def is_active(self) -> bool:
        return self._timer.isActive()

    def start(self, seconds: int) -> None:
        """Begin counting down from *seconds* (must be positive)."""
        if seconds <= 0:
            raise ValueError(f"Countdown needs a positive duration, got {seconds}")
        self._remaining = int(seconds)
        self._timer.start()
        logger.debug("Countdown started | seconds=%d", seconds)

    def cancel(self) -> None:
        if self._timer.isActive():
            logger.debug("Countdown cancelled | remaining=%d", self._remaining)
        self._timer.stop()
        self._remaining = 0

    def tick(self) -> None:
        """Advance one second.  Normally driven by the internal timer."""
        if not self._timer.isActive():
            return
        self._remaining -= 1
        if self._remaining <= 0:
            self._remaining = 0
            self._timer.stop()
        self.ticked.emit(self._remaining)
