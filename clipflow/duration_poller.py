"""Elapsed-time sampling while a recording is in progress."""

import logging

from PySide6.QtCore import QObject, QTimer, Signal

from .command_runner import CommandRunner
from .gateway import ServiceGateway
from .models import DEFAULT_POLL_INTERVAL_MS

logger = logging.getLogger(__name__)


class DurationPoller(QObject):
    """Asks the service for the recording duration on a fixed cadence.

    At most one request is in flight.  Every ``start()`` / ``stop()``
    bumps a generation counter; a sample issued under an older
    generation is dropped when it arrives, so a late response can never
    write a duration after the recording has ended.
    """

    sampled = Signal(int)  # elapsed ms

    def __init__(
        self,
        gateway: ServiceGateway,
        runner: CommandRunner,
        interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._gateway = gateway
        self._runner = runner
        self._generation: int = 0
        self._in_flight: bool = False
        self._timer = QTimer(self)
        self._timer.setInterval(interval_ms)
        self._timer.timeout.connect(self.poll)

    @property
    def is_active(self) -> bool:
        return self._timer.isActive()

    @property
    def generation(self) -> int:
        return self._generation

    def start(self) -> None:
        self._generation += 1
        self._in_flight = False
        self._timer.start()

    def stop(self) -> None:
        self._generation += 1
        self._in_flight = False
        self._timer.stop()

    def poll(self) -> None:
        """Request one sample.  Normally driven by the internal timer."""
        if not self._timer.isActive() or self._in_flight:
            return
        generation = self._generation
        self._in_flight = True
        self._runner.submit(
            self._gateway.get_recording_duration_ms,
            on_done=lambda ms: self._on_sample(generation, ms),
            on_failed=lambda exc: self._on_error(generation, exc),
            label="get_recording_duration_ms",
        )

    def _on_sample(self, generation: int, ms: object) -> None:
        if generation != self._generation:
            logger.debug("Discarding stale duration sample | ms=%s", ms)
            return
        self._in_flight = False
        self.sampled.emit(int(ms))  # type: ignore[arg-type]

    def _on_error(self, generation: int, exc: Exception) -> None:
        if generation != self._generation:
            return
        self._in_flight = False
        logger.debug("Duration poll failed: %s", exc)
