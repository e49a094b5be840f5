"""Hands capture regions from the detached selector surface back to the session."""

import logging
from typing import Optional

from PySide6.QtCore import QObject, Signal

from .command_runner import CommandRunner
from .errors import describe
from .gateway import ServiceGateway
from .models import Region

logger = logging.getLogger(__name__)


class RegionBridge(QObject):
    """Current capture region, replaced wholesale by each selection.

    ``None`` means the full screen.  The region is only replaced after
    the service has accepted it.
    """

    region_changed = Signal(object)  # Optional[Region]
    error = Signal(str)

    def __init__(self, gateway: ServiceGateway, runner: CommandRunner,
                 parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._gateway = gateway
        self._runner = runner
        self._region: Optional[Region] = None

    @property
    def region(self) -> Optional[Region]:
        return self._region

    def open_selector(self) -> None:
        """Ask the service to show the selection surface (fire-and-forget)."""
        self._runner.submit(
            self._gateway.open_region_selector,
            on_failed=lambda exc: self._on_failed("open_region_selector", exc),
            label="open_region_selector",
        )

    def on_region_selected(self, payload: object) -> None:
        """Handler for the ``region-selected`` event."""
        try:
            region = Region.from_dict(payload)  # type: ignore[arg-type]
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Ignoring malformed region payload %r (%s)", payload, exc)
            return
        self.set_region(region)

    def set_region(self, region: Region) -> None:
        aligned = region.aligned()
        if aligned.width <= 0 or aligned.height <= 0:
            logger.warning("Ignoring empty region | %s", aligned)
            return
        self._send(aligned)

    def clear(self) -> None:
        """Go back to capturing the full screen."""
        self._send(None)

    def _send(self, region: Optional[Region]) -> None:
        self._runner.submit(
            lambda: self._gateway.set_capture_region(region),
            on_done=lambda _r: self._apply(region),
            on_failed=lambda exc: self._on_failed("set_capture_region", exc),
            label="set_capture_region",
        )

    def _apply(self, region: Optional[Region]) -> None:
        self._region = region
        if region is None:
            logger.info("Capture region cleared")
        else:
            logger.info("Capture region | x=%d | y=%d | w=%d | h=%d",
                        region.x, region.y, region.width, region.height)
        self.region_changed.emit(region)

    def _on_failed(self, command: str, exc: Exception) -> None:
        msg = describe(exc)
        logger.warning("%s failed | error=%s", command, msg)
        self.error.emit(f"{command} failed: {msg}")
