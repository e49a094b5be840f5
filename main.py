"""ClipFlow — headless session controller for the ClipFlow capture backend."""

import logging
import os
import signal
import sys

from PySide6.QtCore import QCoreApplication, QTimer

from clipflow.controller import SessionController
from clipflow.errors import GatewayUnavailable
from clipflow.gateway import ProcessGateway
from clipflow.preferences import Preferences
from clipflow.version import __version__

logging.basicConfig(
    level=logging.INFO,
    format="%(name)s | %(levelname)s | %(message)s",
)

_logger = logging.getLogger(__name__)


def _global_exception_handler(exc_type, exc_value, exc_tb):
    """Log unhandled exceptions instead of crashing silently."""
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)
        return
    _logger.critical("Unhandled exception", exc_info=(exc_type, exc_value, exc_tb))


def _resolve_backend(argv: list, prefs: Preferences) -> str:
    """Command line first, then $CLIPFLOW_BACKEND, then the saved setting."""
    if len(argv) > 1 and argv[1]:
        return argv[1]
    return os.environ.get("CLIPFLOW_BACKEND") or prefs.backend_path


def main() -> None:
    """Application entry point — starts the backend and runs the controller's event loop."""
    sys.excepthook = _global_exception_handler

    app = QCoreApplication(sys.argv)
    app.setApplicationName("ClipFlow")
    app.setOrganizationName("ClipFlow")
    app.setApplicationVersion(__version__)

    prefs = Preferences()
    backend = _resolve_backend(sys.argv, prefs)
    if not backend:
        _logger.error("No backend configured: pass a path or set CLIPFLOW_BACKEND")
        sys.exit(2)

    gateway = ProcessGateway(backend)
    try:
        gateway.start()
    except GatewayUnavailable as exc:
        _logger.error("%s", exc)
        sys.exit(1)

    controller = SessionController(gateway, prefs)
    controller.error.connect(lambda msg: _logger.error("%s", msg))
    controller.sync_lost.connect(lambda msg: _logger.warning("Out of sync: %s", msg))
    controller.session.lifecycle_changed.connect(
        lambda lc: _logger.info("Session is now %s", lc.value)
    )

    def _cleanup() -> None:
        controller.shutdown()
        gateway.close()
        prefs.sync()

    app.aboutToQuit.connect(_cleanup)

    # Ctrl+C quits cleanly; the timer lets Python see the signal while Qt loops
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    wake = QTimer()
    wake.timeout.connect(lambda: None)
    wake.start(250)

    controller.initialize()
    _logger.info("ClipFlow %s running | backend=%s", __version__, backend)
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
