"""Export and preview render runs.

Each kind has its own :class:`~clipflow.models.PipelineRun`::

    Idle ──start──► Running ──response──► Succeeded
                       └────error/timeout──► Failed

Only one run of either kind may be active, and none while a recording
is in progress or a session command is still in flight.  Progress is
pushed by the service as events; the command's own response is the
terminal signal.  Renders are slow, so they go through a separate
command runner and never hold up the timeline's queue.
"""

import logging
from dataclasses import replace
from typing import Callable, Dict, Optional

from PySide6.QtCore import QObject, Signal

from .command_runner import CommandRunner
from .errors import describe
from .gateway import ServiceGateway
from .models import (
    DEFAULT_PIPELINE_TIMEOUT_S,
    ExportFormat,
    ExportQuality,
    Lifecycle,
    PipelineKind,
    PipelineRun,
    PipelineStatus,
)
from .utils import extract_filename

logger = logging.getLogger(__name__)


class PipelineController(QObject):
    """Runs export / preview renders with pushed progress."""

    run_changed = Signal(object)         # PipelineRun snapshot
    progress = Signal(object, int)       # kind, 0-100
    finished = Signal(object, str)       # kind, output path
    error = Signal(object, str)          # kind, message

    def __init__(
        self,
        gateway: ServiceGateway,
        runner: CommandRunner,
        lifecycle: Callable[[], Lifecycle],
        clip_count: Callable[[], int],
        timeout_s: float = DEFAULT_PIPELINE_TIMEOUT_S,
        session_busy: Optional[Callable[[], bool]] = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._gateway = gateway
        self._runner = runner
        self._lifecycle = lifecycle
        self._clip_count = clip_count
        self._session_busy = session_busy
        self.timeout_s = timeout_s
        self._runs: Dict[PipelineKind, PipelineRun] = {
            kind: PipelineRun(kind) for kind in PipelineKind
        }

    # ── read access ─────────────────────────────────────────────────

    def run(self, kind: PipelineKind) -> PipelineRun:
        """A copy of the run state for *kind*."""
        return replace(self._runs[kind])

    @property
    def is_running(self) -> bool:
        return any(r.is_running for r in self._runs.values())

    # ── requests ────────────────────────────────────────────────────

    def export(self, watermark: bool = True, fmt: ExportFormat = ExportFormat.MP4,
               quality: ExportQuality = ExportQuality.MEDIUM) -> bool:
        timeout = self.timeout_s
        logger.info("Export requested | format=%s | quality=%s | watermark=%s",
                    fmt.value, quality.value, watermark)
        return self._start(
            PipelineKind.EXPORT,
            lambda: self._gateway.export_video(watermark, fmt, quality, timeout=timeout),
        )

    def preview(self) -> bool:
        timeout = self.timeout_s
        return self._start(
            PipelineKind.PREVIEW,
            lambda: self._gateway.preview_video(timeout=timeout),
        )

    def dismiss(self, kind: PipelineKind) -> bool:
        """Return a finished run to Idle."""
        run = self._runs[kind]
        if run.status not in (PipelineStatus.SUCCEEDED, PipelineStatus.FAILED):
            return False
        run.reset()
        self.run_changed.emit(replace(run))
        return True

    # ── pushed progress ─────────────────────────────────────────────

    def on_export_progress(self, payload: object) -> None:
        self._on_progress(PipelineKind.EXPORT, payload)

    def on_preview_progress(self, payload: object) -> None:
        self._on_progress(PipelineKind.PREVIEW, payload)

    # ── internals ───────────────────────────────────────────────────

    def _rejection(self) -> Optional[str]:
        if self._clip_count() <= 0:
            return "no clips on the timeline"
        lifecycle = self._lifecycle()
        if lifecycle is not Lifecycle.IDLE:
            return f"session is {lifecycle.value}"
        if self._session_busy is not None and self._session_busy():
            # Idle on paper, but a start or stop is still with the service
            return "a session command is in flight"
        for other in self._runs.values():
            if other.is_running:
                return f"{other.kind.value} already running"
        return None

    def _start(self, kind: PipelineKind, task: Callable[[], str]) -> bool:
        reason = self._rejection()
        if reason is not None:
            logger.warning("Rejected %s: %s", kind.value, reason)
            return False

        run = self._runs[kind]
        run.reset()
        run.status = PipelineStatus.RUNNING
        self.run_changed.emit(replace(run))
        logger.info("%s started", kind.value.capitalize())

        self._runner.submit(
            task,
            on_done=lambda path: self._on_finished(kind, path),
            on_failed=lambda exc: self._on_failed(kind, exc),
            label=f"{kind.value}_video",
        )
        return True

    def _on_progress(self, kind: PipelineKind, payload: object) -> None:
        run = self._runs[kind]
        if not run.is_running:
            return
        try:
            value = int(payload)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            logger.debug("Ignoring malformed %s progress: %r", kind.value, payload)
            return
        value = max(0, min(100, value))
        if value == run.progress:
            return
        run.progress = value
        self.progress.emit(kind, value)
        self.run_changed.emit(replace(run))

    def _on_finished(self, kind: PipelineKind, path: object) -> None:
        run = self._runs[kind]
        run.status = PipelineStatus.SUCCEEDED
        run.progress = 100
        run.result_path = str(path)
        logger.info("%s finished | file=%s", kind.value.capitalize(), extract_filename(run.result_path))
        self.run_changed.emit(replace(run))
        self.finished.emit(kind, run.result_path)

    def _on_failed(self, kind: PipelineKind, exc: Exception) -> None:
        run = self._runs[kind]
        run.status = PipelineStatus.FAILED
        run.error_message = describe(exc)
        logger.error("%s failed: %s", kind.value.capitalize(), run.error_message)
        self.run_changed.emit(replace(run))
        self.error.emit(kind, run.error_message)
