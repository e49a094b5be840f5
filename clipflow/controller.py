"""Session controller: the single object presentation code talks to.

Builds every component around one gateway, owns the pushed-event
subscriptions for its whole lifetime, and funnels component errors into
one ``error`` signal.  The UI calls methods and listens to signals; it
never touches the gateway itself.
"""

import logging
from typing import List, Optional

from PySide6.QtCore import QObject, Signal

from .capture_settings import CaptureSettings
from .command_runner import CommandRunner, ThreadedCommandRunner
from .consistency import FullState, read_full_state
from .errors import describe
from .gateway import (
    EVENT_EXPORT_PROGRESS,
    EVENT_PREVIEW_PROGRESS,
    EVENT_RECORDING_STATE_CHANGED,
    EVENT_REGION_SELECTED,
    ServiceGateway,
    Subscription,
)
from .models import Lifecycle, PipelineKind
from .overlays import OverlayStore
from .pipeline import PipelineController
from .preferences import Preferences
from .projects import ProjectStore
from .region_bridge import RegionBridge
from .session import SessionStateMachine
from .timeline import TimelineStore

logger = logging.getLogger(__name__)


class SessionController(QObject):
    """Facade over the recording session, timeline, pipelines and projects."""

    error = Signal(str)
    sync_lost = Signal(str)
    state_refreshed = Signal()

    def __init__(
        self,
        gateway: ServiceGateway,
        preferences: Optional[Preferences] = None,
        runner: Optional[CommandRunner] = None,
        pipeline_runner: Optional[CommandRunner] = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._gateway = gateway
        self.preferences = preferences if preferences is not None else Preferences()
        self._runner = runner if runner is not None else ThreadedCommandRunner(self)
        self._pipeline_runner = (
            pipeline_runner if pipeline_runner is not None else ThreadedCommandRunner(self)
        )
        prefs = self.preferences

        self.timeline = TimelineStore(gateway, self._runner, parent=self)
        self.session = SessionStateMachine(
            gateway, self._runner,
            countdown_seconds=prefs.countdown_seconds,
            poll_interval_ms=prefs.poll_interval_ms,
            stop_read_back=self.timeline.read_snapshot,
            parent=self,
        )
        self.pipelines = PipelineController(
            gateway, self._pipeline_runner,
            lifecycle=lambda: self.session.lifecycle,
            clip_count=lambda: self.timeline.clip_count,
            timeout_s=prefs.pipeline_timeout_s,
            session_busy=lambda: self.session.is_busy,
            parent=self,
        )
        self.region = RegionBridge(gateway, self._runner, parent=self)
        self.projects = ProjectStore(
            gateway, self._runner, self.timeline,
            lifecycle=lambda: self.session.lifecycle,
            parent=self,
        )
        self.capture = CaptureSettings(gateway, self._runner, prefs, parent=self)
        self.overlays = OverlayStore(gateway, self._runner, parent=self)

        self.session.recorded_state.connect(self.timeline.adopt_snapshot)
        self.session.sync_lost.connect(self.timeline.mark_out_of_sync)
        self.timeline.clips_changed.connect(
            lambda clips: self.overlays.prune([c.id for c in clips])
        )
        self.projects.loaded.connect(self._on_project_loaded)

        for source in (self.session, self.timeline, self.region, self.projects,
                       self.capture, self.overlays):
            source.error.connect(self.error)
        self.pipelines.error.connect(
            lambda kind, msg: self.error.emit(f"{kind.value} failed: {msg}")
        )
        for store in (self.timeline, self.projects, self.overlays):
            store.sync_lost.connect(self.sync_lost)

        self._subscriptions: List[Subscription] = [
            gateway.subscribe(EVENT_REGION_SELECTED, self.region.on_region_selected),
            gateway.subscribe(EVENT_EXPORT_PROGRESS, self.pipelines.on_export_progress),
            gateway.subscribe(EVENT_PREVIEW_PROGRESS, self.pipelines.on_preview_progress),
            gateway.subscribe(EVENT_RECORDING_STATE_CHANGED, self._on_recording_state_changed),
        ]
        self._shut_down = False

    @property
    def gateway(self) -> ServiceGateway:
        return self._gateway

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down

    # ── startup / reconciliation ────────────────────────────────────

    def initialize(self) -> None:
        """First full read after the backend is up."""
        self.refresh_state()
        self.projects.refresh()
        self.capture.refresh()
        self.capture.ensure_ffmpeg()

    def refresh_state(self) -> None:
        """Re-read recording state, clips and transitions and adopt them."""
        self._runner.submit(
            lambda: read_full_state(self._gateway),
            on_done=self._on_full_state,
            on_failed=self._on_refresh_failed,
            label="refresh_state",
        )

    def _on_full_state(self, state: object) -> None:
        full: FullState = state  # type: ignore[assignment]
        self.session.reconcile(full.lifecycle)
        self.timeline.adopt(full.clips, full.transitions)
        self.overlays.refresh([c.id for c in full.clips])
        self.capture.sync_volumes()
        self.state_refreshed.emit()

    def _on_refresh_failed(self, exc: Exception) -> None:
        msg = describe(exc)
        logger.warning("State refresh failed | error=%s", msg)
        self.error.emit(f"refresh failed: {msg}")

    def _on_recording_state_changed(self, _payload: object) -> None:
        logger.info("Recording state changed by the service, reconciling")
        self.refresh_state()

    def _on_project_loaded(self, state: object) -> None:
        full: FullState = state  # type: ignore[assignment]
        self.session.reconcile(full.lifecycle)
        # Annotations and subtitles come with the project
        self.overlays.refresh([c.id for c in full.clips])

    # ── user actions ────────────────────────────────────────────────

    def toggle_recording(self) -> bool:
        """Record button / global hotkey."""
        if self.session.lifecycle is Lifecycle.IDLE and self.pipelines.is_running:
            logger.warning("Rejected start: a render is running")
            return False
        return self.session.toggle()

    def start_recording(self) -> bool:
        if self.pipelines.is_running:
            logger.warning("Rejected start: a render is running")
            return False
        return self.session.start()

    def pause_recording(self) -> bool:
        return self.session.pause()

    def resume_recording(self) -> bool:
        return self.session.resume()

    def stop_recording(self) -> bool:
        return self.session.stop()

    def cancel_recording(self) -> bool:
        return self.session.cancel()

    def set_countdown_seconds(self, seconds: int) -> None:
        seconds = max(0, int(seconds))
        self.preferences.countdown_seconds = seconds
        self.session.countdown_seconds = seconds

    def export(self) -> bool:
        prefs = self.preferences
        self.pipelines.timeout_s = prefs.pipeline_timeout_s
        return self.pipelines.export(prefs.watermark, prefs.export_format, prefs.export_quality)

    def preview(self) -> bool:
        self.pipelines.timeout_s = self.preferences.pipeline_timeout_s
        return self.pipelines.preview()

    def dismiss(self, kind: PipelineKind) -> bool:
        return self.pipelines.dismiss(kind)

    # ── teardown ────────────────────────────────────────────────────

    def shutdown(self) -> None:
        """Release subscriptions, stop timers and worker threads.  Idempotent."""
        if self._shut_down:
            return
        self._shut_down = True
        for sub in self._subscriptions:
            sub.release()
        self._subscriptions.clear()
        self.session.shutdown()
        self._runner.shutdown()
        self._pipeline_runner.shutdown()
        logger.info("Session controller shut down")
