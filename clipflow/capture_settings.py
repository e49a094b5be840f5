"""Audio, overlay and encoder settings that the service applies while capturing."""

import logging
from typing import Optional

from PySide6.QtCore import QObject, Signal

from .command_runner import CommandRunner
from .errors import describe
from .gateway import ServiceGateway
from .models import VOLUME_MAX, VOLUME_MIN, AudioSource
from .preferences import Preferences
from .utils import clamp

logger = logging.getLogger(__name__)


class CaptureSettings(QObject):
    """Caches the capture options last confirmed by the service."""

    changed = Signal()
    ffmpeg_status_changed = Signal(bool, str)  # ready, error text ("" when ready)
    error = Signal(str)

    def __init__(self, gateway: ServiceGateway, runner: CommandRunner,
                 preferences: Preferences, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._gateway = gateway
        self._runner = runner
        self._prefs = preferences

        self.audio_source: AudioSource = preferences.audio_source
        self.selected_mic: Optional[str] = None
        self.keystroke_enabled: bool = False
        self.cursor_zoom_enabled: bool = False
        self.ffmpeg_ready: bool = False
        self.ffmpeg_error: Optional[str] = None

    @property
    def system_volume(self) -> float:
        return self._prefs.system_volume

    @property
    def mic_volume(self) -> float:
        return self._prefs.mic_volume

    def refresh(self) -> None:
        """Read back the settings the service keeps across controller restarts."""
        def read() -> tuple:
            return (
                self._gateway.get_audio_source(),
                self._gateway.get_keystroke_enabled(),
                self._gateway.get_cursor_zoom_enabled(),
            )

        def apply(result: object) -> None:
            source, keystroke, cursor_zoom = result  # type: ignore[misc]
            self.audio_source = source
            self._prefs.audio_source = source
            self.keystroke_enabled = keystroke
            self.cursor_zoom_enabled = cursor_zoom
            self.changed.emit()

        self._submit("refresh_capture_settings", read, apply)

    # ── audio ───────────────────────────────────────────────────────

    def set_audio_source(self, source: AudioSource) -> None:
        def apply(_r: object) -> None:
            self.audio_source = source
            self._prefs.audio_source = source
            self.changed.emit()

        self._submit("set_audio_source", lambda: self._gateway.set_audio_source(source), apply)

    def set_selected_mic(self, device_name: Optional[str]) -> None:
        def apply(_r: object) -> None:
            self.selected_mic = device_name
            self.changed.emit()

        self._submit("set_selected_mic", lambda: self._gateway.set_selected_mic(device_name), apply)

    def set_system_volume(self, volume: float) -> None:
        self._prefs.system_volume = clamp(volume, VOLUME_MIN, VOLUME_MAX)
        self.changed.emit()
        self._push_volumes(report=True)

    def set_mic_volume(self, volume: float) -> None:
        self._prefs.mic_volume = clamp(volume, VOLUME_MIN, VOLUME_MAX)
        self.changed.emit()
        self._push_volumes(report=True)

    def sync_volumes(self) -> None:
        """Push the persisted volumes; failures are only logged."""
        self._push_volumes(report=False)

    def _push_volumes(self, report: bool) -> None:
        system, mic = self._prefs.system_volume, self._prefs.mic_volume
        on_failed = None if report else (
            lambda exc: logger.debug("Volume sync failed: %s", exc)
        )
        self._submit(
            "set_audio_volumes",
            lambda: self._gateway.set_audio_volumes(system, mic),
            on_failed=on_failed,
        )

    # ── overlays ────────────────────────────────────────────────────

    def toggle_keystroke(self) -> None:
        def apply(enabled: object) -> None:
            self.keystroke_enabled = bool(enabled)
            self.changed.emit()

        self._submit("toggle_keystroke_display", self._gateway.toggle_keystroke_display, apply)

    def toggle_cursor_zoom(self) -> None:
        def apply(enabled: object) -> None:
            self.cursor_zoom_enabled = bool(enabled)
            self.changed.emit()

        self._submit("toggle_cursor_zoom", self._gateway.toggle_cursor_zoom, apply)

    # ── encoder / clipboard ─────────────────────────────────────────

    def ensure_ffmpeg(self) -> None:
        def done(path: object) -> None:
            self.ffmpeg_ready = True
            self.ffmpeg_error = None
            logger.info("FFmpeg ready | path=%s", path)
            self.ffmpeg_status_changed.emit(True, "")

        def failed(exc: Exception) -> None:
            self.ffmpeg_ready = False
            self.ffmpeg_error = describe(exc)
            logger.error("FFmpeg init failed: %s", self.ffmpeg_error)
            self.ffmpeg_status_changed.emit(False, self.ffmpeg_error)

        self.ffmpeg_error = None
        self._submit("ensure_ffmpeg", self._gateway.ensure_ffmpeg, done, failed)

    def copy_to_clipboard(self, path: str) -> None:
        self._submit("copy_file_to_clipboard", lambda: self._gateway.copy_file_to_clipboard(path))

    # ── internals ───────────────────────────────────────────────────

    def _submit(self, command: str, task, on_done=None, on_failed=None) -> None:
        self._runner.submit(
            task,
            on_done=on_done,
            on_failed=on_failed or (lambda exc: self._on_failed(command, exc)),
            label=command,
        )

    def _on_failed(self, command: str, exc: Exception) -> None:
        msg = describe(exc)
        logger.warning("%s failed | error=%s", command, msg)
        self.error.emit(f"{command} failed: {msg}")
