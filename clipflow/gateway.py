"""Command/event gateway to the capture/export service.

:class:`ServiceGateway` defines the contract the session controller
depends on: blocking request/response commands (always invoked off the
GUI thread through a command runner) and pushed events delivered on
the GUI thread through scoped :class:`Subscription` handles.

:class:`ProcessGateway` is the concrete transport.  It spawns the
backend executable and speaks newline-delimited JSON over its
stdin/stdout::

    → {"id": 7, "command": "get_clips", "args": {}}
    ← {"id": 7, "ok": true, "result": [...]}
    ← {"id": 8, "ok": false, "error": "Clip not found: abc"}
    ← {"event": "export-progress", "payload": 42}

A reader thread resolves pending calls and publishes events; events are
marshalled onto the GUI thread by a queued Qt signal, so handlers see
them one at a time in arrival order.
"""

import itertools
import json
import logging
import subprocess
import threading
from typing import Callable, Dict, List, Optional

from PySide6.QtCore import QObject, Signal

from .errors import CommandRejected, GatewayError, GatewayTimeout, GatewayUnavailable
from .models import (
    Annotation,
    AudioSource,
    Clip,
    ExportFormat,
    ExportQuality,
    Lifecycle,
    ProjectSummary,
    Region,
    Subtitle,
    Transition,
    TransitionType,
    clips_from_wire,
    transitions_from_wire,
)
from .utils import subprocess_kwargs as _subprocess_kwargs

logger = logging.getLogger(__name__)

# Pushed event names
EVENT_REGION_SELECTED = "region-selected"
EVENT_EXPORT_PROGRESS = "export-progress"
EVENT_PREVIEW_PROGRESS = "preview-progress"
EVENT_RECORDING_STATE_CHANGED = "recording-state-changed"

DEFAULT_CALL_TIMEOUT_S = 10.0

EventHandler = Callable[[object], None]


class Subscription:
    """Handle for one event subscription.  ``release()`` is idempotent."""

    def __init__(self, gateway: "ServiceGateway", event: str, handler: EventHandler) -> None:
        self._gateway = gateway
        self.event = event
        self.handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def release(self) -> None:
        if self._active:
            self._active = False
            self._gateway._unsubscribe(self)


class ServiceGateway(QObject):
    """Abstract gateway.  Subclasses implement :meth:`call`."""

    # Emitted on the GUI thread after handlers have run
    event_received = Signal(str, object)

    # Internal: may be emitted from any thread, delivered on the GUI thread
    _event_posted = Signal(str, object)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._handlers: Dict[str, List[Subscription]] = {}
        self._event_posted.connect(self._dispatch)

    # ── events ──────────────────────────────────────────────────────

    def subscribe(self, event: str, handler: EventHandler) -> Subscription:
        """Register *handler* for *event* until the returned handle is released."""
        sub = Subscription(self, event, handler)
        self._handlers.setdefault(event, []).append(sub)
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        subs = self._handlers.get(sub.event, [])
        if sub in subs:
            subs.remove(sub)

    def subscriber_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    def publish(self, event: str, payload: object = None) -> None:
        """Deliver a pushed event.  Safe to call from any thread."""
        self._event_posted.emit(event, payload)

    def _dispatch(self, event: str, payload: object) -> None:
        for sub in list(self._handlers.get(event, [])):
            if not sub.active:
                continue
            try:
                sub.handler(payload)
            except Exception:
                logger.exception("Event handler failed | event=%s", event)
        self.event_received.emit(event, payload)

    # ── transport ───────────────────────────────────────────────────

    def call(self, command: str, args: Optional[dict] = None,
             timeout: Optional[float] = None) -> object:
        """Send *command* and block until its result.  Raises :class:`GatewayError`."""
        raise NotImplementedError

    def close(self) -> None:
        """Release transport resources."""

    # ── recording ───────────────────────────────────────────────────

    def start_recording(self) -> None:
        self.call("start_recording")

    def stop_recording(self) -> Clip:
        return Clip.from_dict(self.call("stop_recording"))

    def pause_recording(self) -> None:
        self.call("pause_recording")

    def resume_recording(self) -> None:
        self.call("resume_recording")

    def cancel_recording(self) -> None:
        self.call("cancel_recording")

    def get_recording_state(self) -> Lifecycle:
        return Lifecycle.from_wire(self.call("get_recording_state"))

    def get_recording_duration_ms(self) -> int:
        return int(self.call("get_recording_duration_ms") or 0)

    # ── timeline ────────────────────────────────────────────────────

    def get_clips(self) -> List[Clip]:
        return clips_from_wire(self.call("get_clips"))

    def get_transitions(self) -> List[Transition]:
        return transitions_from_wire(self.call("get_transitions"))

    def reorder_clips(self, clip_ids: List[str]) -> None:
        self.call("reorder_clips", {"clip_ids": list(clip_ids)})

    def delete_clip(self, clip_id: str) -> None:
        self.call("delete_clip", {"clip_id": clip_id})

    def set_transition(self, index: int, transition_type: TransitionType,
                       duration_s: Optional[float] = None) -> None:
        self.call("set_transition", {
            "index": index,
            "transition_type": transition_type.value,
            "duration_s": duration_s,
        })

    def set_all_transitions(self, transition_type: TransitionType) -> None:
        self.call("set_all_transitions", {"transition_type": transition_type.value})

    def set_clip_trim(self, clip_id: str, trim_start_ms: int,
                      trim_end_ms: Optional[int]) -> None:
        # The service uses 0 for "no end trim"
        self.call("set_clip_trim", {
            "clip_id": clip_id,
            "trim_start_ms": int(trim_start_ms),
            "trim_end_ms": int(trim_end_ms or 0),
        })

    def get_thumbnail_base64(self, clip_id: str) -> Optional[str]:
        """PNG thumbnail as a ``data:`` URI, or ``None`` when the clip has none."""
        result = self.call("get_thumbnail_base64", {"clip_id": clip_id})
        return str(result) if result else None

    # ── annotations / subtitles ─────────────────────────────────────

    def get_clip_annotations(self, clip_id: str) -> List[Annotation]:
        items = self.call("get_clip_annotations", {"clip_id": clip_id}) or []
        return [Annotation.from_dict(a) for a in items]

    def set_clip_annotations(self, clip_id: str, annotations: List[Annotation]) -> None:
        self.call("set_clip_annotations", {
            "clip_id": clip_id,
            "annotations": [a.to_dict() for a in annotations],
        })

    def get_subtitles(self) -> List[Subtitle]:
        return [Subtitle.from_dict(s) for s in self.call("get_subtitles") or []]

    def set_subtitles(self, subtitles: List[Subtitle]) -> None:
        self.call("set_subtitles", {"subtitles": [s.to_dict() for s in subtitles]})

    # ── pipelines ───────────────────────────────────────────────────

    def export_video(self, watermark: bool, fmt: ExportFormat, quality: ExportQuality,
                     timeout: Optional[float] = None) -> str:
        return str(self.call("export_video", {
            "watermark": watermark,
            "format": fmt.value,
            "quality": quality.value,
        }, timeout=timeout))

    def preview_video(self, timeout: Optional[float] = None) -> str:
        return str(self.call("preview_video", timeout=timeout))

    # ── projects ────────────────────────────────────────────────────

    def save_project(self, name: str) -> str:
        return str(self.call("save_project", {"name": name}))

    def load_project(self, project_id: str) -> None:
        self.call("load_project", {"project_id": project_id})

    def list_projects(self) -> List[ProjectSummary]:
        return [ProjectSummary.from_dict(p) for p in self.call("list_projects") or []]

    def delete_project(self, project_id: str) -> None:
        self.call("delete_project", {"project_id": project_id})

    # ── capture settings ────────────────────────────────────────────

    def open_region_selector(self) -> None:
        self.call("open_region_selector")

    def set_capture_region(self, region: Optional[Region]) -> None:
        self.call("set_capture_region", {"region": region.to_dict() if region else None})

    def set_audio_source(self, source: AudioSource) -> None:
        self.call("set_audio_source", {"source": source.value})

    def get_audio_source(self) -> AudioSource:
        return AudioSource(self.call("get_audio_source"))

    def set_selected_mic(self, device_name: Optional[str]) -> None:
        self.call("set_selected_mic", {"device_name": device_name})

    def set_audio_volumes(self, system_volume: float, mic_volume: float) -> None:
        self.call("set_audio_volumes", {
            "system_volume": system_volume,
            "mic_volume": mic_volume,
        })

    def toggle_keystroke_display(self) -> bool:
        return bool(self.call("toggle_keystroke_display"))

    def get_keystroke_enabled(self) -> bool:
        return bool(self.call("get_keystroke_enabled"))

    def toggle_cursor_zoom(self) -> bool:
        return bool(self.call("toggle_cursor_zoom"))

    def get_cursor_zoom_enabled(self) -> bool:
        return bool(self.call("get_cursor_zoom_enabled"))

    def ensure_ffmpeg(self) -> str:
        return str(self.call("ensure_ffmpeg", timeout=120.0))

    def copy_file_to_clipboard(self, path: str) -> None:
        self.call("copy_file_to_clipboard", {"path": path})


# ── wire codec ──────────────────────────────────────────────────────


def encode_request(request_id: int, command: str, args: Optional[dict] = None) -> str:
    """Serialize one request as a single JSON line (trailing newline included)."""
    return json.dumps({"id": request_id, "command": command, "args": args or {}}) + "\n"


def decode_message(line: str) -> dict:
    """Parse one line from the backend.  Raises ``ValueError`` on garbage."""
    msg = json.loads(line)
    if not isinstance(msg, dict):
        raise ValueError(f"Expected a JSON object, got {type(msg).__name__}")
    if "id" not in msg and "event" not in msg:
        raise ValueError("Message has neither 'id' nor 'event'")
    return msg


class _PendingCall:
    """A request waiting for its response line."""

    def __init__(self, command: str) -> None:
        self.command = command
        self.done = threading.Event()
        self.result: object = None
        self.error: Optional[GatewayError] = None

    def resolve(self, msg: dict) -> None:
        if msg.get("ok", False):
            self.result = msg.get("result")
        else:
            self.error = CommandRejected(str(msg.get("error") or "Command failed"), self.command)
        self.done.set()

    def fail(self, error: GatewayError) -> None:
        self.error = error
        self.done.set()


class ProcessGateway(ServiceGateway):
    """Gateway backed by a child process speaking JSON lines on stdio."""

    def __init__(
        self,
        executable: str,
        extra_args: Optional[List[str]] = None,
        call_timeout_s: float = DEFAULT_CALL_TIMEOUT_S,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._executable = executable
        self._extra_args = list(extra_args or [])
        self._call_timeout_s = call_timeout_s
        self._proc: Optional[subprocess.Popen] = None
        self._ids = itertools.count(1)
        self._pending: Dict[int, _PendingCall] = {}
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._reader: Optional[threading.Thread] = None
        self._stderr_reader: Optional[threading.Thread] = None

    # ── lifecycle ───────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def start(self) -> None:
        """Spawn the backend process and its reader threads."""
        if self.is_running:
            return
        cmd = [self._executable] + self._extra_args
        try:
            self._proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                bufsize=1,
                **_subprocess_kwargs(),
            )
        except OSError as exc:
            raise GatewayUnavailable(f"Cannot start backend {self._executable}: {exc}") from exc
        logger.info("Backend started | pid=%d | exe=%s", self._proc.pid, self._executable)

        self._reader = threading.Thread(target=self._read_stdout, name="clipflow-gateway", daemon=True)
        self._reader.start()
        self._stderr_reader = threading.Thread(target=self._read_stderr, name="clipflow-gateway-err", daemon=True)
        self._stderr_reader.start()

    def close(self) -> None:
        """Terminate the backend and fail any outstanding calls."""
        proc = self._proc
        if proc is None:
            return
        try:
            if proc.stdin:
                proc.stdin.close()
        except OSError:
            pass
        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=2)
            except subprocess.TimeoutExpired:
                logger.warning("Backend did not exit, killing | pid=%d", proc.pid)
                proc.kill()
                proc.wait(timeout=2)
        self._fail_all(GatewayUnavailable("Backend closed"))
        self._proc = None
        logger.info("Backend stopped")

    # ── request / response ──────────────────────────────────────────

    def call(self, command: str, args: Optional[dict] = None,
             timeout: Optional[float] = None) -> object:
        proc = self._proc
        if proc is None or proc.poll() is not None or proc.stdin is None:
            raise GatewayUnavailable("Backend is not running", command)

        request_id = next(self._ids)
        pending = _PendingCall(command)
        with self._lock:
            self._pending[request_id] = pending

        line = encode_request(request_id, command, args)
        try:
            with self._write_lock:
                proc.stdin.write(line)
                proc.stdin.flush()
        except (OSError, ValueError) as exc:
            with self._lock:
                self._pending.pop(request_id, None)
            raise GatewayUnavailable(f"Backend pipe closed: {exc}", command) from exc

        wait_s = self._call_timeout_s if timeout is None else timeout
        if not pending.done.wait(wait_s):
            with self._lock:
                self._pending.pop(request_id, None)
            raise GatewayTimeout(f"{command} timed out after {wait_s:.0f}s", command)

        if pending.error is not None:
            raise pending.error
        return pending.result

    # ── reader threads ──────────────────────────────────────────────

    def _read_stdout(self) -> None:
        proc = self._proc
        if proc is None or proc.stdout is None:
            return
        for raw in proc.stdout:
            line = raw.strip()
            if not line:
                continue
            try:
                msg = decode_message(line)
            except ValueError as exc:
                logger.warning("Unparseable backend line: %s (%s)", line[:200], exc)
                continue
            self._handle_message(msg)
        code = proc.poll()
        logger.info("Backend stdout closed | returncode=%s", code)
        self._fail_all(GatewayUnavailable("Backend exited"))

    def _read_stderr(self) -> None:
        proc = self._proc
        if proc is None or proc.stderr is None:
            return
        for raw in proc.stderr:
            line = raw.rstrip()
            if line:
                logger.info("backend | %s", line)

    def _handle_message(self, msg: dict) -> None:
        if "id" in msg:
            with self._lock:
                pending = self._pending.pop(msg["id"], None)
            if pending is None:
                logger.debug("Response for unknown request id=%s", msg["id"])
                return
            pending.resolve(msg)
        else:
            self.publish(str(msg["event"]), msg.get("payload"))

    def _fail_all(self, error: GatewayError) -> None:
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for p in pending:
            p.fail(error)
