"""Shared pytest fixtures for ClipFlow tests."""

import itertools
from typing import Callable, Dict, List, Optional, Tuple

import pytest
from PySide6.QtCore import QCoreApplication, QSettings

from clipflow.command_runner import CommandRunner, InlineCommandRunner, Task
from clipflow.errors import CommandRejected, GatewayError
from clipflow.gateway import EVENT_EXPORT_PROGRESS, EVENT_PREVIEW_PROGRESS, ServiceGateway
from clipflow.preferences import Preferences


# ── Qt application ──────────────────────────────────────────────────

@pytest.fixture(scope="session", autouse=True)
def qapp() -> QCoreApplication:
    """One QCoreApplication for the whole run (QTimer needs it)."""
    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication([])
    return app


# ── In-memory service ───────────────────────────────────────────────


class FakeService(ServiceGateway):
    """Gateway that keeps the service's state in plain dicts.

    Every call is logged in ``calls``.  Put an exception in
    ``failures[command]`` to make that command fail until removed.
    """

    def __init__(self) -> None:
        super().__init__()
        self.calls: List[Tuple[str, dict]] = []
        self.failures: Dict[str, GatewayError] = {}
        self.state = "idle"
        self.duration_ms = 0
        self.clips: List[dict] = []
        self.transitions: List[dict] = []
        self.projects: Dict[str, dict] = {}
        self.region: Optional[dict] = None
        self.audio_source = "none"
        self.selected_mic: Optional[str] = None
        self.volumes = (1.0, 1.0)
        self.keystroke = False
        self.cursor_zoom = False
        self.export_progress: List[int] = [25, 60]
        self.annotations: Dict[str, List[dict]] = {}
        self.subtitles: List[dict] = []
        self.thumbnails: Dict[str, str] = {}
        self._clip_ids = itertools.count(1)
        self._project_ids = itertools.count(1)

    # ── helpers for tests ───────────────────────────────────────────

    def add_clip(self, duration_ms: int = 4000) -> dict:
        n = next(self._clip_ids)
        clip = {
            "id": f"clip-{n}",
            "path": f"/tmp/clip-{n}.mp4",
            "duration_ms": duration_ms,
            "region": {"x": 0, "y": 0, "width": 1920, "height": 1080},
            "has_audio": False,
            "thumbnail_path": None,
            "trim_start_ms": 0,
            "trim_end_ms": 0,
        }
        self.clips.append(clip)
        if len(self.clips) > 1:
            self.transitions.append({"transition_type": "fade", "duration_s": 0.5})
        return clip

    def commands(self) -> List[str]:
        return [c for c, _ in self.calls]

    def count(self, command: str) -> int:
        return self.commands().count(command)

    # ── transport ───────────────────────────────────────────────────

    def call(self, command: str, args: Optional[dict] = None,
             timeout: Optional[float] = None) -> object:
        args = args or {}
        self.calls.append((command, args))
        if command in self.failures:
            raise self.failures[command]
        handler: Optional[Callable[..., object]] = getattr(self, "_cmd_" + command, None)
        if handler is None:
            raise CommandRejected(f"Unknown command: {command}", command)
        return handler(**args)

    # ── recording ───────────────────────────────────────────────────

    def _cmd_start_recording(self) -> None:
        if self.state != "idle":
            raise CommandRejected("Already recording", "start_recording")
        self.state = "recording"
        self.duration_ms = 0

    def _cmd_pause_recording(self) -> None:
        self.state = "paused"

    def _cmd_resume_recording(self) -> None:
        self.state = "recording"

    def _cmd_stop_recording(self) -> dict:
        self.state = "idle"
        return self.add_clip(max(self.duration_ms, 1000))

    def _cmd_cancel_recording(self) -> None:
        self.state = "idle"
        self.duration_ms = 0

    def _cmd_get_recording_state(self) -> str:
        return self.state

    def _cmd_get_recording_duration_ms(self) -> int:
        return self.duration_ms

    # ── timeline ────────────────────────────────────────────────────

    def _cmd_get_clips(self) -> List[dict]:
        return [dict(c) for c in self.clips]

    def _cmd_get_transitions(self) -> List[dict]:
        return [dict(t) for t in self.transitions]

    def _cmd_reorder_clips(self, clip_ids: List[str]) -> None:
        by_id = {c["id"]: c for c in self.clips}
        self.clips = [by_id[i] for i in clip_ids]

    def _cmd_delete_clip(self, clip_id: str) -> None:
        index = next(i for i, c in enumerate(self.clips) if c["id"] == clip_id)
        self.clips.pop(index)
        if self.transitions:
            self.transitions.pop(min(index, len(self.transitions) - 1))

    def _cmd_set_clip_trim(self, clip_id: str, trim_start_ms: int, trim_end_ms: int) -> None:
        for c in self.clips:
            if c["id"] == clip_id:
                c["trim_start_ms"] = trim_start_ms
                c["trim_end_ms"] = trim_end_ms

    def _cmd_set_transition(self, index: int, transition_type: str,
                            duration_s: Optional[float] = None) -> None:
        entry = {"transition_type": transition_type}
        if duration_s is not None:
            entry["duration_s"] = duration_s
        self.transitions[index] = entry

    def _cmd_set_all_transitions(self, transition_type: str) -> None:
        self.transitions = [{"transition_type": transition_type} for _ in self.transitions]

    def _cmd_get_thumbnail_base64(self, clip_id: str) -> Optional[str]:
        return self.thumbnails.get(clip_id)

    # ── annotations / subtitles ─────────────────────────────────────

    def _cmd_get_clip_annotations(self, clip_id: str) -> List[dict]:
        return [dict(a) for a in self.annotations.get(clip_id, [])]

    def _cmd_set_clip_annotations(self, clip_id: str, annotations: List[dict]) -> None:
        self.annotations[clip_id] = [dict(a) for a in annotations]

    def _cmd_get_subtitles(self) -> List[dict]:
        return [dict(s) for s in self.subtitles]

    def _cmd_set_subtitles(self, subtitles: List[dict]) -> None:
        self.subtitles = [dict(s) for s in subtitles]

    # ── pipelines ───────────────────────────────────────────────────

    def _cmd_export_video(self, watermark: bool, format: str, quality: str) -> str:
        for pct in self.export_progress:
            self.publish(EVENT_EXPORT_PROGRESS, pct)
        return f"/tmp/export.{format}"

    def _cmd_preview_video(self) -> str:
        self.publish(EVENT_PREVIEW_PROGRESS, 50)
        return "/tmp/preview.mp4"

    # ── projects ────────────────────────────────────────────────────

    def _cmd_save_project(self, name: str) -> str:
        pid = f"proj-{next(self._project_ids)}"
        self.projects[pid] = {
            "name": name,
            "clips": [dict(c) for c in self.clips],
            "transitions": [dict(t) for t in self.transitions],
            "annotations": {k: [dict(a) for a in v] for k, v in self.annotations.items()},
            "subtitles": [dict(s) for s in self.subtitles],
        }
        return pid

    def _cmd_load_project(self, project_id: str) -> None:
        if project_id not in self.projects:
            raise CommandRejected(f"Project not found: {project_id}", "load_project")
        proj = self.projects[project_id]
        self.clips = [dict(c) for c in proj["clips"]]
        self.transitions = [dict(t) for t in proj["transitions"]]
        self.annotations = {k: [dict(a) for a in v] for k, v in proj["annotations"].items()}
        self.subtitles = [dict(s) for s in proj["subtitles"]]

    def _cmd_list_projects(self) -> List[dict]:
        return [
            {
                "id": pid,
                "name": p["name"],
                "created_at": "2026-01-01T00:00:00Z",
                "updated_at": "2026-01-01T00:00:00Z",
                "clip_count": len(p["clips"]),
                "total_duration_ms": sum(c["duration_ms"] for c in p["clips"]),
            }
            for pid, p in self.projects.items()
        ]

    def _cmd_delete_project(self, project_id: str) -> None:
        self.projects.pop(project_id, None)

    # ── capture settings ────────────────────────────────────────────

    def _cmd_open_region_selector(self) -> None:
        pass

    def _cmd_set_capture_region(self, region: Optional[dict]) -> None:
        self.region = region

    def _cmd_set_audio_source(self, source: str) -> None:
        self.audio_source = source

    def _cmd_get_audio_source(self) -> str:
        return self.audio_source

    def _cmd_set_selected_mic(self, device_name: Optional[str]) -> None:
        self.selected_mic = device_name

    def _cmd_set_audio_volumes(self, system_volume: float, mic_volume: float) -> None:
        self.volumes = (system_volume, mic_volume)

    def _cmd_toggle_keystroke_display(self) -> bool:
        self.keystroke = not self.keystroke
        return self.keystroke

    def _cmd_get_keystroke_enabled(self) -> bool:
        return self.keystroke

    def _cmd_toggle_cursor_zoom(self) -> bool:
        self.cursor_zoom = not self.cursor_zoom
        return self.cursor_zoom

    def _cmd_get_cursor_zoom_enabled(self) -> bool:
        return self.cursor_zoom

    def _cmd_ensure_ffmpeg(self) -> str:
        return "/usr/bin/ffmpeg"

    def _cmd_copy_file_to_clipboard(self, path: str) -> None:
        pass


class DeferredRunner(CommandRunner):
    """Queues tasks until the test calls ``drain()`` / ``run_next()``."""

    def __init__(self) -> None:
        super().__init__()
        self.queue: List[Tuple[int, Task]] = []

    def _execute(self, ticket: int, task: Task) -> None:
        self.queue.append((ticket, task))

    def run_next(self) -> None:
        ticket, task = self.queue.pop(0)
        try:
            result = task()
        except Exception as exc:
            self._on_failed(ticket, exc)
            return
        self._on_done(ticket, result)

    def drain(self) -> None:
        while self.queue:
            self.run_next()


# ── Fixtures ────────────────────────────────────────────────────────

@pytest.fixture
def service() -> FakeService:
    return FakeService()


@pytest.fixture
def timeline_service(service: FakeService) -> FakeService:
    """Service holding 4 clips (3 fade gaps)."""
    for duration in (3000, 4000, 5000, 6000):
        service.add_clip(duration)
    return service


@pytest.fixture
def runner() -> InlineCommandRunner:
    return InlineCommandRunner()


@pytest.fixture
def deferred() -> DeferredRunner:
    return DeferredRunner()


@pytest.fixture
def prefs(tmp_path) -> Preferences:
    """Preferences backed by a throwaway INI file."""
    settings = QSettings(str(tmp_path / "clipflow.ini"), QSettings.Format.IniFormat)
    return Preferences(settings)


@pytest.fixture
def capture_signal():
    """Return a factory that records every emission of a signal."""
    def _capture(signal) -> list:
        seen: list = []
        signal.connect(lambda *args: seen.append(args[0] if len(args) == 1 else args))
        return seen
    return _capture
