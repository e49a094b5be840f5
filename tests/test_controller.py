"""Tests for clipflow.controller and clipflow.pipeline — wiring, pipelines, events."""

import pytest

from clipflow.command_runner import InlineCommandRunner
from clipflow.controller import SessionController
from clipflow.errors import CommandRejected, GatewayTimeout, GatewayUnavailable
from clipflow.gateway import (
    EVENT_EXPORT_PROGRESS,
    EVENT_PREVIEW_PROGRESS,
    EVENT_RECORDING_STATE_CHANGED,
    EVENT_REGION_SELECTED,
)
from clipflow.models import (
    AudioSource,
    ExportFormat,
    ExportQuality,
    Lifecycle,
    PipelineKind,
    PipelineStatus,
)


def _arrow(ann_id: str) -> dict:
    return {"id": ann_id, "kind": "arrow", "x": 0.1, "y": 0.1, "width": 0.2, "height": 0.2,
            "color": "#ef4444", "stroke_width": 3.0, "text": None, "points": None,
            "start_ms": 0, "end_ms": 1000}


def _caption(sub_id: str) -> dict:
    return {"id": sub_id, "text": "Hello", "start_ms": 0, "end_ms": 2000,
            "position": "bottom", "font_size": 32, "color": "#ffffff"}


def _controller(service, prefs, runner=None, pipeline_runner=None) -> SessionController:
    prefs.countdown_seconds = 0
    ctl = SessionController(
        service, prefs,
        runner=runner or InlineCommandRunner(),
        pipeline_runner=pipeline_runner or InlineCommandRunner(),
    )
    return ctl


@pytest.fixture
def controller(timeline_service, prefs):
    ctl = _controller(timeline_service, prefs)
    ctl.initialize()
    timeline_service.calls.clear()
    yield ctl
    ctl.shutdown()


# ── startup / reconciliation ────────────────────────────────────────


class TestInitialize:
    def test_initial_full_read(self, timeline_service, prefs) -> None:
        ctl = _controller(timeline_service, prefs)
        ctl.initialize()
        cmds = timeline_service.commands()
        assert cmds[:3] == ["get_recording_state", "get_clips", "get_transitions"]
        assert "set_audio_volumes" in cmds
        assert "list_projects" in cmds
        assert "ensure_ffmpeg" in cmds
        assert ctl.timeline.clip_count == 4
        assert ctl.capture.ffmpeg_ready
        ctl.shutdown()

    def test_adopts_service_recording(self, timeline_service, prefs) -> None:
        timeline_service.state = "recording"
        ctl = _controller(timeline_service, prefs)
        ctl.initialize()
        assert ctl.session.lifecycle is Lifecycle.RECORDING
        ctl.shutdown()

    def test_recording_state_event_reconciles(self, controller, timeline_service) -> None:
        controller.toggle_recording()
        assert controller.session.lifecycle is Lifecycle.RECORDING
        # stopped from a global hotkey inside the service
        timeline_service.state = "idle"
        timeline_service.publish(EVENT_RECORDING_STATE_CHANGED, "idle")
        assert controller.session.lifecycle is Lifecycle.IDLE

    def test_capture_settings_read_from_service(self, timeline_service, prefs) -> None:
        timeline_service.keystroke = True
        timeline_service.cursor_zoom = True
        timeline_service.audio_source = "both"
        ctl = _controller(timeline_service, prefs)
        ctl.initialize()
        assert ctl.capture.keystroke_enabled is True
        assert ctl.capture.cursor_zoom_enabled is True
        assert ctl.capture.audio_source is AudioSource.BOTH
        assert prefs.audio_source is AudioSource.BOTH
        ctl.shutdown()

    def test_overlays_read_with_full_state(self, timeline_service, prefs) -> None:
        timeline_service.annotations["clip-2"] = [_arrow("a1")]
        timeline_service.subtitles = [_caption("s1")]
        ctl = _controller(timeline_service, prefs)
        ctl.initialize()
        assert [a.id for a in ctl.overlays.annotations("clip-2")] == ["a1"]
        assert [s.id for s in ctl.overlays.subtitles] == ["s1"]
        ctl.shutdown()

    def test_refresh_failure_reports_error(self, controller, timeline_service, capture_signal) -> None:
        errors = capture_signal(controller.error)
        timeline_service.failures["get_recording_state"] = GatewayTimeout("slow", "get_recording_state")
        controller.refresh_state()
        assert errors and "refresh failed" in errors[0]


class TestRecording:
    def test_stop_refreshes_timeline(self, controller, timeline_service) -> None:
        controller.toggle_recording()
        timeline_service.duration_ms = 2000
        controller.toggle_recording()
        assert controller.timeline.clip_count == 5
        assert len(controller.timeline.transitions) == 4
        assert timeline_service.commands()[-2:] == ["get_clips", "get_transitions"]

    def test_stop_and_refetch_are_one_task(self, timeline_service, prefs, deferred) -> None:
        ctl = _controller(timeline_service, prefs, runner=deferred)
        ctl.initialize()
        deferred.drain()
        ctl.start_recording()
        deferred.drain()
        timeline_service.calls.clear()

        assert ctl.stop_recording() is True
        assert len(deferred.queue) == 1
        deferred.run_next()
        assert timeline_service.commands() == ["stop_recording", "get_clips", "get_transitions"]
        assert ctl.timeline.clip_count == 5
        assert deferred.queue == []
        ctl.shutdown()

    def test_refetch_failure_after_stop_is_sync_loss(self, controller, timeline_service,
                                                     capture_signal) -> None:
        errors = capture_signal(controller.error)
        lost = capture_signal(controller.sync_lost)
        recorded = capture_signal(controller.session.clip_recorded)
        controller.start_recording()
        timeline_service.failures["get_clips"] = GatewayUnavailable("pipe broke", "get_clips")

        assert controller.stop_recording() is True

        assert controller.session.lifecycle is Lifecycle.IDLE
        assert not controller.session.is_busy
        assert controller.timeline.out_of_sync
        assert len(lost) == 1
        assert "stop_recording" in lost[0] and "pipe broke" in lost[0]
        assert errors == []
        assert [c.id for c in recorded] == ["clip-5"]
        assert controller.timeline.clip_count == 4

        del timeline_service.failures["get_clips"]
        controller.timeline.resync()
        assert not controller.timeline.out_of_sync
        assert controller.timeline.clip_count == 5

    def test_rejected_stop_stays_recording(self, controller, timeline_service,
                                           capture_signal) -> None:
        errors = capture_signal(controller.error)
        lost = capture_signal(controller.sync_lost)
        controller.start_recording()
        timeline_service.failures["stop_recording"] = CommandRejected("encoder busy", "stop_recording")
        controller.stop_recording()
        assert controller.session.lifecycle is Lifecycle.RECORDING
        assert errors == ["stop_recording failed: encoder busy"]
        assert lost == []
        assert not controller.timeline.out_of_sync

    def test_cancel_does_not_refresh(self, controller, timeline_service) -> None:
        controller.start_recording()
        controller.cancel_recording()
        assert controller.session.lifecycle is Lifecycle.IDLE
        assert "get_clips" not in timeline_service.commands()

    def test_set_countdown_seconds_persists(self, controller, prefs) -> None:
        controller.set_countdown_seconds(5)
        assert prefs.countdown_seconds == 5
        assert controller.session.countdown_seconds == 5
        controller.toggle_recording()
        assert controller.session.lifecycle is Lifecycle.COUNTDOWN_PENDING
        controller.toggle_recording()
        assert controller.session.lifecycle is Lifecycle.IDLE

    def test_errors_are_forwarded(self, controller, timeline_service, capture_signal) -> None:
        errors = capture_signal(controller.error)
        timeline_service.failures["start_recording"] = CommandRejected("busy", "start_recording")
        controller.toggle_recording()
        assert errors == ["start_recording failed: busy"]


# ── pipelines ───────────────────────────────────────────────────────


class TestExport:
    def test_export_success(self, controller, timeline_service, prefs, capture_signal) -> None:
        prefs.export_format = ExportFormat.GIF
        prefs.export_quality = ExportQuality.HIGH
        prefs.watermark = False
        progress = capture_signal(controller.pipelines.progress)
        done = capture_signal(controller.pipelines.finished)

        assert controller.export() is True

        assert timeline_service.calls[0] == (
            "export_video", {"watermark": False, "format": "gif", "quality": "high"})
        assert [p[1] for p in progress] == [25, 60]
        run = controller.pipelines.run(PipelineKind.EXPORT)
        assert run.status is PipelineStatus.SUCCEEDED
        assert run.progress == 100
        assert run.result_path == "/tmp/export.gif"
        assert done == [(PipelineKind.EXPORT, "/tmp/export.gif")]

    def test_progress_clamped(self, controller, timeline_service, capture_signal) -> None:
        timeline_service.export_progress = [-5, 140]
        progress = capture_signal(controller.pipelines.progress)
        controller.export()
        assert [p[1] for p in progress] == [100]

    def test_export_while_recording_rejected(self, controller, timeline_service) -> None:
        controller.toggle_recording()
        timeline_service.calls.clear()
        before = controller.pipelines.run(PipelineKind.EXPORT)
        assert controller.export() is False
        assert controller.pipelines.run(PipelineKind.EXPORT) == before
        assert timeline_service.calls == []
        assert controller.session.lifecycle is Lifecycle.RECORDING

    def test_export_without_clips_rejected(self, service, prefs) -> None:
        ctl = _controller(service, prefs)
        ctl.initialize()
        assert ctl.export() is False
        assert service.count("export_video") == 0
        ctl.shutdown()

    def test_export_failure(self, controller, timeline_service, capture_signal) -> None:
        errors = capture_signal(controller.error)
        timeline_service.failures["export_video"] = CommandRejected("disk full", "export_video")
        controller.export()
        run = controller.pipelines.run(PipelineKind.EXPORT)
        assert run.status is PipelineStatus.FAILED
        assert run.error_message == "disk full"
        assert errors == ["export failed: disk full"]

    def test_dismiss(self, controller) -> None:
        assert controller.dismiss(PipelineKind.EXPORT) is False
        controller.export()
        assert controller.dismiss(PipelineKind.EXPORT) is True
        assert controller.pipelines.run(PipelineKind.EXPORT).status is PipelineStatus.IDLE

    def test_rerun_resets_previous_result(self, controller, timeline_service) -> None:
        timeline_service.failures["export_video"] = CommandRejected("x", "export_video")
        controller.export()
        del timeline_service.failures["export_video"]
        controller.export()
        run = controller.pipelines.run(PipelineKind.EXPORT)
        assert run.status is PipelineStatus.SUCCEEDED
        assert run.error_message is None


class TestPipelineExclusion:
    @pytest.fixture
    def busy(self, timeline_service, prefs, deferred):
        ctl = _controller(timeline_service, prefs, pipeline_runner=deferred)
        ctl.initialize()
        assert ctl.export() is True
        yield ctl
        ctl.shutdown()

    def test_preview_rejected_during_export(self, busy, deferred) -> None:
        assert busy.preview() is False
        assert len(deferred.queue) == 1

    def test_recording_rejected_during_export(self, busy) -> None:
        assert busy.toggle_recording() is False
        assert busy.start_recording() is False
        assert busy.session.lifecycle is Lifecycle.IDLE

    def test_progress_only_while_running(self, busy, timeline_service, deferred) -> None:
        timeline_service.publish(EVENT_PREVIEW_PROGRESS, 40)
        assert busy.pipelines.run(PipelineKind.PREVIEW).progress == 0
        timeline_service.publish(EVENT_EXPORT_PROGRESS, 40)
        assert busy.pipelines.run(PipelineKind.EXPORT).progress == 40
        deferred.drain()
        timeline_service.publish(EVENT_EXPORT_PROGRESS, 10)
        assert busy.pipelines.run(PipelineKind.EXPORT).progress == 100

    def test_preview_after_export(self, busy, deferred) -> None:
        deferred.drain()
        assert busy.preview() is True
        deferred.drain()
        run = busy.pipelines.run(PipelineKind.PREVIEW)
        assert run.status is PipelineStatus.SUCCEEDED
        assert run.result_path == "/tmp/preview.mp4"

    def test_export_rejected_while_start_in_flight(self, timeline_service, prefs, deferred) -> None:
        ctl = _controller(timeline_service, prefs, runner=deferred)
        ctl.initialize()
        deferred.drain()
        timeline_service.calls.clear()

        assert ctl.start_recording() is True
        assert ctl.session.lifecycle is Lifecycle.IDLE
        assert ctl.session.is_busy
        assert ctl.export() is False
        assert ctl.preview() is False
        assert ctl.pipelines.run(PipelineKind.EXPORT).status is PipelineStatus.IDLE

        deferred.drain()
        assert ctl.session.lifecycle is Lifecycle.RECORDING
        assert timeline_service.commands() == ["start_recording"]
        ctl.shutdown()

    def test_export_rejected_while_stop_in_flight(self, timeline_service, prefs, deferred) -> None:
        ctl = _controller(timeline_service, prefs, runner=deferred)
        ctl.initialize()
        deferred.drain()
        ctl.start_recording()
        deferred.drain()
        ctl.stop_recording()
        assert ctl.export() is False
        deferred.drain()
        assert ctl.session.lifecycle is Lifecycle.IDLE
        assert ctl.export() is True
        ctl.shutdown()

    def test_uses_pipeline_timeout_preference(self, timeline_service, prefs) -> None:
        prefs.settings.setValue("pipelineTimeoutS", 60)
        ctl = _controller(timeline_service, prefs)
        ctl.initialize()
        ctl.export()
        assert ctl.pipelines.timeout_s == 60.0
        ctl.shutdown()


# ── events and teardown ─────────────────────────────────────────────


class TestSubscriptions:
    def test_four_subscriptions_held(self, controller, timeline_service) -> None:
        for event in (EVENT_REGION_SELECTED, EVENT_EXPORT_PROGRESS,
                      EVENT_PREVIEW_PROGRESS, EVENT_RECORDING_STATE_CHANGED):
            assert timeline_service.subscriber_count(event) == 1

    def test_shutdown_releases_everything(self, timeline_service, prefs) -> None:
        ctl = _controller(timeline_service, prefs)
        ctl.toggle_recording()
        ctl.shutdown()
        ctl.shutdown()
        assert ctl.is_shut_down
        assert timeline_service.subscriber_count(EVENT_REGION_SELECTED) == 0
        assert not ctl.session.poller.is_active
        timeline_service.publish(EVENT_REGION_SELECTED, {"x": 0, "y": 0, "width": 10, "height": 10})
        assert ctl.region.region is None
