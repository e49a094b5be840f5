"""Recording lifecycle state machine.

Owns the single :class:`~clipflow.models.Session` and mediates
start / pause / resume / stop / cancel against the service::

    Idle ──start──► CountdownPending ──tick…0──► Recording ◄──► Paused
      ▲                    │ cancel                  │ stop / cancel
      └────────────────────┴─────────────────────────┘

Every state change goes through :meth:`_apply`, which is also the only
place that starts or stops the countdown timer and the duration
poller.  Entering a state starts the timers that belong to it; leaving
it stops them, whichever path caused the exit.

Requests made from the wrong state, or while another session command is
still in flight, are rejected: they log, return ``False`` and change
nothing.  A command the service rejects leaves the lifecycle where it
was and is reported through :attr:`error`.

Stopping is a mutation with a read-back: ``stop_recording`` and the
refetch given as *stop_read_back* run in one runner task.  If the stop
went through but the refetch failed, the session still goes Idle and
:attr:`sync_lost` fires instead of :attr:`error`.
"""

import logging
from dataclasses import replace
from functools import partial
from typing import Callable, List, Optional, Tuple

from PySide6.QtCore import QObject, Signal

from .command_runner import CommandRunner
from .consistency import mutate_then_read
from .countdown import CountdownScheduler
from .duration_poller import DurationPoller
from .errors import SyncLostError, describe
from .gateway import ServiceGateway
from .models import (
    DEFAULT_COUNTDOWN_SECONDS,
    DEFAULT_POLL_INTERVAL_MS,
    Clip,
    Lifecycle,
    Session,
)
from .utils import fmt_duration

logger = logging.getLogger(__name__)


class SessionStateMachine(QObject):
    """Recording lifecycle with countdown pre-roll and duration polling."""

    changed = Signal(object)            # Session snapshot, once per state update
    lifecycle_changed = Signal(object)  # Lifecycle
    elapsed_changed = Signal(int)
    countdown_changed = Signal(int)
    clip_recorded = Signal(object)      # Clip returned by stop_recording
    recorded_state = Signal(object)     # stop_read_back result
    error = Signal(str)
    sync_lost = Signal(str)

    def __init__(
        self,
        gateway: ServiceGateway,
        runner: CommandRunner,
        countdown_seconds: int = DEFAULT_COUNTDOWN_SECONDS,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        stop_read_back: Optional[Callable[[], object]] = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._gateway = gateway
        self._runner = runner
        self._stop_read_back = stop_read_back
        self._session = Session()
        self._busy: bool = False
        self._countdown_seconds: int = 0
        self.countdown_seconds = countdown_seconds

        self._countdown = CountdownScheduler(parent=self)
        self._countdown.ticked.connect(self._on_countdown_tick)

        self._poller = DurationPoller(gateway, runner, poll_interval_ms, parent=self)
        self._poller.sampled.connect(self._on_elapsed_sample)

    # ── read access ─────────────────────────────────────────────────

    @property
    def session(self) -> Session:
        """A copy of the current session."""
        return replace(self._session)

    @property
    def lifecycle(self) -> Lifecycle:
        return self._session.lifecycle

    @property
    def is_busy(self) -> bool:
        """True while a session command is awaiting the service."""
        return self._busy

    @property
    def countdown(self) -> CountdownScheduler:
        return self._countdown

    @property
    def poller(self) -> DurationPoller:
        return self._poller

    @property
    def countdown_seconds(self) -> int:
        return self._countdown_seconds

    @countdown_seconds.setter
    def countdown_seconds(self, seconds: int) -> None:
        self._countdown_seconds = max(0, int(seconds))

    # ── requests ────────────────────────────────────────────────────

    def start(self) -> bool:
        """Begin the pre-roll, or start recording at once when it is 0."""
        if not self._accept("start", Lifecycle.IDLE):
            return False
        if self._countdown_seconds > 0:
            self._apply(
                lifecycle=Lifecycle.COUNTDOWN_PENDING,
                countdown_remaining=self._countdown_seconds,
            )
            return True
        self._issue_start()
        return True

    def pause(self) -> bool:
        if not self._accept("pause", Lifecycle.RECORDING):
            return False
        self._issue(
            "pause_recording",
            self._gateway.pause_recording,
            lambda _r: self._apply(lifecycle=Lifecycle.PAUSED),
        )
        return True

    def resume(self) -> bool:
        if not self._accept("resume", Lifecycle.PAUSED):
            return False
        self._issue(
            "resume_recording",
            self._gateway.resume_recording,
            lambda _r: self._apply(lifecycle=Lifecycle.RECORDING),
        )
        return True

    def stop(self) -> bool:
        """Finish the recording; the new clip is announced via ``clip_recorded``."""
        if not self._accept("stop", Lifecycle.RECORDING, Lifecycle.PAUSED):
            return False
        self._busy = True
        self._runner.submit(
            self._stop_and_read,
            on_done=self._on_stopped,
            on_failed=self._on_stop_failed,
            label="stop_recording",
        )
        return True

    def cancel(self) -> bool:
        """Discard the in-progress recording, or abort the pre-roll."""
        if not self._accept("cancel", Lifecycle.COUNTDOWN_PENDING,
                            Lifecycle.RECORDING, Lifecycle.PAUSED):
            return False
        if self._session.lifecycle is Lifecycle.COUNTDOWN_PENDING:
            # The service was never told to start; nothing to undo there
            self._apply(lifecycle=Lifecycle.IDLE, countdown_remaining=0)
            return True
        self._issue(
            "cancel_recording",
            self._gateway.cancel_recording,
            lambda _r: self._apply(lifecycle=Lifecycle.IDLE, elapsed_ms=0),
        )
        return True

    def toggle(self) -> bool:
        """Record-button / hotkey semantics: start when idle, otherwise stop."""
        lifecycle = self._session.lifecycle
        if lifecycle is Lifecycle.IDLE:
            return self.start()
        if lifecycle is Lifecycle.COUNTDOWN_PENDING:
            return self.cancel()
        return self.stop()

    def reconcile(self, reported: Lifecycle) -> None:
        """Adopt the lifecycle the service reports as authoritative.

        Any local pre-roll is abandoned: the service does not know about
        it, so its report always supersedes it.
        """
        current = self._session.lifecycle
        if reported is current:
            return
        if reported is Lifecycle.IDLE:
            self._apply(lifecycle=Lifecycle.IDLE, elapsed_ms=0, countdown_remaining=0)
        elif current.is_active:
            # Recording <-> Paused toggled inside the service
            self._apply(lifecycle=reported, countdown_remaining=0)
        else:
            self._apply(lifecycle=reported, elapsed_ms=0, countdown_remaining=0)
        logger.info("Reconciled with service | was=%s | now=%s", current.value, reported.value)

    def shutdown(self) -> None:
        """Stop all timers without talking to the service."""
        self._countdown.cancel()
        self._poller.stop()

    # ── internals ───────────────────────────────────────────────────

    def _accept(self, request: str, *allowed: Lifecycle) -> bool:
        lifecycle = self._session.lifecycle
        if self._busy:
            logger.debug("Rejected %s: a session command is in flight", request)
            return False
        if lifecycle not in allowed:
            logger.debug("Rejected %s from %s", request, lifecycle.value)
            return False
        return True

    def _issue(self, command: str, call, on_success) -> None:
        self._busy = True
        self._runner.submit(
            call,
            on_done=partial(self._on_command_done, on_success),
            on_failed=partial(self._on_command_failed, command),
            label=command,
        )

    def _issue_start(self) -> None:
        self._busy = True
        self._runner.submit(
            self._gateway.start_recording,
            on_done=self._on_started,
            on_failed=self._on_start_failed,
            label="start_recording",
        )

    def _on_command_done(self, on_success, result: object) -> None:
        self._busy = False
        on_success(result)

    def _on_command_failed(self, command: str, exc: Exception) -> None:
        self._busy = False
        msg = describe(exc)
        logger.warning("%s failed | lifecycle=%s | error=%s",
                       command, self._session.lifecycle.value, msg)
        self.error.emit(f"{command} failed: {msg}")

    def _on_started(self, _result: object) -> None:
        self._busy = False
        # One update: no frame shows "0" before "recording"
        self._apply(lifecycle=Lifecycle.RECORDING, elapsed_ms=0, countdown_remaining=0)

    def _on_start_failed(self, exc: Exception) -> None:
        self._on_command_failed("start_recording", exc)
        if self._session.lifecycle is Lifecycle.COUNTDOWN_PENDING:
            self._apply(lifecycle=Lifecycle.IDLE, countdown_remaining=0)

    def _stop_and_read(self) -> Tuple[Clip, object]:
        read_back = self._stop_read_back or (lambda: None)
        recorded: List[Clip] = []

        def mutate() -> Clip:
            clip = self._gateway.stop_recording()
            recorded.append(clip)
            return clip

        state = mutate_then_read("stop_recording", mutate, read_back)
        return recorded[0], state

    def _on_stopped(self, outcome: object) -> None:
        self._busy = False
        clip, state = outcome  # type: ignore[misc]
        self._apply(lifecycle=Lifecycle.IDLE, elapsed_ms=0)
        if state is not None:
            self.recorded_state.emit(state)
        self._announce(clip)

    def _on_stop_failed(self, exc: Exception) -> None:
        if not isinstance(exc, SyncLostError):
            self._on_command_failed("stop_recording", exc)
            return
        # The recording did end; only the refetch is missing
        self._busy = False
        self._apply(lifecycle=Lifecycle.IDLE, elapsed_ms=0)
        logger.warning("Stopped but refetch failed | error=%s", exc.cause)
        self.sync_lost.emit(str(exc))
        if exc.result is not None:
            self._announce(exc.result)  # type: ignore[arg-type]

    def _announce(self, clip: Clip) -> None:
        logger.info("Clip recorded | id=%s | duration=%s", clip.id, fmt_duration(clip.duration_ms))
        self.clip_recorded.emit(clip)

    def _on_countdown_tick(self, remaining: int) -> None:
        if self._session.lifecycle is not Lifecycle.COUNTDOWN_PENDING:
            return
        if remaining > 0:
            self._apply(countdown_remaining=remaining)
        elif not self._busy:
            self._issue_start()

    def _on_elapsed_sample(self, ms: int) -> None:
        if not self._session.lifecycle.is_active:
            logger.debug("Ignoring elapsed sample outside a recording | ms=%d", ms)
            return
        self._apply(elapsed_ms=ms)

    def _apply(
        self,
        lifecycle: Optional[Lifecycle] = None,
        elapsed_ms: Optional[int] = None,
        countdown_remaining: Optional[int] = None,
    ) -> None:
        """Single state-update point: mutate, run state effects, notify."""
        old = self._session
        new = replace(old)
        if lifecycle is not None:
            new.lifecycle = lifecycle
        if elapsed_ms is not None:
            new.elapsed_ms = elapsed_ms
        if countdown_remaining is not None:
            new.countdown_remaining = countdown_remaining
        if new == old:
            return
        self._session = new

        if new.lifecycle is not old.lifecycle:
            self._run_state_effects(old, new)
            logger.info("Lifecycle %s -> %s", old.lifecycle.value, new.lifecycle.value)

        self.changed.emit(replace(new))
        if new.lifecycle is not old.lifecycle:
            self.lifecycle_changed.emit(new.lifecycle)
        if new.elapsed_ms != old.elapsed_ms:
            self.elapsed_changed.emit(new.elapsed_ms)
        if new.countdown_remaining != old.countdown_remaining:
            self.countdown_changed.emit(new.countdown_remaining)

    def _run_state_effects(self, old: Session, new: Session) -> None:
        if old.lifecycle is Lifecycle.COUNTDOWN_PENDING:
            self._countdown.cancel()
        if old.lifecycle.is_active and not new.lifecycle.is_active:
            self._poller.stop()

        if new.lifecycle is Lifecycle.COUNTDOWN_PENDING:
            self._countdown.start(new.countdown_remaining)
        if new.lifecycle.is_active and not old.lifecycle.is_active:
            self._poller.start()
