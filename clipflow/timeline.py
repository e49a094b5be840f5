"""Clip and transition caches with write-then-refetch edits.

The service owns the timeline; :class:`TimelineStore` keeps the last
confirmed copy of it.  Every edit is validated against that copy,
sent to the service, and followed by a read-back of exactly the state it
can affect:

============================  =========================
edit                          read back
============================  =========================
trim                          clips
reorder / delete              clips + transitions
set transition / preset       transitions
============================  =========================
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from PySide6.QtCore import QObject, Signal

from .command_runner import CommandRunner
from .consistency import SyncedStore
from .gateway import ServiceGateway
from .models import (
    TRANSITION_DURATION_MAX_S,
    TRANSITION_DURATION_MIN_S,
    Clip,
    Transition,
    TransitionType,
    expected_transition_count,
)
from .utils import clamp, fmt_time

logger = logging.getLogger(__name__)


# ── transition presets ──────────────────────────────────────────────


@dataclass(frozen=True)
class TransitionPreset:
    """A named transition style, applied gap by gap in a repeating cycle."""
    name: str
    label: str
    cycle: Tuple[TransitionType, ...]

    @property
    def uniform(self) -> bool:
        return len(self.cycle) == 1

    def plan_for(self, gap_count: int) -> List[TransitionType]:
        """Transition type for each of *gap_count* gaps."""
        return [self.cycle[i % len(self.cycle)] for i in range(gap_count)]


PRESETS: Dict[str, TransitionPreset] = {
    p.name: p
    for p in (
        TransitionPreset("professional", "Professional", (TransitionType.FADE,)),
        TransitionPreset("minimal", "Minimal", (TransitionType.CUT,)),
        TransitionPreset("dynamic", "Dynamic", (
            TransitionType.SLIDE,
            TransitionType.ZOOM,
            TransitionType.SLIDE_RIGHT,
            TransitionType.SLIDE_UP,
        )),
        TransitionPreset("creative", "Creative", (
            TransitionType.CIRCLE_OPEN,
            TransitionType.PIXELIZE,
            TransitionType.RADIAL,
            TransitionType.DISSOLVE,
            TransitionType.WIPE_LEFT,
        )),
    )
}


# ── store ───────────────────────────────────────────────────────────


class TimelineStore(SyncedStore):
    """Cached clips and transitions, in timeline order."""

    clips_changed = Signal(list)        # List[Clip]
    transitions_changed = Signal(list)  # List[Transition]
    thumbnail_ready = Signal(str, object)  # clip id, data URI or None

    def __init__(self, gateway: ServiceGateway, runner: CommandRunner,
                 parent: QObject | None = None) -> None:
        super().__init__(gateway, runner, parent)
        self._clips: List[Clip] = []
        self._transitions: List[Transition] = []
        self._thumbnails: Dict[str, Optional[str]] = {}

    # ── read access ─────────────────────────────────────────────────

    @property
    def clips(self) -> List[Clip]:
        return list(self._clips)

    @property
    def transitions(self) -> List[Transition]:
        return list(self._transitions)

    @property
    def clip_count(self) -> int:
        return len(self._clips)

    @property
    def total_duration_ms(self) -> int:
        """Sum of the trimmed clip durations."""
        return sum(c.trimmed_duration_ms for c in self._clips)

    @property
    def total_duration_text(self) -> str:
        """Timeline length as ``m:ss``."""
        return fmt_time(self.total_duration_ms)

    def clip(self, clip_id: str) -> Optional[Clip]:
        for c in self._clips:
            if c.id == clip_id:
                return c
        return None

    # ── reads ───────────────────────────────────────────────────────

    def refresh(self) -> None:
        """Re-read clips and transitions; clears the out-of-sync flag on success."""
        self._submit_read("refresh_timeline", self.read_snapshot, self.adopt_snapshot)

    def resync(self) -> None:
        self.refresh()

    def thumbnail(self, clip_id: str) -> Optional[str]:
        """Last fetched thumbnail for *clip_id*, if any."""
        return self._thumbnails.get(clip_id)

    def fetch_thumbnail(self, clip_id: str) -> bool:
        """Ask the service for a clip's thumbnail; answered via ``thumbnail_ready``."""
        if self.clip(clip_id) is None:
            logger.warning("Rejected thumbnail fetch: unknown clip | id=%s", clip_id)
            return False
        if clip_id in self._thumbnails:
            self.thumbnail_ready.emit(clip_id, self._thumbnails[clip_id])
            return True

        def apply(data: object) -> None:
            # Clips may have been deleted while the fetch was queued
            if self.clip(clip_id) is None:
                return
            self._thumbnails[clip_id] = data  # type: ignore[assignment]
            self.thumbnail_ready.emit(clip_id, data)

        self._submit_read(
            "get_thumbnail_base64",
            lambda: self._gateway.get_thumbnail_base64(clip_id),
            apply,
        )
        return True

    def read_snapshot(self) -> Tuple[List[Clip], List[Transition]]:
        """Blocking read of clips and transitions.  Runner tasks only."""
        return self._gateway.get_clips(), self._gateway.get_transitions()

    def adopt_snapshot(self, snapshot: object) -> None:
        clips, transitions = snapshot  # type: ignore[misc]
        self.adopt(clips, transitions)

    def adopt(self, clips: Sequence[Clip], transitions: Sequence[Transition]) -> None:
        """Replace both caches with a confirmed full read."""
        self._replace_clips(clips)
        self._replace_transitions(transitions)
        self._check_gap_count()
        self._clear_out_of_sync()

    # ── edits ───────────────────────────────────────────────────────

    def reorder(self, clip_ids: Sequence[str]) -> bool:
        ids = list(clip_ids)
        current = [c.id for c in self._clips]
        if len(ids) != len(current) or set(ids) != set(current):
            logger.warning("Rejected reorder: not a permutation of the timeline | ids=%s", ids)
            return False
        self._submit_mutation(
            "reorder_clips",
            lambda: self._gateway.reorder_clips(ids),
            self.read_snapshot,
            self._apply_pair,
        )
        return True

    def delete_clip(self, clip_id: str) -> bool:
        if self.clip(clip_id) is None:
            logger.warning("Rejected delete: unknown clip | id=%s", clip_id)
            return False
        self._submit_mutation(
            "delete_clip",
            lambda: self._gateway.delete_clip(clip_id),
            self.read_snapshot,
            self._apply_pair,
        )
        return True

    def set_trim(self, clip_id: str, start_ms: int, end_ms: Optional[int]) -> bool:
        """Trim a clip.  ``end_ms=None`` keeps the clip's natural end."""
        clip = self.clip(clip_id)
        if clip is None:
            logger.warning("Rejected trim: unknown clip | id=%s", clip_id)
            return False
        if end_ms == clip.duration_ms:
            end_ms = None
        if not clip.is_valid_trim(start_ms, end_ms):
            logger.warning("Rejected trim | id=%s | start=%s | end=%s | duration=%d",
                           clip_id, start_ms, end_ms, clip.duration_ms)
            return False
        self._submit_mutation(
            "set_clip_trim",
            lambda: self._gateway.set_clip_trim(clip_id, start_ms, end_ms),
            self._gateway.get_clips,
            self._apply_clips,
        )
        return True

    def set_transition(self, index: int, transition_type: TransitionType,
                       duration_s: Optional[float] = None) -> bool:
        if not 0 <= index < len(self._transitions):
            logger.warning("Rejected set_transition: index %d outside 0..%d",
                           index, len(self._transitions) - 1)
            return False
        if duration_s is not None:
            duration_s = clamp(duration_s, TRANSITION_DURATION_MIN_S, TRANSITION_DURATION_MAX_S)
        self._submit_mutation(
            "set_transition",
            lambda: self._gateway.set_transition(index, transition_type, duration_s),
            self._gateway.get_transitions,
            self._apply_transitions,
        )
        return True

    def set_all_transitions(self, transition_type: TransitionType) -> bool:
        if not self._transitions:
            return False
        self._submit_mutation(
            "set_all_transitions",
            lambda: self._gateway.set_all_transitions(transition_type),
            self._gateway.get_transitions,
            self._apply_transitions,
        )
        return True

    def apply_preset(self, name: str) -> bool:
        """Apply a named preset to every gap, then read transitions back once."""
        preset = PRESETS.get(name)
        if preset is None:
            logger.warning("Rejected preset: unknown name %r", name)
            return False
        if not self._transitions:
            return False

        if preset.uniform:
            kind = preset.cycle[0]

            def mutate() -> None:
                self._gateway.set_all_transitions(kind)
        else:
            plan = preset.plan_for(len(self._transitions))

            def mutate() -> None:
                for index, kind in enumerate(plan):
                    self._gateway.set_transition(index, kind)

        logger.info("Applying preset | name=%s | gaps=%d", name, len(self._transitions))
        self._submit_mutation(
            f"apply_preset:{name}",
            mutate,
            self._gateway.get_transitions,
            self._apply_transitions,
        )
        return True

    # ── internals ───────────────────────────────────────────────────

    def _apply_pair(self, pair: object) -> None:
        clips, transitions = pair  # type: ignore[misc]
        self._replace_clips(clips)
        self._replace_transitions(transitions)
        self._check_gap_count()

    def _apply_clips(self, clips: object) -> None:
        self._replace_clips(clips)  # type: ignore[arg-type]

    def _apply_transitions(self, transitions: object) -> None:
        self._replace_transitions(transitions)  # type: ignore[arg-type]
        self._check_gap_count()

    def _replace_clips(self, clips: Sequence[Clip]) -> None:
        self._clips = list(clips)
        ids = {c.id for c in self._clips}
        for stale in [k for k in self._thumbnails if k not in ids]:
            del self._thumbnails[stale]
        self.clips_changed.emit(list(self._clips))

    def _replace_transitions(self, transitions: Sequence[Transition]) -> None:
        self._transitions = list(transitions)
        self.transitions_changed.emit(list(self._transitions))

    def _check_gap_count(self) -> None:
        expected = expected_transition_count(len(self._clips))
        if len(self._transitions) != expected:
            logger.warning("Transition count mismatch | clips=%d | transitions=%d | expected=%d",
                           len(self._clips), len(self._transitions), expected)
