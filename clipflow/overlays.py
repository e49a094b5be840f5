"""Per-clip annotations and timeline subtitles.

Both live in the service: projects save them and exports burn them in.
Edits replace a whole list at once and are followed by a read-back of
that same list, like every other timeline edit.
"""

import logging
from typing import Dict, List, Sequence, Tuple

from PySide6.QtCore import QObject, Signal

from .command_runner import CommandRunner
from .consistency import SyncedStore
from .gateway import ServiceGateway
from .models import Annotation, Subtitle

logger = logging.getLogger(__name__)


class OverlayStore(SyncedStore):
    """Cached annotations (by clip id) and subtitles."""

    annotations_changed = Signal(str, list)   # clip id, List[Annotation]
    subtitles_changed = Signal(list)          # List[Subtitle]

    def __init__(self, gateway: ServiceGateway, runner: CommandRunner,
                 parent: QObject | None = None) -> None:
        super().__init__(gateway, runner, parent)
        self._annotations: Dict[str, List[Annotation]] = {}
        self._subtitles: List[Subtitle] = []

    @property
    def subtitles(self) -> List[Subtitle]:
        return list(self._subtitles)

    def annotations(self, clip_id: str) -> List[Annotation]:
        return list(self._annotations.get(clip_id, []))

    # ── reads ───────────────────────────────────────────────────────

    def refresh(self, clip_ids: Sequence[str]) -> None:
        """Re-read subtitles and the annotations of every clip in *clip_ids*."""
        ids = list(clip_ids)

        def read() -> Tuple[List[Subtitle], Dict[str, List[Annotation]]]:
            subtitles = self._gateway.get_subtitles()
            return subtitles, {cid: self._gateway.get_clip_annotations(cid) for cid in ids}

        self._submit_read("refresh_overlays", read, self._adopt)

    def load_annotations(self, clip_id: str) -> None:
        self._submit_read(
            "get_clip_annotations",
            lambda: self._gateway.get_clip_annotations(clip_id),
            lambda items: self._replace_annotations(clip_id, items),
        )

    def prune(self, clip_ids: Sequence[str]) -> None:
        """Forget annotations of clips that are no longer on the timeline."""
        keep = set(clip_ids)
        for stale in [cid for cid in self._annotations if cid not in keep]:
            del self._annotations[stale]

    # ── edits ───────────────────────────────────────────────────────

    def set_annotations(self, clip_id: str, annotations: Sequence[Annotation]) -> bool:
        items = list(annotations)
        bad = [a.id for a in items if not a.is_valid()]
        if bad:
            logger.warning("Rejected annotations | clip=%s | invalid=%s", clip_id, bad)
            return False
        self._submit_mutation(
            "set_clip_annotations",
            lambda: self._gateway.set_clip_annotations(clip_id, items),
            lambda: self._gateway.get_clip_annotations(clip_id),
            lambda result: self._replace_annotations(clip_id, result),
        )
        return True

    def set_subtitles(self, subtitles: Sequence[Subtitle]) -> bool:
        items = list(subtitles)
        bad = [s.id for s in items if not s.is_valid()]
        if bad:
            logger.warning("Rejected subtitles | invalid=%s", bad)
            return False
        self._submit_mutation(
            "set_subtitles",
            lambda: self._gateway.set_subtitles(items),
            self._gateway.get_subtitles,
            self._replace_subtitles,
        )
        return True

    def add_subtitle(self, subtitle: Subtitle) -> bool:
        return self.set_subtitles(self._subtitles + [subtitle])

    def remove_subtitle(self, subtitle_id: str) -> bool:
        remaining = [s for s in self._subtitles if s.id != subtitle_id]
        if len(remaining) == len(self._subtitles):
            logger.warning("Rejected subtitle removal: unknown id %s", subtitle_id)
            return False
        return self.set_subtitles(remaining)

    # ── internals ───────────────────────────────────────────────────

    def _adopt(self, result: object) -> None:
        subtitles, annotations = result  # type: ignore[misc]
        self._annotations = {}
        for clip_id, items in annotations.items():
            self._replace_annotations(clip_id, items)
        self._replace_subtitles(subtitles)
        self._clear_out_of_sync()

    def _replace_annotations(self, clip_id: str, items: object) -> None:
        self._annotations[clip_id] = list(items)  # type: ignore[call-overload]
        self.annotations_changed.emit(clip_id, list(self._annotations[clip_id]))

    def _replace_subtitles(self, items: object) -> None:
        self._subtitles = list(items)  # type: ignore[call-overload]
        self.subtitles_changed.emit(list(self._subtitles))
