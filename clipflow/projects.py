"""Named project snapshots kept by the service."""

import logging
from typing import Callable, List, Optional

from PySide6.QtCore import QObject, Signal

from .command_runner import CommandRunner
from .consistency import FullState, SyncedStore, read_full_state
from .gateway import ServiceGateway
from .models import Lifecycle, ProjectSummary
from .timeline import TimelineStore

logger = logging.getLogger(__name__)


class ProjectStore(SyncedStore):
    """Save / load / list / delete projects.

    Loading replaces the whole timeline, so it re-reads the recording
    state, clips and transitions, and hands them to ``loaded``
    listeners.  A failed read-back after a load flags the *timeline* as
    out of sync; failures after save or delete flag this store.
    """

    projects_changed = Signal(list)            # List[ProjectSummary]
    current_project_changed = Signal(object)   # Optional[str]
    loaded = Signal(object)                    # FullState

    def __init__(
        self,
        gateway: ServiceGateway,
        runner: CommandRunner,
        timeline: TimelineStore,
        lifecycle: Callable[[], Lifecycle],
        parent: QObject | None = None,
    ) -> None:
        super().__init__(gateway, runner, parent)
        self._timeline = timeline
        self._lifecycle = lifecycle
        self._projects: List[ProjectSummary] = []
        self._current_id: Optional[str] = None

    @property
    def projects(self) -> List[ProjectSummary]:
        return list(self._projects)

    @property
    def current_project_id(self) -> Optional[str]:
        return self._current_id

    def refresh(self) -> None:
        """Re-read the project list."""
        self._submit_read("list_projects", self._gateway.list_projects, self._apply_list)

    def save(self, name: str) -> bool:
        name = name.strip()
        if not name:
            logger.warning("Rejected save: empty project name")
            return False
        saved: dict = {}

        def mutate() -> None:
            saved["id"] = self._gateway.save_project(name)

        def apply(projects: object) -> None:
            self._set_current(saved["id"])
            self._apply_list(projects)
            logger.info("Project saved | name=%s | id=%s", name, saved["id"])

        self._submit_mutation("save_project", mutate, self._gateway.list_projects, apply)
        return True

    def load(self, project_id: str) -> bool:
        lifecycle = self._lifecycle()
        if lifecycle is not Lifecycle.IDLE:
            logger.warning("Rejected load while %s | id=%s", lifecycle.value, project_id)
            return False

        def apply(state: object) -> None:
            self._set_current(project_id)
            full: FullState = state  # type: ignore[assignment]
            self._timeline.adopt(full.clips, full.transitions)
            logger.info("Project loaded | id=%s | clips=%d | length=%s",
                        project_id, len(full.clips), self._timeline.total_duration_text)
            self.loaded.emit(full)

        self._submit_mutation(
            "load_project",
            lambda: self._gateway.load_project(project_id),
            lambda: read_full_state(self._gateway),
            apply,
            sync_target=self._timeline,
        )
        return True

    def delete(self, project_id: str) -> bool:
        def apply(projects: object) -> None:
            if self._current_id == project_id:
                self._set_current(None)
            self._apply_list(projects)
            logger.info("Project deleted | id=%s", project_id)

        self._submit_mutation(
            "delete_project",
            lambda: self._gateway.delete_project(project_id),
            self._gateway.list_projects,
            apply,
        )
        return True

    def _apply_list(self, projects: object) -> None:
        self._projects = list(projects)  # type: ignore[call-overload]
        self._clear_out_of_sync()
        self.projects_changed.emit(list(self._projects))

    def _set_current(self, project_id: Optional[str]) -> None:
        if project_id != self._current_id:
            self._current_id = project_id
            self.current_project_changed.emit(project_id)
