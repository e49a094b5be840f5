"""Write-then-refetch discipline shared by every cache of service state.

A mutation is never applied to a local cache directly.  It is sent to
the service, and only after the service accepts it is the affected
state read back and swapped in.  Both steps run inside one command
runner task, so no other command can slip in between them.

Two failure modes are kept apart:

* the mutation is rejected: the cache is untouched and ``error`` fires;
* the mutation succeeded but the read-back failed: the cache is stale
  in an unknown way, so the store is flagged *out of sync* and
  ``sync_lost`` fires.  Only a later full read clears the flag.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from PySide6.QtCore import QObject, Signal

from .command_runner import CommandRunner
from .errors import SyncLostError, describe
from .gateway import ServiceGateway
from .models import Clip, Lifecycle, Transition

logger = logging.getLogger(__name__)


def mutate_then_read(operation: str, mutate: Callable[[], object],
                     read_back: Callable[[], object]) -> object:
    """Run *mutate* then *read_back*; wrap read-back failures in :class:`SyncLostError`.

    Errors from *mutate* propagate unchanged.  The mutation's own result
    rides along on the :class:`SyncLostError` so callers can still use it.
    """
    result = mutate()
    try:
        return read_back()
    except Exception as exc:
        raise SyncLostError(operation, exc, result) from exc


@dataclass
class FullState:
    """Everything needed to rebuild the controller's view of the service."""
    lifecycle: Lifecycle
    clips: List[Clip]
    transitions: List[Transition]


def read_full_state(gateway: ServiceGateway) -> FullState:
    return FullState(
        lifecycle=gateway.get_recording_state(),
        clips=gateway.get_clips(),
        transitions=gateway.get_transitions(),
    )


class SyncedStore(QObject):
    """Base for components that cache service-owned state."""

    error = Signal(str)
    sync_lost = Signal(str)
    out_of_sync_changed = Signal(bool)

    def __init__(self, gateway: ServiceGateway, runner: CommandRunner,
                 parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._gateway = gateway
        self._runner = runner
        self._out_of_sync: bool = False

    @property
    def out_of_sync(self) -> bool:
        return self._out_of_sync

    def mark_out_of_sync(self, message: str) -> None:
        logger.warning("Out of sync | store=%s | %s", type(self).__name__, message)
        if not self._out_of_sync:
            self._out_of_sync = True
            self.out_of_sync_changed.emit(True)
        self.sync_lost.emit(message)

    def _clear_out_of_sync(self) -> None:
        if self._out_of_sync:
            self._out_of_sync = False
            logger.info("Back in sync | store=%s", type(self).__name__)
            self.out_of_sync_changed.emit(False)

    def _submit_mutation(
        self,
        operation: str,
        mutate: Callable[[], object],
        read_back: Callable[[], object],
        apply: Callable[[object], None],
        sync_target: Optional["SyncedStore"] = None,
    ) -> int:
        """Queue a mutate + read-back unit.

        *apply* receives the read-back result on the GUI thread.  A
        read-back failure flags *sync_target* (default: this store).
        """
        target = sync_target or self
        return self._runner.submit(
            lambda: mutate_then_read(operation, mutate, read_back),
            on_done=apply,
            on_failed=lambda exc: self._on_mutation_failed(operation, exc, target),
            label=operation,
        )

    def _submit_read(self, operation: str, read: Callable[[], object],
                     apply: Callable[[object], None]) -> int:
        """Queue a plain read; failures are reported through ``error``."""
        return self._runner.submit(
            read,
            on_done=apply,
            on_failed=lambda exc: self._on_read_failed(operation, exc),
            label=operation,
        )

    def _on_mutation_failed(self, operation: str, exc: Exception,
                            target: "SyncedStore") -> None:
        if isinstance(exc, SyncLostError):
            target.mark_out_of_sync(str(exc))
            return
        msg = describe(exc)
        logger.warning("%s rejected | error=%s", operation, msg)
        self.error.emit(f"{operation} failed: {msg}")

    def _on_read_failed(self, operation: str, exc: Exception) -> None:
        msg = describe(exc)
        logger.warning("%s failed | error=%s", operation, msg)
        self.error.emit(f"{operation} failed: {msg}")
