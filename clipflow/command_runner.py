"""Serial execution of service commands.

Every gateway call made by the controller is wrapped in a task and
handed to a :class:`CommandRunner`.  Tasks run strictly one at a time
in submission order, and their completion callbacks fire on the GUI
thread in the same order.  A task may issue several gateway calls
(e.g. a mutation followed by its read-back); nothing else reaches the
service in between.
"""

import itertools
import logging
import queue
from typing import Callable, Dict, List, Optional, Tuple

from PySide6.QtCore import QObject, QThread, Signal

logger = logging.getLogger(__name__)

Task = Callable[[], object]
DoneCallback = Callable[[object], None]
FailedCallback = Callable[[Exception], None]


class CommandRunner(QObject):
    """Base runner: tracks callbacks by ticket and dispatches results."""

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._tickets = itertools.count(1)
        self._callbacks: Dict[int, Tuple[Optional[DoneCallback], Optional[FailedCallback], str]] = {}

    @property
    def pending(self) -> int:
        """Number of submitted tasks whose callbacks have not run yet."""
        return len(self._callbacks)

    def submit(
        self,
        task: Task,
        on_done: Optional[DoneCallback] = None,
        on_failed: Optional[FailedCallback] = None,
        label: str = "",
    ) -> int:
        """Queue *task*; returns a ticket number."""
        ticket = next(self._tickets)
        self._callbacks[ticket] = (on_done, on_failed, label)
        self._execute(ticket, task)
        return ticket

    def shutdown(self) -> None:
        """Stop accepting work and release threads."""

    def _execute(self, ticket: int, task: Task) -> None:
        raise NotImplementedError

    def _on_done(self, ticket: int, result: object) -> None:
        on_done, _on_failed, _label = self._callbacks.pop(ticket, (None, None, ""))
        if on_done is not None:
            on_done(result)

    def _on_failed(self, ticket: int, exc: object) -> None:
        _on_done, on_failed, label = self._callbacks.pop(ticket, (None, None, ""))
        if on_failed is not None:
            on_failed(exc)  # type: ignore[arg-type]
        else:
            logger.warning("Command failed | task=%s | error=%s", label or ticket, exc)


class InlineCommandRunner(CommandRunner):
    """Runs each task synchronously in the caller's thread.

    Used by tests and headless tools where blocking the caller is fine.
    """

    def _execute(self, ticket: int, task: Task) -> None:
        try:
            result = task()
        except Exception as exc:
            self._on_failed(ticket, exc)
            return
        self._on_done(ticket, result)


class _CommandThread(QThread):
    """Worker thread that drains the task queue one item at a time."""

    done = Signal(int, object)     # ticket, result
    failed = Signal(int, object)   # ticket, exception

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._queue: "queue.Queue[Optional[Tuple[int, Task]]]" = queue.Queue()

    def enqueue(self, ticket: int, task: Task) -> None:
        self._queue.put((ticket, task))

    def request_stop(self) -> None:
        self._queue.put(None)

    def run(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                break
            ticket, task = item
            try:
                result = task()
            except Exception as exc:
                self.failed.emit(ticket, exc)
                continue
            self.done.emit(ticket, result)


# Worker threads that outlived their runner's shutdown
_retired: List[_CommandThread] = []


class ThreadedCommandRunner(CommandRunner):
    """Runs tasks on a dedicated worker thread; callbacks return to the GUI thread."""

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._thread = _CommandThread(self)
        self._thread.done.connect(self._on_done)
        self._thread.failed.connect(self._on_failed)
        self._thread.start()
        self._stopped = False

    def _execute(self, ticket: int, task: Task) -> None:
        if self._stopped:
            self._callbacks.pop(ticket, None)
            logger.debug("Runner stopped, dropping ticket=%d", ticket)
            return
        self._thread.enqueue(ticket, task)

    def shutdown(self, wait_ms: int = 2000) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._thread.request_stop()
        if not self._thread.wait(wait_ms):
            # A running QThread must outlive its parent; keep it until the task returns
            logger.warning("Command thread still busy after %d ms, detaching", wait_ms)
            self._thread.setParent(None)
            _retired.append(self._thread)
        _retired[:] = [t for t in _retired if t.isRunning()]
        self._callbacks.clear()
