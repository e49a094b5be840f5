"""Tests for clipflow.command_runner — ordering and failure delivery."""

import logging
import threading
import time

from PySide6.QtCore import QCoreApplication

from clipflow.command_runner import InlineCommandRunner, ThreadedCommandRunner


def _wait_until_idle(runner, timeout_s: float = 5.0) -> None:
    deadline = time.monotonic() + timeout_s
    while runner.pending and time.monotonic() < deadline:
        QCoreApplication.processEvents()
        time.sleep(0.005)


class TestInlineRunner:
    def test_done_callback(self) -> None:
        runner = InlineCommandRunner()
        results: list = []
        runner.submit(lambda: 41 + 1, on_done=results.append)
        assert results == [42]
        assert runner.pending == 0

    def test_failed_callback(self) -> None:
        runner = InlineCommandRunner()
        errors: list = []
        runner.submit(lambda: 1 / 0, on_failed=errors.append)
        assert len(errors) == 1
        assert isinstance(errors[0], ZeroDivisionError)

    def test_unhandled_failure_is_logged(self, caplog) -> None:
        runner = InlineCommandRunner()
        with caplog.at_level(logging.WARNING, logger="clipflow.command_runner"):
            runner.submit(lambda: 1 / 0, label="divide")
        assert "divide" in caplog.text

    def test_tickets_increase(self) -> None:
        runner = InlineCommandRunner()
        first = runner.submit(lambda: None)
        second = runner.submit(lambda: None)
        assert second > first


class TestDeferredRunner:
    def test_fifo(self, deferred) -> None:
        order: list = []
        for i in range(4):
            deferred.submit(lambda i=i: i, on_done=order.append)
        assert order == []
        assert deferred.pending == 4
        deferred.drain()
        assert order == [0, 1, 2, 3]


class TestThreadedRunner:
    def test_tasks_run_in_submission_order(self) -> None:
        runner = ThreadedCommandRunner()
        executed: list = []
        delivered: list = []
        try:
            for i in range(5):
                # Earlier tasks sleep longer; order must still hold
                def task(i=i) -> int:
                    time.sleep(0.01 * (5 - i))
                    executed.append(i)
                    return i
                runner.submit(task, on_done=delivered.append)
            _wait_until_idle(runner)
        finally:
            runner.shutdown()
        assert executed == [0, 1, 2, 3, 4]
        assert delivered == [0, 1, 2, 3, 4]

    def test_tasks_run_off_the_caller_thread(self) -> None:
        runner = ThreadedCommandRunner()
        seen: list = []
        try:
            runner.submit(lambda: threading.get_ident(), on_done=seen.append)
            _wait_until_idle(runner)
        finally:
            runner.shutdown()
        assert seen and seen[0] != threading.get_ident()

    def test_failure_reaches_callback(self) -> None:
        runner = ThreadedCommandRunner()
        errors: list = []
        try:
            runner.submit(lambda: 1 / 0, on_failed=errors.append)
            _wait_until_idle(runner)
        finally:
            runner.shutdown()
        assert isinstance(errors[0], ZeroDivisionError)

    def test_submit_after_shutdown_is_dropped(self) -> None:
        runner = ThreadedCommandRunner()
        runner.shutdown()
        ran: list = []
        runner.submit(lambda: ran.append(1))
        assert runner.pending == 0
        assert ran == []

    def test_stuck_task_outlives_shutdown(self) -> None:
        runner = ThreadedCommandRunner()
        started = threading.Event()
        release = threading.Event()

        def stuck() -> None:
            started.set()
            release.wait(5)

        runner.submit(stuck)
        assert started.wait(2)
        thread = runner._thread
        runner.shutdown(wait_ms=20)

        assert thread.parent() is None
        assert thread.isRunning()
        assert runner.pending == 0

        release.set()
        assert thread.wait(2000)
