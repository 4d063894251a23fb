"""Tests for ProgressSession.

Covers the queue lifecycle, stage-driven progress, bridge results,
critical failure escalation and the pause/quit/exit controls.
"""

import pytest

from installer_errors import CriticalError, ExecutionError
from progress_session import (
    NAV_COMPLETED_OPERATIONS,
    NAV_REFRESH_STATUS,
    NOT_FOUND_DURATION,
    InstallTask,
    ProgressSession,
    SelectedOperation,
)
from stage_sequencer import TaskStatus

INSTALL_LOGS = [
    "Foo: Preparing installation...",
    "Foo: Downloading packages...",
    "Foo: Installing application...",
    "Foo: Configuring application...",
]


def run_to_completion(qtbot, session, timeout=5000):
    with qtbot.waitSignal(session.sessionCompleted, timeout=timeout):
        session.start()


def distinct(values):
    result = []
    for value in values:
        if not result or result[-1] != value:
            result.append(value)
    return result


class TestEnqueue:
    """Task creation from caller-supplied operations."""

    def test_one_task_per_operation_in_order(self, make_session) -> None:
        session = make_session([("foo", "install"), ("bar", "uninstall"), ("baz", "install")])

        tasks = session.tasks
        assert [t.name for t in tasks] == ["foo", "bar", "baz"]
        assert [t.operation for t in tasks] == ["install", "uninstall", "install"]
        assert all(t.status == TaskStatus.PENDING and t.progress == 0.0 for t in tasks)

    def test_descriptions_use_display_name(self, make_session) -> None:
        session = make_session([("foo", "install"), ("bar", "uninstall")])

        assert session.tasks[0].description == "Installing Foo..."
        assert session.tasks[1].description == "Uninstalling Bar..."

    def test_explicit_name_wins_and_unknown_key_falls_back_to_key(self, make_session) -> None:
        session = make_session([SelectedOperation("foo", "install", "Foo Pro"), ("missing", "install")])

        assert session.tasks[0].app_name == "Foo Pro"
        assert session.tasks[1].app_name == "missing"

    def test_accepts_config_dictionaries(self, make_session) -> None:
        session = make_session([{"app": "bar", "operation": "uninstall", "name": ""}])

        assert session.tasks[0].operation == "uninstall"
        assert session.tasks[0].app_name == "Bar"

    def test_second_enqueue_is_ignored(self, make_session) -> None:
        session = make_session([("foo", "install")])

        assert session.enqueue([("bar", "install")]) is False
        assert [t.name for t in session.tasks] == ["foo"]

    def test_unknown_operation_kind_is_rejected(self, make_session) -> None:
        with pytest.raises(ValueError, match="upgrade"):
            make_session([("foo", "upgrade")])

    def test_from_names_creates_install_tasks(self, qtbot, catalog, fake_bridge) -> None:
        session = ProgressSession.from_names(["foo", "bar"], catalog, fake_bridge, stage_delay_scale=0)

        assert [(t.name, t.operation) for t in session.tasks] == [("foo", "install"), ("bar", "install")]

    def test_tasks_property_returns_copies(self, make_session) -> None:
        session = make_session([("foo", "install")])

        session.tasks[0].status = TaskStatus.COMPLETED

        assert session.tasks[0].status == TaskStatus.PENDING


class TestEmptySession:
    def test_complete_immediately(self, qtbot, make_session) -> None:
        session = make_session()

        assert session.completed is True
        assert session.overall_progress == 1.0
        run_to_completion(qtbot, session)


class TestInstallRun:
    """Single and multi task runs against the fake bridge."""

    def test_successful_install_walks_all_stages(self, qtbot, make_session, fake_bridge) -> None:
        session = make_session([("foo", "install")])
        seen = []
        session.taskUpdated.connect(lambda i: seen.append(session.tasks[i].progress))

        run_to_completion(qtbot, session)

        task = session.tasks[0]
        assert task.status == TaskStatus.COMPLETED
        assert task.progress == 1.0
        assert task.error == ""
        assert distinct([p for p in seen if p > 0]) == [0.1, 0.3, 0.6, 0.8, 1.0]
        assert list(session.logs) == INSTALL_LOGS + ["foo installation completed"]
        assert fake_bridge.calls == [("install", "foo")]

    def test_download_stage_reports_downloading_status(self, qtbot, make_session) -> None:
        session = make_session([("foo", "install")])
        statuses = []
        session.taskUpdated.connect(lambda i: statuses.append(session.tasks[i].status))

        run_to_completion(qtbot, session)

        assert distinct(statuses) == [TaskStatus.INSTALLING, TaskStatus.DOWNLOADING,
                                      TaskStatus.INSTALLING, TaskStatus.COMPLETED]

    def test_failed_uninstall_keeps_last_stage_progress(self, qtbot, make_session, fake_bridge) -> None:
        fake_bridge.remove_errors["foo"] = ExecutionError("disk full")
        session = make_session([("foo", "uninstall")])

        run_to_completion(qtbot, session)

        task = session.tasks[0]
        assert task.status == TaskStatus.FAILED
        assert task.error == "disk full"
        assert task.progress == pytest.approx(0.8)
        assert session.logs[:4] == (
            "Foo: Preparing uninstallation...",
            "Foo: Checking dependencies...",
            "Foo: Removing package...",
            "Foo: Cleaning up configuration...",
        )
        assert session.logs[-1] == "foo uninstallation failed: disk full"

    def test_failure_progress_is_configurable(self, qtbot, make_session, fake_bridge) -> None:
        fake_bridge.install_errors["foo"] = ExecutionError("broken")
        session = make_session([("foo", "install")], failure_progress=0.0)

        run_to_completion(qtbot, session)

        assert session.tasks[0].progress == 0.0
        assert session.logs[-1] == "foo installation failed: broken"

    def test_missing_catalog_entry_fails_without_stages(self, qtbot, make_session, fake_bridge) -> None:
        session = make_session([("doesnotexist", "install")])

        run_to_completion(qtbot, session)

        task = session.tasks[0]
        assert task.status == TaskStatus.FAILED
        assert "not found in catalog" in task.error
        assert task.duration == NOT_FOUND_DURATION
        assert session.logs == ("doesnotexist installation failed: App doesnotexist not found in catalog",)
        assert fake_bridge.calls == []

    def test_failures_do_not_stop_the_queue(self, qtbot, make_session, fake_bridge) -> None:
        fake_bridge.install_errors["foo"] = ExecutionError("dependency problem")
        session = make_session([("foo", "install"), ("nope", "install"), ("bar", "install")])

        run_to_completion(qtbot, session)

        assert [t.status for t in session.tasks] == [TaskStatus.FAILED, TaskStatus.FAILED, TaskStatus.COMPLETED]
        assert session.critical_failure is None

    def test_completed_only_after_every_task_is_terminal(self, qtbot, make_session) -> None:
        session = make_session([("foo", "install"), ("bar", "uninstall")])
        completed_while_running = []

        def record(_index):
            if not all(t.is_terminal for t in session.tasks):
                completed_while_running.append(session.completed)

        session.taskUpdated.connect(record)

        run_to_completion(qtbot, session)

        assert completed_while_running and not any(completed_while_running)
        assert session.completed is True
        assert session.overall_progress == 1.0
        assert [t.status for t in session.tasks] == [TaskStatus.COMPLETED, TaskStatus.COMPLETED]
        assert session.logs[-1] == "bar uninstalled"

    def test_overall_progress_is_mean_of_tasks(self, qtbot, make_session) -> None:
        session = make_session([("foo", "install"), ("bar", "install")])
        mismatches = []

        def check(value):
            tasks = session.tasks
            expected = sum(t.progress for t in tasks) / len(tasks)
            if value != pytest.approx(expected) or session.overall_progress != value:
                mismatches.append((value, expected))

        session.overallProgressChanged.connect(check)

        run_to_completion(qtbot, session)

        assert mismatches == []

    def test_log_keeps_only_ten_newest_entries(self, qtbot, make_session) -> None:
        session = make_session([("foo", "install"), ("bar", "install"), ("baz", "install")])
        appended = []
        session.logAppended.connect(appended.append)

        run_to_completion(qtbot, session)

        assert len(appended) == 15
        assert session.logs == tuple(appended[-10:])

    def test_duration_is_recorded_for_bridge_results(self, qtbot, make_session) -> None:
        session = make_session([("foo", "install")])

        run_to_completion(qtbot, session)

        assert session.tasks[0].duration >= 0.0
        assert session.tasks[0].duration < NOT_FOUND_DURATION * 5


class TestOutputHints:
    """Bridge output is fed through the classifier."""

    def test_higher_hint_advances_progress_and_logs(self, qtbot, make_session, fake_bridge) -> None:
        fake_bridge.output["foo"] = ["Processing triggers for man-db (2.12.0-4) ..."]
        session = make_session([("foo", "install")])
        seen = []
        session.taskUpdated.connect(lambda i: seen.append(session.tasks[i].progress))

        run_to_completion(qtbot, session)

        assert 0.99 in seen
        assert "Processing manual page triggers" in session.logs
        assert session.tasks[0].progress == 1.0

    def test_lower_hint_is_ignored(self, qtbot, make_session, fake_bridge) -> None:
        fake_bridge.output["foo"] = ["Setting up foo (1.0) ...", "Unpacking foo (1.0) ..."]
        session = make_session([("foo", "install")])
        seen = []
        session.taskUpdated.connect(lambda i: seen.append(session.tasks[i].progress))

        run_to_completion(qtbot, session)

        assert distinct([p for p in seen if p > 0]) == [0.1, 0.3, 0.6, 0.8, 1.0]
        assert "Setting up Foo" not in session.logs

    def test_uninstall_completion_line(self, qtbot, make_session, fake_bridge) -> None:
        fake_bridge.output["bar"] = ["Purging configuration files for bar ..."]
        session = make_session([("bar", "uninstall")])

        run_to_completion(qtbot, session)

        assert "Purging configuration files" in session.logs
        assert session.logs[-1] == "bar uninstalled"


class TestCriticalFailure:
    """Only critical errors end the session early."""

    def test_fatal_error_halts_the_queue(self, qtbot, make_session, fake_bridge) -> None:
        fake_bridge.install_errors["foo"] = CriticalError("dpkg lock is held")
        session = make_session([("foo", "install"), ("bar", "install")])

        with qtbot.waitSignal(session.criticalFailure, timeout=5000) as blocker:
            session.start()
        qtbot.wait(50)

        assert blocker.args == ["foo", "dpkg lock is held"]
        assert session.tasks[1].status == TaskStatus.PENDING
        assert session.completed is False
        assert session.critical_failure.summary() == "Error installing foo: dpkg lock is held"
        assert fake_bridge.calls == [("install", "foo")]

    def test_marker_text_is_critical(self, qtbot, make_session, fake_bridge) -> None:
        fake_bridge.install_errors["foo"] = ExecutionError("SYSTEM package database corrupted")
        session = make_session([("foo", "install"), ("bar", "install")])

        with qtbot.waitSignal(session.criticalFailure, timeout=5000):
            session.start()

        assert session.snapshot().critical_failure is not None

    def test_markers_can_be_disabled(self, qtbot, make_session, fake_bridge) -> None:
        fake_bridge.install_errors["foo"] = ExecutionError("SYSTEM package database corrupted")
        session = make_session([("foo", "install"), ("bar", "install")], critical_markers=[])

        run_to_completion(qtbot, session)

        assert session.critical_failure is None
        assert session.tasks[1].status == TaskStatus.COMPLETED

    def test_advance_is_a_no_op_after_critical_failure(self, qtbot, make_session, fake_bridge) -> None:
        fake_bridge.install_errors["foo"] = CriticalError("lock")
        session = make_session([("foo", "install"), ("bar", "install")])
        with qtbot.waitSignal(session.criticalFailure, timeout=5000):
            session.start()

        session.advance()
        qtbot.wait(50)

        assert session.tasks[1].status == TaskStatus.PENDING


class TestControls:
    """Pause, quit, exit navigation and shutdown."""

    def test_pause_before_start_blocks_new_tasks(self, qtbot, make_session, fake_bridge) -> None:
        session = make_session([("foo", "install")])
        with qtbot.waitSignal(session.pausedChanged) as blocker:
            session.toggle_pause()
        assert blocker.args == [True]

        session.start()
        qtbot.wait(100)

        assert session.tasks[0].status == TaskStatus.PENDING
        assert fake_bridge.calls == []

        with qtbot.waitSignal(session.sessionCompleted, timeout=5000):
            assert session.toggle_pause() is False
        assert session.tasks[0].status == TaskStatus.COMPLETED

    def test_pause_lets_in_flight_task_finish(self, qtbot, make_session) -> None:
        session = make_session([("foo", "install"), ("bar", "install")])
        session.logAppended.connect(lambda entry: not session.paused and session.toggle_pause())

        session.start()
        qtbot.waitUntil(lambda: session.tasks[0].is_terminal, timeout=5000)
        qtbot.wait(100)

        assert session.tasks[0].status == TaskStatus.COMPLETED
        assert session.tasks[1].status == TaskStatus.PENDING
        assert session.completed is False

    def test_quit_stops_stage_announcements(self, qtbot, make_session, fake_bridge) -> None:
        session = make_session([("foo", "install"), ("bar", "install")], stage_delay_scale=0.2)
        session.logAppended.connect(lambda entry: session.quit())

        session.start()
        qtbot.waitUntil(lambda: session.quitting, timeout=5000)
        qtbot.wait(600)

        assert session.logs == ("Foo: Preparing installation...",)
        assert fake_bridge.calls == []
        assert session.overall_progress == pytest.approx(0.05)
        assert session.completed is False

    def test_quit_records_late_bridge_result(self, qtbot, make_session, fake_bridge) -> None:
        fake_bridge.block = True
        session = make_session([("foo", "install"), ("bar", "install")])

        session.start()
        qtbot.waitUntil(fake_bridge.entered.is_set, timeout=5000)
        session.quit()
        fake_bridge.release.set()
        qtbot.waitUntil(lambda: session.tasks[0].is_terminal, timeout=5000)
        qtbot.wait(50)

        assert session.tasks[0].status == TaskStatus.COMPLETED
        assert session.tasks[1].status == TaskStatus.PENDING
        assert fake_bridge.calls == [("install", "foo")]

    def test_request_exit_before_completion_asks_for_refresh(self, qtbot, make_session) -> None:
        session = make_session([("foo", "install")])

        with qtbot.waitSignal(session.navigationRequested) as blocker:
            session.request_exit()

        assert blocker.args == [NAV_REFRESH_STATUS, None]

    def test_request_exit_after_completion_hands_over_tasks(self, qtbot, make_session) -> None:
        session = make_session([("foo", "install")])
        run_to_completion(qtbot, session)

        with qtbot.waitSignal(session.navigationRequested) as blocker:
            session.request_exit()

        target, tasks = blocker.args
        assert target == NAV_COMPLETED_OPERATIONS
        assert isinstance(tasks[0], InstallTask)
        assert tasks[0].status == TaskStatus.COMPLETED

    def test_shutdown_cancels_in_flight_bridge_call(self, qtbot, make_session, fake_bridge) -> None:
        fake_bridge.block = True
        session = make_session([("foo", "install")])

        session.start()
        qtbot.waitUntil(fake_bridge.entered.is_set, timeout=5000)

        assert session.shutdown(2000) is True
        qtbot.waitUntil(lambda: session.tasks[0].is_terminal, timeout=5000)
        assert session.tasks[0].error == "operation cancelled"
        assert session.quitting is True


class TestSnapshot:
    def test_counts_and_flags(self, qtbot, make_session, fake_bridge) -> None:
        fake_bridge.remove_errors["bar"] = ExecutionError("held packages")
        session = make_session([("foo", "install"), ("bar", "uninstall"), ("baz", "install")])

        run_to_completion(qtbot, session)
        snapshot = session.snapshot()

        assert snapshot.install_count == 2
        assert snapshot.uninstall_count == 1
        assert snapshot.completed_count == 2
        assert snapshot.failed_count == 1
        assert snapshot.completed is True
        assert snapshot.paused is False
        assert snapshot.quitting is False
        assert snapshot.critical_failure is None
        assert snapshot.elapsed > 0
        assert snapshot.overall_progress == pytest.approx((1.0 + 0.8 + 1.0) / 3)
