from __future__ import annotations
from collections import deque
from dataclasses import dataclass, replace
from typing import Iterable, Optional, Sequence
import threading, time

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

from app_catalog import AppCatalog
from execution_bridge import BridgeWorker, Package
from installer_errors import DEFAULT_CRITICAL_MARKERS, NotFoundError, is_critical
from logging_config import setup_logger
from output_classifier import OPERATION_INSTALL, OPERATION_UNINSTALL, classify_output
from stage_sequencer import INSTALL_STAGES, UNINSTALL_STAGES, StageSequencer, TaskStatus

logger = setup_logger(__name__)

LOG_CAPACITY = 10
NOT_FOUND_DURATION = 1.0
OPERATIONS = (OPERATION_INSTALL, OPERATION_UNINSTALL)

NAV_COMPLETED_OPERATIONS = "completed_operations"
NAV_REFRESH_STATUS       = "refresh_status"


@dataclass(frozen=True)
class SelectedOperation:
    app_key: str
    operation: str = OPERATION_INSTALL
    app_name: str = ""

    @classmethod
    def coerce(cls, value) -> "SelectedOperation":
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            return cls(str(value.get("app", "")), str(value.get("operation", OPERATION_INSTALL)),
                       str(value.get("name", "") or ""))
        if isinstance(value, str):
            return cls(value)
        return cls(*value)


@dataclass
class InstallTask:
    name: str
    app_name: str
    description: str
    operation: str
    status: str = TaskStatus.PENDING
    progress: float = 0.0
    duration: float = 0.0
    error: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.status in TaskStatus.TERMINAL


class LogRingBuffer:
    def __init__(self, capacity: int = LOG_CAPACITY):
        self._entries: deque[str] = deque(maxlen=capacity)

    def append(self, entry: str) -> bool:
        if not entry:
            return False
        self._entries.append(entry)
        return True

    def snapshot(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class CriticalFailure:
    task_name: str
    message: str

    def summary(self) -> str:
        return f"Error installing {self.task_name}: {self.message}"


@dataclass(frozen=True)
class SessionSnapshot:
    tasks: tuple[InstallTask, ...]
    overall_progress: float
    completed: bool
    paused: bool
    quitting: bool
    logs: tuple[str, ...]
    critical_failure: Optional[CriticalFailure]
    install_count: int
    uninstall_count: int
    completed_count: int
    failed_count: int
    elapsed: float


# noinspection PyUnresolvedReferences
class ProgressSession(QObject):
    """Runs queued install/uninstall operations one at a time.

    Each task replays its stage table, then hands the real package operation
    to a ``BridgeWorker`` thread. Every mutation of tasks, logs and aggregates
    happens on the thread that owns the session; worker results arrive through
    queued signal connections.
    """

    taskUpdated            = pyqtSignal(int)
    logAppended            = pyqtSignal(str)
    overallProgressChanged = pyqtSignal(float)
    pausedChanged          = pyqtSignal(bool)
    sessionCompleted       = pyqtSignal()
    criticalFailure        = pyqtSignal(str, str)
    navigationRequested    = pyqtSignal(str, object)

    def __init__(self, catalog: AppCatalog, bridge, operations: Iterable = (), stage_delay_scale: float = 1.0,
                 critical_markers: Sequence[str] | None = DEFAULT_CRITICAL_MARKERS,
                 failure_progress: float | None = None, parent=None):
        super().__init__(parent)
        self.catalog          = catalog
        self.bridge           = bridge
        self.critical_markers = tuple(critical_markers or ())
        self.failure_progress = failure_progress
        self.sequencer        = StageSequencer(stage_delay_scale, self)
        self.sequencer.stageAnnounced.connect(self._on_stage_announced)
        self.sequencer.stagesFinished.connect(self._on_stages_finished)

        self._tasks: list[InstallTask] = []
        self._logs = LogRingBuffer()
        self._overall_progress = 1.0
        self._paused = self._quitting = False
        self._critical: CriticalFailure | None = None
        self._in_flight: int | None = None
        self._task_started = 0.0
        self._session_started: float | None = None
        self._completion_emitted = False
        self._cancel_event = threading.Event()
        self._workers: list[BridgeWorker] = []

        operations = list(operations)
        if operations:
            self.enqueue(operations)

    @classmethod
    def from_names(cls, names: Iterable[str], catalog: AppCatalog, bridge, **kwargs) -> "ProgressSession":
        return cls(catalog, bridge, [SelectedOperation(name, OPERATION_INSTALL) for name in names], **kwargs)

    # -- queue -----------------------------------------------------------

    def enqueue(self, operations: Iterable) -> bool:
        if self._tasks:
            logger.warning("Session already holds %d task(s); enqueue ignored", len(self._tasks))
            return False
        tasks = []
        for value in operations:
            selected = SelectedOperation.coerce(value)
            if selected.operation not in OPERATIONS:
                raise ValueError(f"Unsupported operation '{selected.operation}' for {selected.app_key}")
            app_name = selected.app_name or self.catalog.display_name(selected.app_key)
            verb = "Installing" if selected.operation == OPERATION_INSTALL else "Uninstalling"
            tasks.append(InstallTask(name=selected.app_key, app_name=app_name,
                                     description=f"{verb} {app_name}...", operation=selected.operation))
        self._tasks = tasks
        logger.info("Queued %d operation(s): %s", len(tasks),
                    ", ".join(f"{t.operation} {t.name}" for t in tasks) or "none")
        self._update_overall_progress()
        return bool(tasks)

    def start(self):
        if self._session_started is None:
            self._session_started = time.monotonic()
        QTimer.singleShot(0, self.advance)

    def advance(self):
        if self._paused or self._quitting or self._critical is not None or self._in_flight is not None:
            return
        index = next((i for i, t in enumerate(self._tasks) if t.status == TaskStatus.PENDING), None)
        if index is None:
            self._check_completion()
            return
        self._start_task(index)

    def _schedule_advance(self):
        if not self._quitting and self._critical is None:
            QTimer.singleShot(0, self.advance)

    def _start_task(self, index: int):
        task = self._tasks[index]
        self._in_flight = index
        self._task_started = time.monotonic()
        found = self.catalog.lookup(task.name)[-1]
        if not found:
            self._finish_task(index, False, str(NotFoundError(task.name)), duration=NOT_FOUND_DURATION)
            return
        logger.info("Starting %s of '%s'", task.operation, task.name)
        if task.operation == OPERATION_INSTALL:
            task.status = TaskStatus.INSTALLING
            stages = INSTALL_STAGES
        else:
            task.status = TaskStatus.UNINSTALLING
            stages = UNINSTALL_STAGES
        self.taskUpdated.emit(index)
        self.sequencer.start(index, stages)

    # -- stage and bridge feedback ---------------------------------------

    def _on_stage_announced(self, index: int, progress: float, message: str, status: str):
        if index != self._in_flight or self._quitting:
            return
        task = self._tasks[index]
        task.status = status
        task.progress = max(task.progress, progress)
        if message:
            self._append_log(f"{task.app_name}: {message}")
        self.taskUpdated.emit(index)
        self._update_overall_progress()

    def _apply_hint(self, index: int, text: str):
        task = self._tasks[index]
        fraction, message, matched = classify_output(text, task.app_name, task.operation)
        if not matched or fraction <= task.progress:
            return
        task.progress = min(fraction, 1.0)
        if message:
            self._append_log(message)
        self.taskUpdated.emit(index)
        self._update_overall_progress()

    def _on_stages_finished(self, index: int):
        if index != self._in_flight or self._quitting:
            return
        task = self._tasks[index]
        if task.operation == OPERATION_INSTALL:
            self._apply_hint(index, f"Setting up {task.app_name}")
            package = Package.from_app(task.name, self.catalog.get(task.name))
        else:
            self._apply_hint(index, f"Removing {task.app_name}")
            package = None

        worker = BridgeWorker(self.bridge, index, task.operation, task.name, package, self._cancel_event, self)
        worker.outputReceived.connect(self._on_output_line)
        worker.resultReady.connect(self._on_bridge_result)
        worker.finished.connect(lambda w=worker: self._on_worker_finished(w))
        self._workers.append(worker)
        worker.start()

    def _on_output_line(self, index: int, line: str):
        if index != self._in_flight or self._quitting or self._critical is not None:
            return
        self._apply_hint(index, line)

    def _on_bridge_result(self, index: int, success: bool, error: str, fatal: bool):
        if index != self._in_flight:
            logger.warning("Discarding result for task %d, task %s is in flight", index, self._in_flight)
            return
        self._finish_task(index, success, error, fatal)

    def _on_worker_finished(self, worker: BridgeWorker):
        if worker in self._workers:
            self._workers.remove(worker)
        worker.deleteLater()

    def _finish_task(self, index: int, success: bool, error: str = "", fatal: bool = False,
                     duration: float | None = None):
        task = self._tasks[index]
        self._in_flight = None
        task.duration = duration if duration is not None else time.monotonic() - self._task_started
        install = task.operation == OPERATION_INSTALL
        critical = False
        if success:
            task.status = TaskStatus.COMPLETED
            task.progress = 1.0
            task.error = ""
            self._append_log(f"{task.name} installation completed" if install else f"{task.name} uninstalled")
            logger.info("'%s' %s finished in %.1fs", task.name, task.operation, task.duration)
        else:
            task.status = TaskStatus.FAILED
            task.error = error
            if self.failure_progress is not None:
                task.progress = min(max(float(self.failure_progress), 0.0), 1.0)
            verb = "installation" if install else "uninstallation"
            self._append_log(f"{task.name} {verb} failed: {error}")
            logger.error("'%s' %s failed: %s", task.name, verb, error)
            critical = is_critical(error, fatal, self.critical_markers)
            if critical:
                self._critical = CriticalFailure(task.name, error)
                logger.critical(self._critical.summary())
        self.taskUpdated.emit(index)
        self._update_overall_progress()
        if critical:
            self.criticalFailure.emit(task.name, error)
            return
        self._check_completion()
        self._schedule_advance()

    def _check_completion(self):
        if self.completed and not self._completion_emitted:
            self._completion_emitted = True
            failed = self.failed_count
            logger.info("All operations finished: %d completed, %d failed", len(self._tasks) - failed, failed)
            self.sessionCompleted.emit()

    # -- control ---------------------------------------------------------

    def toggle_pause(self) -> bool:
        self._paused = not self._paused
        logger.info("Session %s", "paused" if self._paused else "resumed")
        self.pausedChanged.emit(self._paused)
        if not self._paused:
            self._schedule_advance()
        return self._paused

    def quit(self):
        if self._quitting:
            return
        self._quitting = True
        self.sequencer.cancel()
        logger.info("Session quit requested")
        self._update_overall_progress()

    def request_exit(self):
        if self.completed:
            self.navigationRequested.emit(NAV_COMPLETED_OPERATIONS, self.tasks)
        else:
            self.navigationRequested.emit(NAV_REFRESH_STATUS, None)

    def shutdown(self, timeout_ms: int = 5000) -> bool:
        self.quit()
        self._cancel_event.set()
        stopped = True
        for worker in list(self._workers):
            if not worker.wait(timeout_ms):
                logger.warning("Bridge worker for task %d did not stop within %d ms", worker.task_index, timeout_ms)
                stopped = False
        return stopped

    # -- state -----------------------------------------------------------

    def _append_log(self, entry: str):
        if self._logs.append(entry):
            self.logAppended.emit(entry)

    def _update_overall_progress(self):
        value = sum(t.progress for t in self._tasks) / len(self._tasks) if self._tasks else 1.0
        self._overall_progress = value
        self.overallProgressChanged.emit(value)

    @property
    def tasks(self) -> tuple[InstallTask, ...]:
        return tuple(replace(t) for t in self._tasks)

    @property
    def logs(self) -> tuple[str, ...]:
        return self._logs.snapshot()

    @property
    def overall_progress(self) -> float:
        return self._overall_progress

    @property
    def completed(self) -> bool:
        return all(t.is_terminal for t in self._tasks)

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def quitting(self) -> bool:
        return self._quitting

    @property
    def critical_failure(self) -> CriticalFailure | None:
        return self._critical

    @property
    def in_flight(self) -> int | None:
        return self._in_flight

    @property
    def failed_count(self) -> int:
        return sum(1 for t in self._tasks if t.status == TaskStatus.FAILED)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._session_started if self._session_started is not None else 0.0

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            tasks=self.tasks,
            overall_progress=self._overall_progress,
            completed=self.completed,
            paused=self._paused,
            quitting=self._quitting,
            logs=self._logs.snapshot(),
            critical_failure=self._critical,
            install_count=sum(1 for t in self._tasks if t.operation == OPERATION_INSTALL),
            uninstall_count=sum(1 for t in self._tasks if t.operation == OPERATION_UNINSTALL),
            completed_count=sum(1 for t in self._tasks if t.status == TaskStatus.COMPLETED),
            failed_count=self.failed_count,
            elapsed=self.elapsed,
        )
