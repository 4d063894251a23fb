from __future__ import annotations
from typing import NamedTuple, Sequence
import logging

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

logger = logging.getLogger(__name__)


class TaskStatus:
    PENDING      = "pending"
    DOWNLOADING  = "downloading"
    INSTALLING   = "installing"
    UNINSTALLING = "uninstalling"
    COMPLETED    = "completed"
    FAILED       = "failed"

    TERMINAL = (COMPLETED, FAILED)


class Stage(NamedTuple):
    progress: float
    message: str
    status: str
    delay_ms: int


INSTALL_STAGES: tuple[Stage, ...] = (
    Stage(0.1, "Preparing installation...",  TaskStatus.INSTALLING,  500),
    Stage(0.3, "Downloading packages...",    TaskStatus.DOWNLOADING, 800),
    Stage(0.6, "Installing application...",  TaskStatus.INSTALLING,  1200),
    Stage(0.8, "Configuring application...", TaskStatus.INSTALLING,  600),
)

UNINSTALL_STAGES: tuple[Stage, ...] = (
    Stage(0.2, "Preparing uninstallation...",  TaskStatus.UNINSTALLING, 400),
    Stage(0.4, "Checking dependencies...",     TaskStatus.UNINSTALLING, 600),
    Stage(0.6, "Removing package...",          TaskStatus.UNINSTALLING, 800),
    Stage(0.8, "Cleaning up configuration...", TaskStatus.UNINSTALLING, 400),
)


# noinspection PyUnresolvedReferences
class StageSequencer(QObject):
    """Replays a stage table for one task at a time on the Qt event loop.

    The first stage is announced on the next loop iteration, each later stage
    after the previous stage's delay, and ``stagesFinished`` fires once the
    last delay has elapsed. Nothing blocks the dispatch thread.
    """

    stageAnnounced = pyqtSignal(int, float, str, str)
    stagesFinished = pyqtSignal(int)

    def __init__(self, delay_scale: float = 1.0, parent=None):
        super().__init__(parent)
        self.delay_scale = max(0.0, float(delay_scale))
        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.timeout.connect(self._advance_stage)
        self._task_index: int | None = None
        self._stages: list[Stage] = []
        self._position = 0

    @property
    def is_running(self) -> bool:
        return self._task_index is not None

    @property
    def task_index(self) -> int | None:
        return self._task_index

    def start(self, task_index: int, stages: Sequence[Stage]):
        if self.is_running:
            raise RuntimeError(f"Stage sequencer is busy with task {self._task_index}")
        self._task_index = task_index
        self._stages = list(stages)
        self._position = 0
        self._timer.start(0)

    def cancel(self):
        if self._timer.isActive():
            self._timer.stop()
        if self.is_running:
            logger.debug("Stage sequence for task %s cancelled at stage %s", self._task_index, self._position)
        self._reset()

    def _scaled(self, delay_ms: int) -> int:
        return max(0, int(delay_ms * self.delay_scale))

    def _advance_stage(self):
        if self._task_index is None:
            return
        task_index = self._task_index
        if self._position >= len(self._stages):
            self._reset()
            self.stagesFinished.emit(task_index)
            return
        stage = self._stages[self._position]
        self._position += 1
        self.stageAnnounced.emit(task_index, stage.progress, stage.message, stage.status)
        # a slot may have cancelled the run while handling the announcement
        if self._task_index == task_index:
            self._timer.start(self._scaled(stage.delay_ms))

    def _reset(self):
        self._task_index = None
        self._stages = []
        self._position = 0
