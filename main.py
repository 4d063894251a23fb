from options import Options
from app_catalog import AppCatalog
from execution_bridge import PackageBridge
from logging_config import setup_logger, get_log_file_path
from progress_session import ProgressSession
from PyQt6.QtCore import QCoreApplication, QTimer
import os, signal, sys

logger = setup_logger(__name__)

SUDO_PASSWORD_ENV = "INSTALL_HELPER_SUDO_PASSWORD"
EXIT_OK, EXIT_FAILED, EXIT_INTERRUPTED = 0, 1, 130


# noinspection PyUnresolvedReferences
class HeadlessRunner:
    def __init__(self, app, session: ProgressSession):
        self.app = app
        self.session = session
        self.exit_code = EXIT_OK
        self._last_reported = -1
        session.logAppended.connect(self.on_log_appended)
        session.overallProgressChanged.connect(self.on_overall_progress)
        session.sessionCompleted.connect(self.on_session_completed)
        session.criticalFailure.connect(self.on_critical_failure)
        session.navigationRequested.connect(self.on_navigation_requested)

    def start(self):
        if not self.session.tasks:
            logger.warning("No operations configured in %s", Options.config_file_path)
        self.session.start()

    @staticmethod
    def on_log_appended(entry):
        logger.info(entry)

    def on_overall_progress(self, value):
        percent = int(value * 100)
        if percent // 10 != self._last_reported // 10:
            self._last_reported = percent
            logger.info(f"Overall progress: {percent}%")

    def on_session_completed(self):
        snapshot = self.session.snapshot()
        for task in snapshot.tasks:
            suffix = f" ({task.error})" if task.error else ""
            logger.info(f"  {task.status:<9} {task.operation:<9} {task.name} {task.duration:.1f}s{suffix}")
        logger.info(f"Finished {len(snapshot.tasks)} operation(s) in {snapshot.elapsed:.1f}s: "
                    f"{snapshot.completed_count} completed, {snapshot.failed_count} failed")
        self.exit_code = EXIT_FAILED if snapshot.failed_count else EXIT_OK
        self.session.request_exit()

    def on_critical_failure(self, task_name, message):
        logger.critical(self.session.critical_failure.summary())
        self.exit_code = EXIT_FAILED
        self.session.request_exit()

    def on_navigation_requested(self, target, tasks):
        logger.debug(f"Leaving session: {target}")
        self.app.exit(self.exit_code)

    def interrupt(self, *_):
        logger.warning("Interrupted, stopping after the current package operation")
        self.exit_code = EXIT_INTERRUPTED
        self.session.shutdown()
        self.app.exit(self.exit_code)


def build_session(sudo_password=""):
    catalog = AppCatalog.from_config(Options.apps)
    bridge = PackageBridge(catalog, sudo_password=sudo_password, dry_run=Options.dry_run,
                           min_free_space_mb=Options.min_free_space_mb)
    session = ProgressSession(catalog, bridge, Options.operations,
                              stage_delay_scale=Options.stage_delay_scale,
                              critical_markers=Options.critical_markers,
                              failure_progress=Options.failure_progress)
    return session, bridge


def main():
    app = QCoreApplication(sys.argv)
    app.setApplicationName("Install Helper")

    def handle_exception(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))
    sys.excepthook = handle_exception

    Options.load_config(Options.config_file_path)
    session, bridge = build_session(os.environ.pop(SUDO_PASSWORD_ENV, ""))
    runner = HeadlessRunner(app, session)
    signal.signal(signal.SIGINT, runner.interrupt)
    # lets the interpreter run Python signal handlers while the Qt loop is idle
    heartbeat = QTimer()
    heartbeat.timeout.connect(lambda: None)
    heartbeat.start(200)

    logger.info(f"Logging to {get_log_file_path()}")
    QTimer.singleShot(0, runner.start)
    app.exec()
    session.shutdown()
    bridge.close()
    sys.exit(runner.exit_code)

if __name__ == '__main__':
    main()
