from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional
import os, shlex, shutil, subprocess, tempfile, threading, time, urllib.error, urllib.request

import psutil
from PyQt6.QtCore import QThread, pyqtSignal

from app_catalog import App, AppCatalog, InstallMethod
from installer_errors import CriticalError, ExecutionError
from linux_distro_helper import LinuxDistroHelper
from output_classifier import OPERATION_UNINSTALL
from logging_config import get_command_logger, setup_logger
from sudo_password import AskpassEnvironment, SecureString

logger = setup_logger(__name__)
command_log = get_command_logger()

OutputCallback = Callable[[str], None]

DEB_PACKAGE_NAMES = {
    "chrome": "google-chrome-stable",
    "vscode": "code",
    "brave":  "brave-browser",
}

DOWNLOAD_CHUNK_SIZE = 64 * 1024


def map_to_deb_package_name(app_key: str) -> str:
    return DEB_PACKAGE_NAMES.get(app_key, app_key)


@dataclass(frozen=True)
class Package:
    name: str
    group: str
    description: str
    method: str
    source: str

    @classmethod
    def from_app(cls, key: str, app: App) -> "Package":
        return cls(name=key, group=app.group, description=app.description, method=app.method, source=app.source)


@dataclass
class InstallationResult:
    package: Package
    success: bool
    duration_ms: int
    output: list[str] = field(default_factory=list)


class PackageBridge:
    """Runs the real install/remove commands for catalog packages.

    Calls block until the package manager exits and are meant to run on a
    ``BridgeWorker`` thread. ``cancel_event`` is checked before every command
    and between output lines; a set event terminates the running command.
    """

    def __init__(self, catalog: AppCatalog | None = None, distro: LinuxDistroHelper | None = None,
                 sudo_password: str = "", dry_run: bool = False, min_free_space_mb: int = 512,
                 download_dir: str | None = None):
        self.catalog           = catalog or AppCatalog()
        self.distro            = distro or LinuxDistroHelper()
        self.sudo_password     = SecureString(sudo_password or "")
        self.dry_run           = dry_run
        self.min_free_space_mb = max(0, int(min_free_space_mb or 0))
        self.download_dir      = download_dir

    def install(self, package: Package, cancel_event: threading.Event | None = None,
                on_output: OutputCallback | None = None) -> InstallationResult:
        started = time.monotonic()
        output: list[str] = []
        logger.info("Installing '%s' via %s (%s)", package.name, package.method, package.source)
        self._check_free_space()
        workdir = tempfile.mkdtemp(prefix="install_helper_dl_", dir=self.download_dir)
        try:
            with self._sudo_environment() as env:
                for cmd in self._install_commands(package, workdir, cancel_event, on_output, output):
                    self._run(cmd, env, cancel_event, on_output, output)
        finally:
            shutil.rmtree(workdir, ignore_errors=True)
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info("'%s' installed in %d ms", package.name, duration_ms)
        return InstallationResult(package=package, success=True, duration_ms=duration_ms, output=output)

    def remove(self, app_key: str, cancel_event: threading.Event | None = None,
               on_output: OutputCallback | None = None) -> None:
        app = self.catalog.get(app_key)
        output: list[str] = []
        logger.info("Removing '%s' via %s (%s)", app_key, app.method, app.source)
        with self._sudo_environment() as env:
            for cmd in self._remove_commands(app_key, app):
                self._run(cmd, env, cancel_event, on_output, output)
        logger.info("'%s' removed", app_key)

    def close(self):
        self.sudo_password.clear()

    def _install_commands(self, package: Package, workdir: str, cancel_event, on_output, output) -> list[list[str]]:
        method, source = package.method, package.source.strip()
        if method == InstallMethod.APT:
            self._require_package_name(source)
            return [self.distro.get_apt_install_cmd(source)]
        if method == InstallMethod.SNAP:
            self._require_package_name(source)
            self._require_command("snap")
            return [self.distro.get_snap_install_cmd(source)]
        if method == InstallMethod.FLATPAK:
            self._require_flatpak_id(source)
            self._require_command("flatpak")
            return [self.distro.get_flatpak_remote_cmd(), self.distro.get_flatpak_install_cmd(source)]
        if method == InstallMethod.DEB:
            if not self.dry_run and not self.distro.is_debian_based:
                raise ExecutionError(f"DEB packages are not supported on {self.distro.describe()}")
            deb_path = self._download(source, Path(workdir, f"{package.name}.deb"), cancel_event, on_output, output)
            return [self.distro.get_apt_install_cmd(str(deb_path))]
        if method == InstallMethod.NATIVE:
            self._require_package_name(source)
            cmd = self.distro.get_pkg_install_cmd(source)
            if not cmd:
                raise ExecutionError(f"No native package manager detected on {self.distro.describe()}")
            return [cmd]
        raise ExecutionError(f"unsupported installation method '{method}' for {package.name}")

    def _remove_commands(self, app_key: str, app: App) -> list[list[str]]:
        method, source = app.method, app.source.strip()
        if method == InstallMethod.APT:
            self._require_package_name(source)
            return [self.distro.get_apt_remove_cmd(source)]
        if method == InstallMethod.SNAP:
            self._require_package_name(source)
            return [self.distro.get_snap_remove_cmd(source)]
        if method == InstallMethod.FLATPAK:
            self._require_flatpak_id(source)
            return [self.distro.get_flatpak_remove_cmd(source)]
        if method == InstallMethod.DEB:
            package_name = map_to_deb_package_name(app_key)
            self._require_package_name(package_name)
            return [self.distro.get_apt_remove_cmd(package_name)]
        if method == InstallMethod.NATIVE:
            self._require_package_name(source)
            cmd = self.distro.get_pkg_remove_cmd(source)
            if not cmd:
                raise ExecutionError(f"No native package manager detected on {self.distro.describe()}")
            return [cmd]
        raise ExecutionError(f"unsupported removal method '{method}' for {app_key}")

    def _require_package_name(self, name: str):
        if not self.distro.is_valid_package_name(name):
            raise ExecutionError(f"invalid package name '{name}'")

    def _require_flatpak_id(self, app_id: str):
        if not self.distro.is_valid_flatpak_id(app_id):
            raise ExecutionError(f"invalid flatpak application id '{app_id}'")

    def _require_command(self, name: str):
        if not self.dry_run and not self.distro.command_exists(name):
            raise ExecutionError(f"'{name}' is not available on this system")

    def _check_free_space(self, path: str = "/"):
        if not self.min_free_space_mb:
            return
        try:
            free_mb = psutil.disk_usage(path).free // (1024 * 1024)
        except OSError as e:
            logger.warning(f"Could not determine free space on '{path}': {e}")
            return
        if free_mb < self.min_free_space_mb:
            raise ExecutionError(
                f"insufficient disk space: {free_mb} MB free on '{path}', {self.min_free_space_mb} MB required")

    def _sudo_environment(self):
        return _SudoEnvironment(self.sudo_password)

    def _download(self, url: str, destination: Path, cancel_event, on_output, output) -> Path:
        self._emit(on_output, output, f"Downloading {url}")
        if self.dry_run:
            return destination
        self._check_cancelled(cancel_event, output)
        received = 0
        try:
            with urllib.request.urlopen(url, timeout=60) as response, open(destination, "wb") as target:
                while True:
                    chunk = response.read(DOWNLOAD_CHUNK_SIZE)
                    if not chunk:
                        break
                    target.write(chunk)
                    received += len(chunk)
                    self._check_cancelled(cancel_event, output)
        except (urllib.error.URLError, OSError) as e:
            raise ExecutionError(f"download failed for {url}: {e}", output=output) from e
        self._emit(on_output, output, f"Downloaded {received // 1024} KiB")
        return destination

    def _prepare_command(self, cmd: list[str]) -> list[str]:
        cmd = list(cmd)
        if cmd and cmd[0] == "sudo" and "-A" not in cmd and "-n" not in cmd:
            cmd.insert(1, "-A" if self.sudo_password else "-n")
        return cmd

    def _run(self, cmd: list[str], env: dict, cancel_event, on_output, output: list[str]):
        self._check_cancelled(cancel_event, output)
        cmd = self._prepare_command(cmd)
        cmd_text = " ".join(shlex.quote(a) for a in cmd)
        logger.info("CMD %s", cmd_text)
        command_log.info("$ %s", cmd_text)
        if self.dry_run:
            self._emit(on_output, output, f"DRY RUN: {cmd_text}")
            return
        try:
            process = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True,
                                       env=env, bufsize=1)
        except OSError as e:
            raise ExecutionError(f"could not start '{cmd[0]}': {e}", output=output) from e
        with process:
            for line in process.stdout:
                line = line.rstrip()
                if line:
                    self._emit(on_output, output, line)
                if cancel_event is not None and cancel_event.is_set():
                    process.terminate()
                    process.wait()
                    raise ExecutionError("operation cancelled", output=output)
            returncode = process.wait()
        if returncode != 0:
            self._raise_failure(cmd_text, returncode, output)

    def _raise_failure(self, cmd_text: str, returncode: int, output: list[str]):
        lock = self.distro.held_lock_file("\n".join(output))
        if lock:
            raise CriticalError(f"package manager database is locked ({lock}); "
                                f"another package operation is running", output=output)
        detail = f": {output[-1]}" if output else ""
        raise ExecutionError(f"command failed ({returncode}): {cmd_text}{detail}", output=output)

    @staticmethod
    def _check_cancelled(cancel_event, output):
        if cancel_event is not None and cancel_event.is_set():
            raise ExecutionError("operation cancelled", output=output)

    @staticmethod
    def _emit(on_output, output: list[str], line: str):
        output.append(line)
        command_log.info(line)
        if on_output is not None:
            on_output(line)


class _SudoEnvironment:
    def __init__(self, sudo_password: SecureString):
        self._askpass = AskpassEnvironment(sudo_password) if sudo_password else None

    def __enter__(self) -> dict:
        env = os.environ.copy()
        env["LC_ALL"] = "C"
        env["DEBIAN_FRONTEND"] = "noninteractive"
        if self._askpass is not None:
            self._askpass.create()
            self._askpass.apply(env)
        return env

    def __exit__(self, exc_type, exc, tb):
        if self._askpass is not None:
            self._askpass.cleanup()
        return False


# noinspection PyUnresolvedReferences
class BridgeWorker(QThread):
    outputReceived = pyqtSignal(int, str)
    resultReady    = pyqtSignal(int, bool, str, bool)

    def __init__(self, bridge, task_index: int, operation: str, app_key: str,
                 package: Optional[Package] = None, cancel_event: threading.Event | None = None, parent=None):
        super().__init__(parent)
        self.bridge       = bridge
        self.task_index   = task_index
        self.operation    = operation
        self.app_key      = app_key
        self.package      = package
        self.cancel_event = cancel_event

    def _on_output(self, line: str):
        self.outputReceived.emit(self.task_index, line)

    def run(self):
        try:
            if self.operation == OPERATION_UNINSTALL:
                self.bridge.remove(self.app_key, self.cancel_event, self._on_output)
            else:
                result = self.bridge.install(self.package, self.cancel_event, self._on_output)
                if result is not None and not result.success:
                    raise ExecutionError(f"installation of {self.app_key} reported failure")
        except ExecutionError as e:
            self.resultReady.emit(self.task_index, False, e.message, e.fatal)
            return
        except Exception as e:
            logger.error(f"Unexpected error while processing '{self.app_key}': {e}", exc_info=True)
            self.resultReady.emit(self.task_index, False, str(e) or e.__class__.__name__, False)
            return
        self.resultReady.emit(self.task_index, True, "", False)
