"""Shared fixtures for the Install Helper test suite."""

import os
import tempfile
import threading

# Qt and the log/config paths are resolved at import time.
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
os.environ["HOME"] = tempfile.mkdtemp(prefix="install_helper_home_")

import pytest

from app_catalog import App, AppCatalog, InstallMethod
from execution_bridge import InstallationResult
from installer_errors import ExecutionError
from progress_session import ProgressSession


class FakeBridge:
    """Scripted stand-in for PackageBridge.

    ``install_errors``/``remove_errors`` map an app key to the exception to
    raise, ``output`` maps an app key to lines streamed before returning.
    With ``block`` set, calls wait until ``release`` is set or the session's
    cancel event fires.
    """

    def __init__(self):
        self.calls = []
        self.install_errors = {}
        self.remove_errors = {}
        self.output = {}
        self.block = False
        self.release = threading.Event()
        self.entered = threading.Event()

    def _wait(self, cancel_event):
        self.entered.set()
        if not self.block:
            return
        while not self.release.wait(0.01):
            if cancel_event is not None and cancel_event.is_set():
                raise ExecutionError("operation cancelled")

    def install(self, package, cancel_event=None, on_output=None):
        self.calls.append(("install", package.name))
        self._wait(cancel_event)
        for line in self.output.get(package.name, ()):
            on_output(line)
        if package.name in self.install_errors:
            raise self.install_errors[package.name]
        return InstallationResult(package=package, success=True, duration_ms=0)

    def remove(self, app_key, cancel_event=None, on_output=None):
        self.calls.append(("uninstall", app_key))
        self._wait(cancel_event)
        for line in self.output.get(app_key, ()):
            on_output(line)
        if app_key in self.remove_errors:
            raise self.remove_errors[app_key]


@pytest.fixture
def catalog() -> AppCatalog:
    """Small catalog with one app per common install method."""
    return AppCatalog({
        "foo": App("Foo", "development", "Foo editor", InstallMethod.APT, "foo"),
        "bar": App("Bar", "media", "Bar player", InstallMethod.APT, "bar"),
        "baz": App("Baz", "media", "Baz client", InstallMethod.FLATPAK, "org.example.Baz"),
    })


@pytest.fixture
def fake_bridge() -> FakeBridge:
    return FakeBridge()


@pytest.fixture
def make_session(qtbot, catalog, fake_bridge):
    """Factory for sessions with zero stage delays.

    Sessions are shut down at teardown so no worker thread outlives a test.
    """
    sessions = []

    def factory(operations=(), **kwargs):
        kwargs.setdefault("stage_delay_scale", 0.0)
        session = ProgressSession(catalog, fake_bridge, operations, **kwargs)
        sessions.append(session)
        return session

    yield factory

    fake_bridge.release.set()
    for session in sessions:
        session.shutdown(2000)


@pytest.fixture
def os_release(tmp_path):
    """Write an os-release file for the given distribution id."""

    def factory(distro_id, pretty_name=""):
        path = tmp_path / f"os-release-{distro_id}"
        path.write_text(f'NAME="{distro_id.title()}"\nID={distro_id}\n'
                        f'PRETTY_NAME="{pretty_name or distro_id.title()}"\n', encoding="utf-8")
        return str(path)

    return factory
