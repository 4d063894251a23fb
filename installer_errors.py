"""Error taxonomy shared by the catalog, the execution bridge and the session.

Only a critical error ends a session early. Every other failure is recorded on
its task and the queue moves on to the next pending operation.
"""
from __future__ import annotations

from typing import Iterable, Sequence

DEFAULT_CRITICAL_MARKERS: tuple[str, ...] = ("CRITICAL", "SYSTEM")


class InstallHelperError(Exception):
    pass


class NotFoundError(InstallHelperError):
    def __init__(self, app_key: str):
        self.app_key = app_key
        super().__init__(f"App {app_key} not found in catalog")


class ExecutionError(InstallHelperError):
    """Raised by the execution bridge when a package operation fails.

    ``fatal`` marks failures that make every later operation pointless, for
    example a package manager database lock held by another process.
    """

    def __init__(self, message: str, fatal: bool = False, output: Sequence[str] = ()):
        super().__init__(message)
        self.message = message
        self.fatal   = fatal
        self.output  = list(output)


class CriticalError(ExecutionError):
    def __init__(self, message: str, output: Sequence[str] = ()):
        super().__init__(message, fatal=True, output=output)


def is_critical(error_text: str, fatal: bool = False,
                markers: Iterable[str] | None = DEFAULT_CRITICAL_MARKERS) -> bool:
    if fatal:
        return True
    if not error_text or not markers:
        return False
    return any(marker and marker in error_text for marker in markers)
