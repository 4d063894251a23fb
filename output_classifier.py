"""Best-effort mapping of dpkg/apt output lines to task progress.

Both parsers return ``(fraction, message, matched)``. Checks run in a fixed
priority order and the first hit wins. Matching is case-sensitive because the
bridge runs package managers with ``LC_ALL=C``.
"""
from __future__ import annotations
from typing import Tuple

OPERATION_INSTALL   = "install"
OPERATION_UNINSTALL = "uninstall"

MSG_UNINSTALLATION_COMPLETE = "Uninstallation complete"

Classification = Tuple[float, str, bool]
NO_MATCH: Classification = (0.0, "", False)

_INSTALL_TRIGGERS = (
    ("mailcap",            0.96, "Processing MIME type triggers"),
    ("gnome-menus",        0.97, "Processing GNOME menu triggers"),
    ("desktop-file-utils", 0.98, "Processing desktop file triggers"),
    ("man-db",             0.99, "Processing manual page triggers"),
)

_UNINSTALL_TRIGGERS = (
    ("man-db",             0.75, "Processing manual page triggers"),
    ("desktop-file-utils", 0.78, "Processing desktop file triggers"),
    ("gnome-menus",        0.80, "Processing GNOME menu triggers"),
    ("mailcap",            0.82, "Processing MIME type triggers"),
)


def parse_install_output(output: str, app_name: str) -> Classification:
    output = (output or "").strip()
    if not output:
        return NO_MATCH

    if "Selecting previously unselected package" in output:
        return 0.62, f"Selecting {app_name} package", True
    if "Reading database" in output:
        return 0.65, "Reading package database", True
    if "Preparing to unpack" in output:
        return 0.68, f"Preparing to unpack {app_name}", True
    if "Unpacking" in output and "Preparing" not in output:
        return 0.72, f"Unpacking {app_name} package", True

    if "Setting up" in output:
        return 0.75, f"Setting up {app_name}", True
    if "update-alternatives:" in output:
        return 0.92, f"Configuring {app_name} alternatives", True

    if "Processing triggers" in output:
        return _install_trigger(output)

    return NO_MATCH


def _install_trigger(output: str) -> Classification:
    for marker, fraction, message in _INSTALL_TRIGGERS:
        if marker in output:
            return fraction, message, True
    if "menu" in output:
        return 1.0, "Processing menu triggers", True
    return 0.96, "Processing system triggers", True


def parse_uninstall_output(output: str, app_name: str) -> Classification:
    output = (output or "").strip()
    if not output:
        return NO_MATCH

    if "Reading package lists" in output:
        return 0.25, "Reading package lists", True
    if "Building dependency tree" in output:
        return 0.35, "Building dependency tree", True
    if "Reading state information" in output:
        return 0.45, "Reading state information", True
    if "Preparing to remove" in output:
        return 0.55, f"Preparing to remove {app_name}" if app_name else "Preparing to remove", True

    if "Removing" in output and (not app_name or app_name in output):
        return 0.65, f"Removing {app_name}" if app_name else "Removing package", True

    if "Processing triggers" in output:
        for marker, fraction, message in _UNINSTALL_TRIGGERS:
            if marker in output:
                return fraction, message, True
        return 0.75, "Processing system triggers", True

    if "Purging configuration files" in output:
        return 0.90, "Purging configuration files", True
    if "dpkg: warning" in output and "removing" in output:
        return 0.95, "Checking dependencies", True
    if "removed" in output:
        return 1.0, MSG_UNINSTALLATION_COMPLETE, True

    return NO_MATCH


def classify_output(output: str, app_name: str, operation: str) -> Classification:
    if operation == OPERATION_UNINSTALL:
        return parse_uninstall_output(output, app_name)
    if operation == OPERATION_INSTALL:
        return parse_install_output(output, app_name)
    return NO_MATCH
