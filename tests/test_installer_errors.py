import pytest

from installer_errors import (
    DEFAULT_CRITICAL_MARKERS,
    CriticalError,
    ExecutionError,
    InstallHelperError,
    NotFoundError,
    is_critical,
)


class TestErrorTypes:
    def test_hierarchy(self) -> None:
        assert issubclass(NotFoundError, InstallHelperError)
        assert issubclass(CriticalError, ExecutionError)

    def test_execution_error_carries_output(self) -> None:
        error = ExecutionError("exit 100", output=["E: Unable to locate package foo"])

        assert str(error) == error.message == "exit 100"
        assert error.fatal is False
        assert error.output == ["E: Unable to locate package foo"]

    def test_critical_error_is_fatal(self) -> None:
        assert CriticalError("locked").fatal is True


class TestIsCritical:
    @pytest.mark.parametrize(
        ("text", "fatal", "expected"),
        [
            ("disk full", False, False),
            ("disk full", True, True),
            ("CRITICAL: dpkg interrupted", False, True),
            ("SYSTEM failure", False, True),
            ("system failure", False, False),
            ("", False, False),
        ],
    )
    def test_default_markers(self, text, fatal, expected) -> None:
        assert is_critical(text, fatal) is expected

    def test_markers_are_configurable(self) -> None:
        assert is_critical("FATAL thing", markers=["FATAL"]) is True
        assert is_critical("CRITICAL thing", markers=[]) is False
        assert is_critical("CRITICAL thing", markers=None) is False

    def test_defaults(self) -> None:
        assert DEFAULT_CRITICAL_MARKERS == ("CRITICAL", "SYSTEM")
