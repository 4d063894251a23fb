from __future__ import annotations
from pathlib import Path
import logging, os, threading
from logging.handlers import RotatingFileHandler

__all__ = ["setup_logger", "get_command_logger", "get_log_file_path", "get_log_dir"]

_LOG_DIR = Path(os.environ.get("HOME") or Path.home()) / ".config" / "Install Helper" / "logs"
MAIN_LOG_NAME    = "install_helper.log"
COMMAND_LOG_NAME = "package_commands.log"
COMMAND_LOGGER   = "install_helper.commands"

_RAW_LEVEL = os.environ.get("LOG_LEVEL", "").upper()
_LEVEL = getattr(logging, _RAW_LEVEL, None) if _RAW_LEVEL else logging.INFO
if not isinstance(_LEVEL, int):
    print(f"[logging_config] WARNING: unknown LOG_LEVEL '{_RAW_LEVEL}', defaulting to INFO", flush=True)
    _LEVEL = logging.INFO

_FORMATTER = logging.Formatter(
    fmt="%(asctime)s  %(levelname)-8s  %(name)s  -  %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
_TRANSCRIPT_FORMATTER = logging.Formatter(fmt="%(asctime)s  %(message)s", datefmt="%H:%M:%S")

_handler_lock = threading.Lock()
_file_handlers: dict[str, RotatingFileHandler | None] = {}


def _get_file_handler(log_name: str, formatter: logging.Formatter) -> RotatingFileHandler | None:
    """Return the process-wide handler for ``log_name``, creating it once.

    A failed creation is remembered as ``None`` so every later logger falls
    back to console output without retrying.
    """
    if log_name in _file_handlers:
        return _file_handlers[log_name]
    with _handler_lock:
        if log_name in _file_handlers:
            return _file_handlers[log_name]
        handler = None
        try:
            _LOG_DIR.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(_LOG_DIR / log_name, maxBytes=2 * 1024 * 1024, backupCount=5,
                                          encoding="utf-8")
            handler.setFormatter(formatter)
        except OSError as exc:
            print(f"[logging_config] WARNING: could not create log file handler for {log_name}: {exc}", flush=True)
        _file_handlers[log_name] = handler
    return handler


def setup_logger(name: str, level: int = _LEVEL, log_name: str = MAIN_LOG_NAME, console: bool = True,
                 formatter: logging.Formatter = _FORMATTER) -> logging.Logger:
    logger = logging.getLogger(name)

    if console and not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler) for h in logger.handlers
    ):
        sh = logging.StreamHandler()
        sh.setFormatter(_FORMATTER)
        sh.setLevel(level)
        logger.addHandler(sh)

    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        fh = _get_file_handler(log_name, formatter)
        if fh:
            logger.addHandler(fh)

    logger.setLevel(level)
    logger.propagate = False
    return logger


def get_command_logger() -> logging.Logger:
    """Logger for the raw transcript of package manager commands and output."""
    return setup_logger(COMMAND_LOGGER, logging.INFO, COMMAND_LOG_NAME, console=False,
                        formatter=_TRANSCRIPT_FORMATTER)


def get_log_dir() -> Path:
    return _LOG_DIR


def get_log_file_path(log_name: str = MAIN_LOG_NAME) -> Path:
    return _LOG_DIR / log_name
