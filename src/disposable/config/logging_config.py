"""
Process-wide logging setup for the broker.

One stream handler on the root logger, a pipe-separated line format and
colored level names when stdout is a terminal. Modules obtain loggers through
``get_logger(__name__)``; the first call configures logging from the
environment if nothing else has.
"""

import logging
import sys
from typing import Optional, Union

from disposable.config.env_guard import get_system_env_value

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
COLOR_LOG_FORMAT = "\x1b[90m%(asctime)s\x1b[0m | %(levelname)s | \x1b[36m%(name)s\x1b[0m | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Library loggers pinned regardless of the broker's own level
LIBRARY_LEVELS = {
    "docker": logging.INFO,
    "urllib3": logging.WARNING,
    "httpcore": logging.INFO,
    "httpx": logging.WARNING,
    "uvicorn": logging.INFO,
    "uvicorn.error": logging.INFO,
}

_active_level: Optional[Union[str, int]] = None


class LevelColorFormatter(logging.Formatter):
    """Formatter that wraps the level name in an ANSI color."""

    LEVEL_COLORS = {
        "DEBUG": "\x1b[37m",
        "INFO": "\x1b[32m",
        "WARNING": "\x1b[33m",
        "ERROR": "\x1b[31m",
        "CRITICAL": "\x1b[41m",
    }

    def __init__(self, fmt: str, datefmt: str, colored: bool):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.colored = colored

    def format(self, record: logging.LogRecord) -> str:
        if not self.colored or record.levelname not in self.LEVEL_COLORS:
            return super().format(record)
        plain = record.levelname
        record.levelname = f"{self.LEVEL_COLORS[plain]}{plain}\x1b[0m"
        try:
            return super().format(record)
        finally:
            record.levelname = plain


def _stdout_is_terminal() -> bool:
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty()) and get_system_env_value("NO_COLOR") is None


def get_log_level() -> str:
    """Level from ``DISPOSABLE_LOG_LEVEL``, then ``LOG_LEVEL``, else INFO."""
    level = get_system_env_value("DISPOSABLE_LOG_LEVEL") or get_system_env_value("LOG_LEVEL") or "INFO"
    return str(level).upper()


def configure_logging(level: Optional[Union[str, int]] = None) -> Union[str, int]:
    """
    Install the broker's handler and formatter on the root logger.

    Calling again with the same level is a no-op; a different level
    reconfigures the existing handlers in place (pytest installs its own).

    Returns:
        The level that is now active.
    """
    global _active_level

    if level is None:
        level = get_log_level()
    elif isinstance(level, str):
        level = level.upper()

    if _active_level == level:
        return level
    _active_level = level

    colored = _stdout_is_terminal()
    formatter = LevelColorFormatter(
        fmt=get_system_env_value("DISPOSABLE_LOG_FORMAT") or (COLOR_LOG_FORMAT if colored else LOG_FORMAT),
        datefmt=get_system_env_value("DISPOSABLE_LOG_DATEFMT") or DATE_FORMAT,
        colored=colored,
    )

    root = logging.getLogger()
    root.setLevel(level)
    if not root.handlers:
        root.addHandler(logging.StreamHandler())
    for handler in root.handlers:
        if isinstance(handler, logging.StreamHandler):
            handler.setLevel(level)
            handler.setFormatter(formatter)

    for name, library_level in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(library_level)
    return level


def get_logger(name: str) -> logging.Logger:
    """Module logger; configures logging on first use."""
    if _active_level is None:
        configure_logging()
    return logging.getLogger(name)
