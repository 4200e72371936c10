"""
Logging utilities for the polychan library.

All records go through the package logger ``polychan``, which owns the single
colorized stdout handler. Each module logs through a child logger named after
itself (``polychan.backend``, ``polychan.cuda``, ``polychan.cpu``, ...), so
kernel compilation and launches can be filtered apart from dispatch or
backend detection::

    set_log_level("DEBUG")                  # whole package
    set_log_level("WARNING", module="cuda")  # silence CUDA compile/launch logs
"""

import logging
import sys
from typing import Optional, Union

ROOT_NAME = "polychan"


class ColorFormatter(logging.Formatter):
    """
    Logging formatter that adds ANSI color codes to the log levels.

    One plain formatter per level is built up front; the logger name in each
    line identifies the emitting module.
    """

    CYAN = "\x1b[36;20m"
    GREEN = "\x1b[32;20m"
    YELLOW = "\x1b[33;20m"
    RED = "\x1b[31;20m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"
    FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
    DATEFMT = "%Y-%m-%d %H:%M:%S"

    LEVEL_COLORS = {
        logging.DEBUG: CYAN,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def __init__(self):
        super().__init__(self.FORMAT, datefmt=self.DATEFMT)
        self._formatters = {
            level: logging.Formatter(
                f"{color}{self.FORMAT}{self.RESET}", datefmt=self.DATEFMT
            )
            for level, color in self.LEVEL_COLORS.items()
        }

    def format(self, record: logging.LogRecord) -> str:
        formatter = self._formatters.get(record.levelno)
        if formatter is None:
            return super().format(record)
        return formatter.format(record)


def _qualify(name: str) -> str:
    """Maps a short module name (``"cuda"``) to its logger name."""
    if name == ROOT_NAME or name.startswith(ROOT_NAME + "."):
        return name
    return f"{ROOT_NAME}.{name}"


def get_logger(name: str = ROOT_NAME) -> logging.Logger:
    """
    Returns a logger of the polychan hierarchy.

    The package logger gets the colorized stdout handler on first use. Module
    loggers (``"polychan.cuda"`` or just ``"cuda"``) carry no handler of their
    own and propagate to it, so every record is printed exactly once.

    Args:
        name: ``"polychan"``, a dotted child name, or a bare module name.

    Returns:
        A configured logging.Logger instance.
    """
    name = _qualify(name)
    logger = logging.getLogger(name)

    if name == ROOT_NAME:
        if not logger.handlers:
            logger.setLevel(logging.INFO)
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(ColorFormatter())
            logger.addHandler(handler)
    else:
        get_logger(ROOT_NAME)

    return logger


logger = get_logger()


def set_log_level(level: Union[int, str], module: Optional[str] = None) -> None:
    """
    Sets the log level for the polychan logger or one of its modules.

    Args:
        level: logging.DEBUG, logging.INFO, etc. or string "DEBUG", "INFO", etc.
        module: Optional module name (``"cuda"``, ``"polychan.cpu"``). The
            package logger is changed when omitted.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    target = logger if module is None else get_logger(module)
    target.setLevel(level)
