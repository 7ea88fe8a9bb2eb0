"""
Run log: console output plus an append-only text log.

Each line reads `<timestamp> [<Level>] <message>` where Level is one of
Info, Warning, Error, Success.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

ROOT_LOGGER = "m365_admin_toolkit"

_LEVEL_LABELS = {
    logging.DEBUG: "Info",
    logging.INFO: "Info",
    SUCCESS: "Success",
    logging.WARNING: "Warning",
    logging.ERROR: "Error",
    logging.CRITICAL: "Error",
}


class RunLogFormatter(logging.Formatter):
    """Formats records as `<timestamp> [<Level>] <message>`."""

    def __init__(self):
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        label = _LEVEL_LABELS.get(record.levelno)
        if label is None:
            label = "Error" if record.levelno > logging.ERROR else "Info"
        line = f"{self.formatTime(record, self.datefmt)} [{label}] {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def log_success(logger: logging.Logger, message: str) -> None:
    logger.log(SUCCESS, message)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the toolkit logger with a console handler and, when log_file
    is given, an append-only file handler.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    formatter = RunLogFormatter()

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(numeric_level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        logger.debug(f"Logging to: {log_file}")

    logger.propagate = False
    return logger
