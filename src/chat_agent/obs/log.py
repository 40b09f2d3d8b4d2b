"""Logging configuration for the `chat_agent` logger tree."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from chat_agent.config import Settings

_CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(settings: Settings) -> logging.Logger:
    """Configure console and optional file output for the package logger."""

    root_logger = logging.getLogger("chat_agent")
    level = getattr(logging, settings.log_level)
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(fmt=_CONSOLE_FORMAT, datefmt=_DATE_FORMAT))
    root_logger.addHandler(console_handler)

    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(fmt=_FILE_FORMAT, datefmt=_DATE_FORMAT))
        root_logger.addHandler(file_handler)

    root_logger.propagate = False
    root_logger.info("Logging initialized - level %s", settings.log_level)
    if settings.log_file:
        root_logger.info("Logging to file: %s", settings.log_file)
    return root_logger
