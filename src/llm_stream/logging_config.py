"""Logging setup for the command line.

The reply is written to stdout, so log records always go to stderr
(and optionally to a file).
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LEVEL_ENV = "LLM_STREAM_LOG"
HANDLER_NAME = "llm-stream"


def level_from_verbosity(verbosity: int) -> int:
    """Map the -v count to a level; LLM_STREAM_LOG (a level name) overrides it."""
    env = os.getenv(LEVEL_ENV)
    if env:
        level = logging.getLevelName(env.strip().upper())
        if isinstance(level, int):
            return level
    if verbosity <= 0:
        return logging.WARNING
    if verbosity == 1:
        return logging.INFO
    return logging.DEBUG


def setup_logging(level: int = logging.WARNING, log_file: Optional[Path] = None) -> None:
    """Configure the root logger.

    Args:
        level: Logging level (default WARNING).
        log_file: Optional file that receives the same records.
    """
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        if handler.get_name() == HANDLER_NAME:
            root_logger.removeHandler(handler)
            handler.close()

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)
    console_handler.set_name(HANDLER_NAME)
    root_logger.addHandler(console_handler)

    # File handler
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        file_handler.set_name(HANDLER_NAME)
        root_logger.addHandler(file_handler)

    # Reduce noise from httpx unless debugging
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
