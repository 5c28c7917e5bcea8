"""Logging configuration for the taskboard service."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_HANDLER_MARKER = "_taskboard_handler"


def setup_logging(level: str = "INFO", log_file: Path | None = None) -> None:
    """Install console (and optional rotating file) handlers on the root logger.

    Calling this more than once replaces the handlers installed by earlier
    calls instead of stacking duplicates.
    """
    resolved_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(resolved_level)

    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    console.setLevel(resolved_level)
    setattr(console, _HANDLER_MARKER, True)
    root.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        # rotate at 5MB, keep 7 backups
        file_handler = RotatingFileHandler(
            log_file, maxBytes=5_000_000, backupCount=7, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(resolved_level)
        setattr(file_handler, _HANDLER_MARKER, True)
        root.addHandler(file_handler)

    logging.getLogger(__name__).info(
        "Logging initialized at %s; file: %s", level.upper(), log_file or "-"
    )
