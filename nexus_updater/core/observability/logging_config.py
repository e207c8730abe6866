"""
Logging configuration, set up once by the CLI.

Every module does ``logger = logging.getLogger(__name__)`` and inherits
this. Progress ("Cloning ...", "Installing missing packages ...") goes
out at INFO, so INFO is the default console level for an updater run.

Levels are resolved in precedence order:
    CLI flag  >  NEXUS_LOG_LEVEL env var  >  INFO

A persistent log of the run can be kept with NEXUS_LOG_FILE (and
NEXUS_LOG_FILE_LEVEL, default DEBUG), which is handy when a compile
fails half an hour into a run.
"""

from __future__ import annotations

import logging
import os
import sys

LOG_LEVEL_ENV = "NEXUS_LOG_LEVEL"
LOG_FILE_ENV = "NEXUS_LOG_FILE"
LOG_FILE_LEVEL_ENV = "NEXUS_LOG_FILE_LEVEL"

# ── Format strings ──────────────────────────────────────────────

# INFO and above: what the operator reads in the terminal
_FMT_CONSOLE = "%(message)s"

# DEBUG: which module said it, and where
_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d: %(message)s"
_DATEFMT_DEBUG = "%H:%M:%S"

_FMT_FILE = "%(asctime)s %(levelname)-5s %(name)s: %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

_NOISY_LOGGERS = ("urllib3", "charset_normalizer")


def setup_logging(
    level: str | None = None,
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Configure the root logger for the whole process.

    Args:
        level: Console level name; falls back to NEXUS_LOG_LEVEL, then INFO.
        log_file: Optional log file; falls back to NEXUS_LOG_FILE.
        log_file_level: File level; falls back to NEXUS_LOG_FILE_LEVEL, then DEBUG.
    """
    numeric_level = _parse_level(level or os.environ.get(LOG_LEVEL_ENV), logging.INFO)

    if numeric_level <= logging.DEBUG:
        formatter = logging.Formatter(_FMT_DEBUG, datefmt=_DATEFMT_DEBUG)
    else:
        formatter = _ConsoleFormatter(_FMT_CONSOLE)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    console.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    effective_level = numeric_level

    log_file = log_file or os.environ.get(LOG_FILE_ENV)
    if log_file:
        file_level = _parse_level(log_file_level or os.environ.get(LOG_FILE_LEVEL_ENV), logging.DEBUG)
        effective_level = min(effective_level, file_level)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
        root.addHandler(fh)

    root.setLevel(effective_level)

    if numeric_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


class _ConsoleFormatter(logging.Formatter):
    """Plain messages, with the level name on warnings and errors."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if record.levelno >= logging.WARNING:
            return f"{record.levelname}: {message}"
        return message


def _parse_level(level: str | None, default: int = logging.INFO) -> int:
    """Convert a level name string to its numeric constant."""
    if not level:
        return default
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return default
    return numeric
