"""
Logging configuration — set up once by main.py.

Modules log through ``logging.getLogger(__name__)`` and inherit this
setup.  Console output goes to stderr so status lines and tables on
stdout stay machine-readable.

At the default level, warnings and errors are rendered in the same
register as the CLI's status lines (``⚠️`` / ``❌``).  ``-v`` and
``--debug`` switch to timestamped records.

Level precedence:
    --debug / --verbose / --quiet  >  BENDCTL_LOG_LEVEL  >  WARNING

File output is enabled with BENDCTL_LOG_FILE (and optionally
BENDCTL_LOG_FILE_LEVEL).  Several terminals may append to one file,
so file records carry the process id.
"""

from __future__ import annotations

import logging
import sys

_FMT_INFO = "%(asctime)s [%(name)s] %(message)s"
_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d  %(message)s"
_FMT_FILE = "%(asctime)s pid=%(process)d %(levelname)-5s %(name)s:%(lineno)d  %(message)s"
_DATEFMT_SHORT = "%H:%M:%S"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"


class StatusFormatter(logging.Formatter):
    """Render a record like a CLI status line."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if record.levelno >= logging.ERROR:
            return f"❌ {message}"
        if record.levelno >= logging.WARNING:
            return f"⚠️  {message}"
        return message


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Configure the root logger for the process.

    Args:
        level: Console level name.
        log_file: Optional path of a log file (always full detail).
        log_file_level: Level for the file handler; defaults to ``level``.
    """
    console_level = _parse_level(level)

    if console_level <= logging.DEBUG:
        formatter: logging.Formatter = logging.Formatter(_FMT_DEBUG, datefmt=_DATEFMT_SHORT)
    elif console_level <= logging.INFO:
        formatter = logging.Formatter(_FMT_INFO, datefmt=_DATEFMT_SHORT)
    else:
        formatter = StatusFormatter("%(message)s")

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
        root.addHandler(fh)
        root.setLevel(min(console_level, file_level))
    else:
        root.setLevel(console_level)

    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    """Level name → numeric level (WARNING for anything unknown)."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    return numeric if isinstance(numeric, int) else logging.WARNING
