"""
Logging configuration — one setup call per process.

Called by main.py before any command runs. Modules only ever do
``logger = logging.getLogger(__name__)``.

Level precedence:
    CLI flag  >  FLYWHEEL_LOG_LEVEL  >  WARNING

FLYWHEEL_LOG_FILE adds a file handler; FLYWHEEL_LOG_FILE_LEVEL sets its
level independently of the console.
"""

from __future__ import annotations

import logging
import os
import sys

# ── Formats ─────────────────────────────────────────────────────

_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
}
_FMT_WARNING = "%(message)s"

_FMT_FILE = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

# requests pulls these in; they are chatty below WARNING
_NOISY_LOGGERS = ("urllib3", "charset_normalizer")


def setup_logging(
    level: str | None = None,
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure the root logger for the whole process.

    Args:
        level: Level name; falls back to FLYWHEEL_LOG_LEVEL, then WARNING.
        log_file: Optional log file; falls back to FLYWHEEL_LOG_FILE.
        log_file_level: Level for the file handler; defaults to ``level``.
        quiet_third_party: Hold HTTP library loggers at WARNING unless debugging.
    """
    level = level or os.environ.get("FLYWHEEL_LOG_LEVEL")
    log_file = log_file or os.environ.get("FLYWHEEL_LOG_FILE")
    log_file_level = log_file_level or os.environ.get("FLYWHEEL_LOG_FILE_LEVEL")

    console_level = parse_level(level)

    if console_level <= logging.DEBUG:
        fmt, datefmt = _CONSOLE_FORMATS[logging.DEBUG]
    elif console_level <= logging.INFO:
        fmt, datefmt = _CONSOLE_FORMATS[logging.INFO]
    else:
        fmt, datefmt = _FMT_WARNING, None

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root_level = console_level

    if log_file:
        file_level = parse_level(log_file_level) if log_file_level else console_level
        root_level = min(root_level, file_level)
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setLevel(file_level)
        handler.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
        root.addHandler(handler)

    root.setLevel(root_level)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def parse_level(level: str | None) -> int:
    """Level name to numeric constant; unknown names mean WARNING."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    return numeric if isinstance(numeric, int) else logging.WARNING
