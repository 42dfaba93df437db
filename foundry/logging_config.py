"""Logging setup for the shard-export command line.

Library modules only create module loggers. :func:`setup_logging` installs a
console handler in one of three formats (``human``, ``json``, ``simple``)
and, when ``EXPORT_LOG_FILE`` is set, a rotating file handler that always
writes JSON.
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

# attributes every LogRecord carries; anything else came in through ``extra=``
_RECORD_ATTRIBUTES = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "taskName"}

_LEVELS = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'WARN': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL,
}

_NOISY_LOGGERS = ('botocore', 'boto3', 'urllib3', 's3transfer')


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with ``extra`` fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'thread': record.threadName,
            'message': record.getMessage(),
        }
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRIBUTES:
                entry[key] = value
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """``[LEVEL] time - logger - message``, colored by level on a terminal."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = False):
        super().__init__(fmt='[%(levelname)s] %(asctime)s - %(name)s - %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        color = self.COLORS.get(record.levelname) if self.use_colors else None
        return f"{color}{line}{self.RESET}" if color else line


def get_log_level_from_env() -> int:
    """Level named by EXPORT_LOG_LEVEL, then LOG_LEVEL; INFO if unset or unknown."""
    name = os.environ.get('EXPORT_LOG_LEVEL') or os.environ.get('LOG_LEVEL', 'INFO')
    return _LEVELS.get(name.upper(), logging.INFO)


def get_log_format_from_env() -> str:
    return os.environ.get('EXPORT_LOG_FORMAT', 'human').lower()


def _console_formatter(format_type: str, use_colors: bool) -> logging.Formatter:
    if format_type == 'json':
        return JSONFormatter()
    if format_type == 'simple':
        return logging.Formatter('%(levelname)s: %(message)s')
    return HumanReadableFormatter(use_colors=use_colors)


def setup_logging(level: Optional[int] = None, format_type: Optional[str] = None, use_colors: bool = False) -> None:
    """
    Replace the root logger's handlers.

    Args:
        level: Logging level (defaults to EXPORT_LOG_LEVEL or INFO)
        format_type: Console format, 'json', 'human' or 'simple'
            (defaults to EXPORT_LOG_FORMAT or 'human')
        use_colors: Color human-readable output when stdout is a terminal

    Environment Variables:
        EXPORT_LOG_FILE: Also write JSON records to this rotating file
    """
    if level is None:
        level = get_log_level_from_env()
    if format_type is None:
        format_type = get_log_format_from_env()

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(_console_formatter(format_type, use_colors))
    root.addHandler(console)

    log_file = os.environ.get('EXPORT_LOG_FILE')
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        # 10MB per file, 5 backups
        file_handler = logging.handlers.RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5)
        file_handler.setLevel(level)
        file_handler.setFormatter(JSONFormatter())
        root.addHandler(file_handler)

    # botocore logs every request at DEBUG
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))


def log_performance(logger: logging.Logger, operation: str, duration_seconds: float, **metrics: Any) -> None:
    """
    Log the duration and counters of an operation as structured ``extra`` fields.

    Example:
        >>> log_performance(logger, "read_shards", duration_seconds=12.5, records=10000)
    """
    logger.info(
        f"Performance: {operation} completed in {duration_seconds:.2f}s",
        extra={'operation': operation, 'duration_seconds': duration_seconds, **metrics},
    )
