"""Logging configuration for flaghealth.

Log records go to stderr (and optionally a file) so that stdout carries
only the rendered health report.
"""

import logging
import sys
from typing import Optional

DEFAULT_LOG_LEVEL = logging.WARNING
DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# HTTP client loggers that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


def resolve_level(level_name: Optional[str], default: int = DEFAULT_LOG_LEVEL) -> int:
    """Turns a level name such as 'debug' into a logging level."""
    if not level_name:
        return default
    level = logging.getLevelName(str(level_name).upper())
    return level if isinstance(level, int) else default


def _attach(logger: logging.Logger, handler: logging.Handler, level: int, formatter: logging.Formatter) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def setup_logging(
    log_level: int = DEFAULT_LOG_LEVEL,
    log_format: str = DEFAULT_LOG_FORMAT,
    log_file: Optional[str] = None,
) -> None:
    """Replaces the root logger's handlers with flaghealth's.

    Args:
        log_level: Minimum level for every handler.
        log_format: ``logging.Formatter`` format string.
        log_file: Also append records to this file when given.
    """
    root = logging.getLogger()
    root.setLevel(log_level)
    while root.handlers:
        root.removeHandler(root.handlers[0])

    formatter = logging.Formatter(log_format)
    _attach(root, logging.StreamHandler(sys.stderr), log_level, formatter)

    if log_file:
        try:
            _attach(root, logging.FileHandler(log_file, encoding='utf-8'), log_level, formatter)
        except OSError as e:
            root.error(f"Cannot write log file {log_file}: {e}")
        else:
            root.debug(f"Also logging to {log_file}")

    quiet_level = log_level if log_level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    root.debug(f"Logging configured at {logging.getLevelName(log_level)}")
