"""Logging setup with size-based log rotation."""

import logging
import sys
from typing import Optional
from logging.handlers import RotatingFileHandler

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5

def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT
) -> logging.Logger:
    """
    Configure the root logger for the service.

    Args:
        level: Log level name (e.g. "INFO", "DEBUG")
        log_file: Path of the rotating log file, or None for console only
        max_bytes: Maximum size in bytes before rotation
        backup_count: Number of rotated files to keep

    Returns:
        The configured root logger
    """
    root = logging.getLogger()

    # Remove existing handlers to avoid duplicates
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        rotating_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        rotating_handler.setFormatter(formatter)
        root.addHandler(rotating_handler)

    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # apscheduler and werkzeug are chatty at INFO
    logging.getLogger('apscheduler').setLevel(logging.WARNING)
    logging.getLogger('werkzeug').setLevel(logging.WARNING)

    return root
