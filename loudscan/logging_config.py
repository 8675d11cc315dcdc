"""
loudscan Logging Setup

- Console output on stderr (stdout carries outcome documents)
- Optional rotating log file
- Library modules only call logging.getLogger(__name__); this module is
  used by the CLI
"""

import logging
import logging.handlers
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-12s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str | int = "WARNING", log_file: Path | None = None) -> logging.Logger:
    """
    Configure the `loudscan` logger hierarchy.

    Args:
        level: Level name or number for the package logger
        log_file: When set, also write to this file (5 MiB x 3 rotation)

    Returns:
        The configured `loudscan` logger.
    """
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    logger = logging.getLogger("loudscan")
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    # Re-running setup (tests, repeated CLI calls in one process) must not
    # stack handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=5 * 1024 * 1024, backupCount=3
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
