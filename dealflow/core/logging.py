"""
Logging setup for the dealflow service.

Usage:
    from dealflow.core.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Scheduled %d occurrence(s)", count)
"""

import logging
import sys
from typing import Iterable, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are chatty at INFO (HTTP clients, SQL echo, DB drivers)
QUIET_LOGGERS = (
    "httpx",
    "httpcore",
    "uvicorn.access",
    "sqlalchemy.engine",
    "aiosqlite",
    "asyncpg",
)


def setup_logging(level: str = "INFO", quiet: Iterable[str] = QUIET_LOGGERS) -> None:
    """
    Send all records to stdout in a single line format.

    Called once from ``dealflow.main``. An unknown level name falls back to
    INFO; loggers named in ``quiet`` are raised to WARNING.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Module logger; pass ``__name__``."""
    return logging.getLogger(name)
