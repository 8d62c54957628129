"""
Logging configuration for the portfolio engine.

Request handlers and scheduler jobs log through one stdout handler.
Every line carries the thread name so a settlement sweep can be told
apart from the request that raced it. Never logs request bodies or
secrets.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are chatty at INFO.
QUIET_LOGGERS = (
    "uvicorn.access",
    "httpx",
    "httpcore",
    "apscheduler.scheduler",
    "apscheduler.executors.default",
)


def configure_logging(level: str = "INFO", quiet_level: int = logging.WARNING) -> None:
    """Configure root logging for the API process.

    Args:
        level: Root log level name (DEBUG, INFO, WARNING, ERROR).
            Unknown names fall back to INFO.
        quiet_level: Level applied to QUIET_LOGGERS.
    """
    root_level = logging.getLevelName(level.upper())
    if not isinstance(root_level, int):
        root_level = logging.INFO

    logging.basicConfig(
        level=root_level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=sys.stdout,
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
