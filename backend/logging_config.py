"""Centralized logging configuration.

Used by the API process and by the job scripts run from cron, so
timestamps carry the full date.
"""

import logging

from config import settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s  %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Transport and storage libraries; their DEBUG output includes request
# URLs and headers
QUIET_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "alembic",
    "httpx",
    "httpcore",
    "urllib3",
    "keyring",
)


def setup_logging(level: str | None = None) -> None:
    """Configure logging for the application.

    Args:
        level: Overrides ``settings.LOG_LEVEL`` (e.g. ``"DEBUG"`` from a
            script's ``--verbose`` flag).
    """
    logging.basicConfig(
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        level=getattr(logging, (level or settings.LOG_LEVEL).upper()),
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
