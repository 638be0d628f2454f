"""
Logging configuration
"""

import json
import logging
import sys
from core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


class ErrorContextFormatter(logging.Formatter):
    """
    Appends the error_context extra, when a record carries one.

    Usage:
        logger.error("Batch failed", extra={"error_context": exc.to_dict()})
    """

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = getattr(record, "error_context", None)
        if context:
            message = f"{message} | context={json.dumps(context, default=str, sort_keys=True)}"
        return message


def setup_logging():
    """Configure application logging"""
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ErrorContextFormatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    logging.basicConfig(level=log_level, handlers=[handler], force=True)

    # Quiet down chatty libraries
    for name in ("sqlalchemy.engine", "sqlalchemy.pool", "httpx", "apscheduler"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured at {settings.LOG_LEVEL} level")
