"""
Logging configuration
"""

import logging
import sys
from typing import Optional
from core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s%(error_suffix)s"

# client libraries that log every request or statement at INFO
NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "httpx", "httpcore", "aiosqlite", "asyncio")


class ErrorContextFilter(logging.Filter):
    """
    Renders ``extra={"error_context": ...}`` (ParcelIngestionError.to_dict())
    after the message, so classified failures keep their context in plain
    text logs.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        context = getattr(record, "error_context", None)
        if context:
            details = context.get("context") or {}
            parts = [f"{key}={value}" for key, value in details.items() if key != "error_timestamp"]
            record.error_suffix = f" | {context.get('error_type')}" + (f" ({', '.join(parts)})" if parts else "")
        else:
            record.error_suffix = ""
        return True


def setup_logging(level: Optional[str] = None):
    """Configure application logging; ``level`` overrides LOG_LEVEL."""

    level_name = (level or settings.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ErrorContextFilter())

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[handler],
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at {level_name} level")
