"""Logging configuration shared by the API and the Celery worker"""
import logging
import sys

from bookflow.config.settings import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s"

# Third-party loggers that flood INFO with per-request noise
QUIET_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "httpx",
    "httpcore",
    "openai",
    "urllib3",
    "uvicorn.access",
    "celery.worker.strategy",
)


class CorrelationIdFilter(logging.Filter):
    """Fill ``correlation_id`` for records logged without one"""

    def filter(self, record):
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True


def setup_logging(level: str = None):
    """Configure root logging from LOG_LEVEL unless ``level`` is given"""
    name = (level or get_settings().LOG_LEVEL).upper()
    root_level = getattr(logging, name, logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(CorrelationIdFilter())
    logging.basicConfig(level=root_level, handlers=[handler], force=True)

    # Keep library chatter down unless we are debugging
    if root_level > logging.DEBUG:
        for logger_name in QUIET_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
