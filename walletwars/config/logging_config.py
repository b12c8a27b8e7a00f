"""Structured logging setup shared by the API and the Celery workers."""

import logging

import structlog

from walletwars.config.settings import get_settings


def configure_logging(log_level: str | None = None) -> None:
    """Configure structlog for JSON output through the stdlib logging module."""
    level = (log_level or get_settings().log_level).upper()
    logging.basicConfig(format="%(message)s", level=getattr(logging, level, logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
