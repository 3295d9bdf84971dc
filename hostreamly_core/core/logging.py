"""
Structured Logging Configuration

JSON logs for production, human-readable console output for development.
Every module obtains its logger with ``structlog.get_logger(__name__)``.
"""

import logging
import sys
from typing import Optional

import structlog


def configure_logging(
    level: str = "info",
    json_logs: Optional[bool] = None,
    environment: str = "development",
) -> None:
    """Configure structlog over the stdlib logging factory.

    Args:
        level: Minimum log level name (debug, info, warning, error)
        json_logs: Force JSON output; defaults to True outside development
        environment: Deployment environment name
    """
    if json_logs is None:
        json_logs = environment.lower() not in ("development", "dev", "test")

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
