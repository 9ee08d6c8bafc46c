"""
Logging setup shared by the API server and standalone runners.
"""

import logging
import sys

import structlog

from src.config.settings import settings


def setup_logging(level: str | None = None):
    """Configure stdlib logging and structlog."""
    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)

    # Basic logging
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )

    # Structlog
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Reduce noise from websockets library
    logging.getLogger("websockets").setLevel(logging.WARNING)
