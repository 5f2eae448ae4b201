"""Structured logging setup shared by the web app and the CLI."""
import logging

import structlog

from cvportal import config


def configure_logging(level: str = None) -> None:
    """Configure structlog to emit JSON lines through the stdlib logger."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
