"""Logging configuration for the face access identity service."""
import logging
import sys
from typing import Dict, List

import structlog
from structlog.stdlib import ProcessorFormatter

from face_access.core.config import settings


def setup_logging() -> None:
    """Configure structured logging for the application.

    - Uses ConsoleRenderer with colors for development.
    - Uses JSONRenderer for other environments (staging, production).
    - Integrates with standard Python logging handlers.
    - Keeps library loggers quiet unless DEBUG is set: SQL statements and
      pool checkouts happen on every resolution and would drown the
      access decision events.
    """
    shared_processors: List[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    if settings.ENVIRONMENT == "development":
        final_processor = structlog.dev.ConsoleRenderer(colors=True)
    else:
        final_processor = structlog.processors.JSONRenderer()
        # Tracebacks must be rendered to strings before JSON serialization
        shared_processors.insert(-1, structlog.processors.format_exc_info)

    structlog.configure(
        processors=shared_processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = ProcessorFormatter(processor=final_processor)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    root_logger.addHandler(handler)
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    for name, level in library_log_levels(settings.DEBUG).items():
        logging.getLogger(name).setLevel(level)
    logging.getLogger("uvicorn.error").propagate = False
    # Every capture posts to /validate; decisions are already logged per request
    logging.getLogger("uvicorn.access").disabled = not settings.DEBUG

    root_logger.info(
        f"Logging setup complete. Environment: {settings.ENVIRONMENT}, Level: {settings.LOG_LEVEL}"
    )


def library_log_levels(debug: bool) -> Dict[str, int]:
    """Levels for the third-party loggers this service drives.

    `sqlalchemy.engine` at INFO echoes every statement, `sqlalchemy.pool` at
    DEBUG every checkout; both are only useful when chasing a slow or
    failing datastore call.
    """
    return {
        "sqlalchemy.engine": logging.INFO if debug else logging.WARNING,
        "sqlalchemy.pool": logging.DEBUG if debug else logging.WARNING,
        "asyncpg": logging.INFO if debug else logging.WARNING,
        "pinecone": logging.INFO if debug else logging.WARNING,
        "urllib3": logging.INFO if debug else logging.WARNING,
    }


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance compatible with standard logging.

    Args:
        name: Name for the logger, typically __name__

    Returns:
        structlog.stdlib.BoundLogger: Configured logger instance
    """
    return structlog.get_logger(name)
