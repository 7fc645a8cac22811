"""
structlog setup.

Production emits one JSON object per line; development renders colored
console output. Both carry bound context (``request_id``, ``did``) and the
active trace ids.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from anchor_indexer.config.settings import get_settings
from anchor_indexer.observability.tracing import add_trace_context

# Libraries that log every request at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "asyncpg")


def setup_logging() -> None:
    """
    Configure structlog and route stdlib logging to stdout.

    Usage:
        setup_logging()
        structlog.get_logger(__name__).info("Repo crawled", did=did, records=3)
    """
    settings = get_settings()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        add_trace_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if settings.is_production:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

