"""
Structured logging setup for the cache service.

Everything goes through structlog on top of stdlib logging, so records from
aiohttp and redis-py share the same renderer as our own.
"""

import logging
import sys
from typing import Optional
import structlog
from structlog.stdlib import LoggerFactory


# per-request access lines are covered by the request metrics
NOISY_LOGGERS = ("aiohttp.access",)


def setup_logging(
    service_name: str,
    log_level: str = "info",
    format_type: str = "json",
    environment: Optional[str] = None,
) -> None:
    """
    Configure structlog for the process.

    Args:
        service_name: Bound to every record as ``service``
        log_level: debug, info, warning or error
        format_type: ``json`` for deployments, ``console`` for local runs
        environment: Bound to every record as ``environment`` when given
    """
    level = getattr(logging, log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    renderer = structlog.processors.JSONRenderer() if format_type == "json" else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    context = {"service": service_name}
    if environment:
        context["environment"] = environment
    structlog.contextvars.bind_contextvars(**context)


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
