"""Structured logging for the SBS compliance engine.

Every module obtains its logger through get_logger(__name__) and logs with an
event message followed by keyword context:

    logger.info("Compliance run complete", catalog_version="1.0.0", noncompliant_count=3)

configure_logging() is called once by the embedding application. Until it is
called, structlog's default console configuration applies.
"""

import logging
from typing import Any

import structlog

from sbs_compliance_engine.settings import Settings


def configure_logging(settings: Settings) -> None:
    """Configure structlog processors and the stdlib root level.

    Args:
        settings: Engine settings providing log_level and log_json.
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    renderer: Any
    if settings.log_json:
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service=settings.service_name)


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    """Return a structured logger bound to the given module name.

    Args:
        name: Usually the calling module's __name__.

    Returns:
        A structlog bound logger.
    """
    return structlog.get_logger(name)
