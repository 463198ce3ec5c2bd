"""Logging configuration.

Logfire itself reads LOGFIRE_TOKEN, LOGFIRE_SERVICE_NAME and
LOGFIRE_ENVIRONMENT from the environment; this module only wires
structlog and the stdlib root logger to feed it.
"""

import logging
import sys

import logfire
import structlog
from structlog.processors import CallsiteParameter, CallsiteParameterAdder
from structlog.types import EventDict, Processor, WrappedLogger
from structlog.typing import FilteringBoundLogger

DEFAULT_LEVEL = "INFO"

# Third-party loggers that flood INFO with connection chatter
QUIET_LOGGERS = ("neo4j", "httpx", "apscheduler")


def get_logger(name: str | None = None) -> FilteringBoundLogger:
    return structlog.get_logger(name)


def tag_engine_errors(_logger: WrappedLogger, _method_name: str, event_dict: EventDict) -> EventDict:
    """Expose the type and code of an ``error=`` value as top-level attributes"""
    error = event_dict.get("error")
    if isinstance(error, BaseException):
        event_dict["error_type"] = type(error).__name__
        code = getattr(error, "code", None)
        if code is not None:
            event_dict["error_code"] = getattr(code, "value", code)
    return event_dict


def _enrichment_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        CallsiteParameterAdder(
            parameters=[CallsiteParameter.FILENAME, CallsiteParameter.LINENO, CallsiteParameter.FUNC_NAME]
        ),
        tag_engine_errors,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]


def setup_logging(level: str = DEFAULT_LEVEL, colors: bool = True) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Minimum level name, applied to both structlog and stdlib
        colors: Whether the console renderer emits ANSI colours
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    enrichment = _enrichment_chain()
    renderer = structlog.dev.ConsoleRenderer(colors=colors)

    # logfire's processor has to see the event before it is rendered to a string
    structlog.configure(
        processors=[*enrichment, logfire.StructlogProcessor(), renderer],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Records from the neo4j driver, httpx and apscheduler get the same enrichment
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=enrichment))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(numeric_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))
