"""Structured logging setup.

Configures structlog once per process with correlation id injection and
either JSON (for log shipping) or console rendering (for the CLI).

Usage:
    from answerscope.observability.logging import configure_logging, get_logger

    configure_logging(level="INFO", json_output=False)
    logger = get_logger("fallback_executor")
    logger.info("provider_attempt_started", provider="openrouter_claude")
"""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.typing import EventDict, WrappedLogger

from answerscope.observability.context import get_correlation_id


def add_correlation_id_processor(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Inject the current correlation id (or "none") into every entry."""
    corr_id = get_correlation_id()
    event_dict.setdefault("correlation_id", corr_id if corr_id else "none")
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    add_timestamp: bool = True,
) -> None:
    """Configure structlog for the application.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_output: Render JSON when True, coloured console output otherwise
        add_timestamp: Add an ISO timestamp to each entry
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_correlation_id_processor,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if add_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(
    component: Optional[str] = None,
    **initial_context: Any,
) -> Any:
    """Get a structlog logger bound to a component name and extra context.

    Args:
        component: Component name added as ``component``
        **initial_context: Additional key-value pairs bound to the logger
    """
    logger = structlog.get_logger()
    if component:
        logger = logger.bind(component=component)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger


def bind_context(**context: Any) -> None:
    """Bind key-value pairs to every later log entry in this async context.

    The orchestrator binds ``batch_id`` and ``brand_id`` this way.
    """
    structlog.contextvars.bind_contextvars(**context)


def clear_context() -> None:
    """Drop everything bound with bind_context."""
    structlog.contextvars.clear_contextvars()
