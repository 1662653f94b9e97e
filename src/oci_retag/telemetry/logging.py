"""Structured logging setup with trace correlation.

Logs are written to stderr so that stdout carries only the retag report.
Records emitted inside an active span include ``trace_id`` and ``span_id``.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog
from opentelemetry import trace
from opentelemetry.trace import INVALID_SPAN_ID, INVALID_TRACE_ID

EventDict = MutableMapping[str, Any]


def add_trace_context(
    logger: Any,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Add trace context to a structlog event dictionary.

    Args:
        logger: The logger instance (unused, required by structlog processor API).
        method_name: The log method name (unused).
        event_dict: The event dictionary to enrich with trace context.

    Returns:
        The event dictionary with trace_id and span_id added if a span is active.
    """
    ctx = trace.get_current_span().get_span_context()

    if ctx.trace_id != INVALID_TRACE_ID and ctx.span_id != INVALID_SPAN_ID:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")

    return event_dict


def _stderr_logger_factory(*args: Any) -> structlog.PrintLogger:  # noqa: ARG001
    """Create a PrintLogger bound to whatever sys.stderr is right now."""
    return structlog.PrintLogger(file=sys.stderr)


def configure_logging(
    log_level: str = "WARNING",
    json_output: bool = False,
) -> None:
    """Configure structlog for CLI use.

    Args:
        log_level: Minimum level to emit (DEBUG, INFO, WARNING, ERROR).
        json_output: Render JSON lines instead of the console format.

    Examples:
        >>> configure_logging(log_level="DEBUG")
        >>> structlog.get_logger().debug("configured")
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.WARNING

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            add_trace_context,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=_stderr_logger_factory,
        cache_logger_on_first_use=False,
    )


__all__ = [
    "add_trace_context",
    "configure_logging",
]
