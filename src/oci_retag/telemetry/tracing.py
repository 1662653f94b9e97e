"""OpenTelemetry tracing utilities for oci-retag.

Only the OpenTelemetry API is used. Without an SDK configured by the host
process every span is a no-op, so instrumentation costs nothing in a plain
CLI run and shows up automatically when a CI job exports traces.

Example:
    >>> with create_span("oci_retag.fetch", {"oci.reference": "ghcr.io/acme/api:1"}) as span:
    ...     span.set_attribute("oci.digest", "sha256:...")
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from oci_retag.telemetry.sanitization import sanitize_error_message

if TYPE_CHECKING:
    from collections.abc import Generator

    from opentelemetry.trace import Span, Tracer

_TRACER_NAME = "oci_retag"

_tracer: Tracer | None = None
_lock = threading.Lock()


def get_tracer() -> Tracer:
    """Get the tracer used for oci-retag spans.

    Falls back to a NoOpTracer if OpenTelemetry initialization fails.

    Returns:
        Tracer instance for creating spans.
    """
    global _tracer

    if _tracer is not None:
        return _tracer

    with _lock:
        if _tracer is None:
            try:
                _tracer = trace.get_tracer(_TRACER_NAME)
            except Exception:
                _tracer = trace.NoOpTracer()
        return _tracer


def set_tracer(tracer: Tracer | None) -> None:
    """Set or clear the module tracer (for testing).

    Args:
        tracer: Tracer instance to use, or None to fall back to the global provider.
    """
    global _tracer
    with _lock:
        _tracer = tracer


@contextmanager
def create_span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[Span, None, None]:
    """Create a span as a context manager.

    Exceptions escaping the block mark the span as errored with a
    sanitized message and are re-raised unchanged.

    Args:
        name: The name for the span.
        attributes: Optional dictionary of attributes to set on the span.

    Yields:
        The created span for additional attribute setting.
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(
        name,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        try:
            yield span
        except Exception as e:
            sanitized = sanitize_error_message(str(e))
            span.set_status(Status(StatusCode.ERROR, sanitized))
            span.set_attribute("exception.type", type(e).__name__)
            span.set_attribute("exception.message", sanitized)
            raise


def current_trace_id(span: Span) -> str:
    """Return the 32-char hex trace id of a span, or an empty string."""
    ctx = span.get_span_context()
    return format(ctx.trace_id, "032x") if ctx.is_valid else ""


__all__ = ["create_span", "current_trace_id", "get_tracer", "set_tracer"]
