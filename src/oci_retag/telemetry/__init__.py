"""Logging and tracing helpers for oci-retag."""

from __future__ import annotations

from oci_retag.telemetry.logging import add_trace_context, configure_logging
from oci_retag.telemetry.sanitization import sanitize_error_message
from oci_retag.telemetry.tracing import create_span, current_trace_id, get_tracer, set_tracer

__all__ = [
    "add_trace_context",
    "configure_logging",
    "create_span",
    "current_trace_id",
    "get_tracer",
    "sanitize_error_message",
    "set_tracer",
]
