"""
Tracing Utilities.

Helpers for annotating the current span.
"""

from __future__ import annotations

from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode


def add_span_attributes(attributes: dict[str, Any], span: Any = None) -> None:
    """Add attributes to the given span, or the current one."""
    span = span or trace.get_current_span()
    if span.is_recording():
        span.set_attributes(attributes)


def record_exception(exception: BaseException, span: Any = None) -> None:
    """
    Record an exception on the current or specified span.

    Args:
        exception: The exception to record
        span: Optional span (uses current span if not provided)
    """
    span = span or trace.get_current_span()
    if span.is_recording():
        span.record_exception(exception)
        span.set_status(Status(StatusCode.ERROR, str(exception)))
