"""
Telemetry Module.

OpenTelemetry tracing and metrics for the table repository.

Usage:
    from src.common.telemetry import init_telemetry, get_tracer

    init_telemetry(service_name="my-service")

    tracer = get_tracer(__name__)
    with tracer.start_as_current_span("table.save") as span:
        span.set_attribute("table.name", "Items")
"""

from src.common.telemetry.metrics import TableMetrics, get_table_metrics
from src.common.telemetry.setup import (
    TelemetryConfig,
    get_meter,
    get_tracer,
    init_telemetry,
    is_telemetry_enabled,
    shutdown_telemetry,
)
from src.common.telemetry.tracing import add_span_attributes, record_exception

__all__ = [
    # Setup
    "init_telemetry",
    "shutdown_telemetry",
    "get_tracer",
    "get_meter",
    "is_telemetry_enabled",
    "TelemetryConfig",
    # Metrics
    "TableMetrics",
    "get_table_metrics",
    # Tracing
    "add_span_attributes",
    "record_exception",
]
