"""
OpenTelemetry Setup and Configuration.

Handles initialization of tracers, meters, and exporters.
Without init_telemetry() the OpenTelemetry API hands out non-recording
tracers and meters, so instrumented code runs unchanged in tests.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import metrics, trace

logger = logging.getLogger(__name__)

TELEMETRY_ENV_VAR = "TABLESTORE_TELEMETRY_ENABLED"

_telemetry_initialized = False
_tracer_provider: Any = None
_meter_provider: Any = None


@dataclass
class TelemetryConfig:
    """Configuration for telemetry setup."""

    # Service identification
    service_name: str = "tablestore"
    service_version: str = "0.1.0"
    environment: str = field(default_factory=lambda: os.getenv("TABLESTORE_ENV", "development"))

    # OTLP exporter settings
    otlp_endpoint: str = field(
        default_factory=lambda: os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
    )
    otlp_insecure: bool = True

    # Feature flags
    tracing_enabled: bool = True
    metrics_enabled: bool = True

    metrics_export_interval_ms: int = 10000


def _is_telemetry_disabled_by_env() -> bool:
    """Check if telemetry is disabled via environment variable."""
    value = os.getenv(TELEMETRY_ENV_VAR, "true").lower()
    return value in ("false", "0", "no", "off")


def init_telemetry(
    service_name: str | None = None,
    config: TelemetryConfig | None = None,
) -> bool:
    """
    Initialize OpenTelemetry exporters.

    Call once at application startup. Libraries never call this; they only
    create spans and instruments.

    Returns:
        True if exporters were installed, False if disabled
    """
    global _telemetry_initialized, _tracer_provider, _meter_provider

    if _telemetry_initialized:
        logger.debug("Telemetry already initialized")
        return _tracer_provider is not None or _meter_provider is not None

    _telemetry_initialized = True
    if _is_telemetry_disabled_by_env():
        logger.info(f"Telemetry disabled via {TELEMETRY_ENV_VAR}")
        return False

    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    config = config or TelemetryConfig()
    if service_name:
        config.service_name = service_name

    resource = Resource.create(
        {
            SERVICE_NAME: config.service_name,
            SERVICE_VERSION: config.service_version,
            "deployment.environment": config.environment,
        }
    )

    if config.tracing_enabled:
        _tracer_provider = TracerProvider(resource=resource)
        _tracer_provider.add_span_processor(
            BatchSpanProcessor(
                OTLPSpanExporter(endpoint=config.otlp_endpoint, insecure=config.otlp_insecure)
            )
        )
        trace.set_tracer_provider(_tracer_provider)
        logger.info(f"Tracing initialized, exporting to {config.otlp_endpoint}")

    if config.metrics_enabled:
        reader = PeriodicExportingMetricReader(
            OTLPMetricExporter(endpoint=config.otlp_endpoint, insecure=config.otlp_insecure),
            export_interval_millis=config.metrics_export_interval_ms,
        )
        _meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
        metrics.set_meter_provider(_meter_provider)
        logger.info(f"Metrics initialized, exporting to {config.otlp_endpoint}")

    return True


def shutdown_telemetry() -> None:
    """Flush and shut down exporters installed by init_telemetry()."""
    global _tracer_provider, _meter_provider, _telemetry_initialized

    if _meter_provider is not None:
        _meter_provider.force_flush(timeout_millis=5000)
        _meter_provider.shutdown()
        _meter_provider = None

    if _tracer_provider is not None:
        _tracer_provider.force_flush(timeout_millis=5000)
        _tracer_provider.shutdown()
        _tracer_provider = None

    _telemetry_initialized = False


def is_telemetry_enabled() -> bool:
    """Telemetry is on unless disabled through the environment."""
    return not _is_telemetry_disabled_by_env()


def get_tracer(name: str = "tablestore") -> trace.Tracer:
    """
    Get a tracer for creating spans.

    Returns:
        OpenTelemetry Tracer, or a NoOpTracer when telemetry is disabled
    """
    if _is_telemetry_disabled_by_env():
        return trace.NoOpTracer()
    return trace.get_tracer(name)


def get_meter(name: str = "tablestore") -> metrics.Meter:
    """
    Get a meter for creating metrics.

    Returns:
        OpenTelemetry Meter, or a NoOpMeter when telemetry is disabled
    """
    if _is_telemetry_disabled_by_env():
        return metrics.NoOpMeter(name)
    return metrics.get_meter(name)
