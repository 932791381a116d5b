"""
SHOP - Distributed Tracing with OpenTelemetry

Usage:
    from observability.tracing import setup_tracing, get_tracer

    # Setup at startup
    setup_tracing(TracingConfig(service_name="shop"))

    tracer = get_tracer(__name__)
    with tracer.start_as_current_span("unit_of_work.commit") as span:
        span.set_attribute("shop.transaction_tag", tag)
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.propagate import set_global_textmap
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.sampling import (
    ParentBased,
    TraceIdRatioBased,
    ALWAYS_ON,
    ALWAYS_OFF,
)
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

# Global state
_tracer_provider: Optional[TracerProvider] = None
_initialized: bool = False


@dataclass
class TracingConfig:
    """Configuration for OpenTelemetry tracing."""

    service_name: str = "shop"
    service_version: str = "1.0.0"
    otlp_endpoint: str = field(
        default_factory=lambda: os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
    )
    enabled: bool = field(
        default_factory=lambda: os.getenv("OTEL_TRACING_ENABLED", "false").lower() == "true"
    )
    sample_rate: float = field(
        default_factory=lambda: float(os.getenv("OTEL_SAMPLE_RATE", "1.0"))
    )
    environment: str = field(
        default_factory=lambda: os.getenv("SHOP_ENVIRONMENT", "development")
    )
    console_export: bool = field(
        default_factory=lambda: os.getenv("OTEL_CONSOLE_EXPORT", "false").lower() == "true"
    )
    batch_export: bool = True


def setup_tracing(config: Optional[TracingConfig] = None) -> Optional[TracerProvider]:
    """
    Configure OpenTelemetry tracing with OTLP export.

    Returns None when tracing is disabled; the API's no-op tracer stays in place.
    """
    global _tracer_provider, _initialized

    if _initialized:
        return _tracer_provider

    config = config or TracingConfig()
    _initialized = True

    if not config.enabled:
        return None

    resource = Resource.create({
        SERVICE_NAME: config.service_name,
        SERVICE_VERSION: config.service_version,
        "deployment.environment": config.environment,
    })

    if config.sample_rate <= 0.0:
        sampler = ALWAYS_OFF
    elif config.sample_rate >= 1.0:
        sampler = ALWAYS_ON
    else:
        sampler = ParentBased(root=TraceIdRatioBased(config.sample_rate))

    _tracer_provider = TracerProvider(resource=resource, sampler=sampler)

    otlp_exporter = OTLPSpanExporter(endpoint=config.otlp_endpoint, insecure=True)
    if config.batch_export:
        _tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
    else:
        _tracer_provider.add_span_processor(SimpleSpanProcessor(otlp_exporter))

    if config.console_export:
        _tracer_provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(_tracer_provider)
    set_global_textmap(TraceContextTextMapPropagator())

    return _tracer_provider


def get_tracer(name: str, version: str = "1.0.0") -> trace.Tracer:
    """Get a tracer from the global provider (no-op until setup_tracing)."""
    return trace.get_tracer(name, version)


def shutdown_tracing() -> None:
    """Flush pending spans. Call during application shutdown."""
    global _tracer_provider, _initialized
    if _tracer_provider is not None:
        _tracer_provider.shutdown()
    _initialized = False
    _tracer_provider = None
