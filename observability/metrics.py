"""
SHOP - OpenTelemetry Metrics

Custom metrics for monitoring the command pipeline.

Key Metrics:
- shop_commands_total: Handled requests by type and outcome
- shop_command_duration_seconds: Handler latency by type and outcome
- shop_event_log_appends_total: Event log appends by status
- shop_read_sync_total: Read model syncs by status
- shop_outbox_relayed_total: Outbox messages relayed by status

Usage:
    from observability.metrics import setup_metrics, record_command

    # Setup at startup
    setup_metrics(MetricsConfig(service_name="shop"))

    # Record metrics
    record_command("CreateCustomerCommand", "ok", 0.012)
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.metrics import Meter
from opentelemetry.sdk.metrics import MeterProvider as SDKMeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    MetricReader,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION

# Global state
_meter_provider: Optional[SDKMeterProvider] = None
_shop_metrics: Optional["ShopMetrics"] = None


@dataclass
class MetricsConfig:
    """Configuration for OpenTelemetry metrics."""

    service_name: str = "shop"
    service_version: str = "1.0.0"
    otlp_endpoint: str = field(
        default_factory=lambda: os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
    )
    enabled: bool = field(
        default_factory=lambda: os.getenv("OTEL_METRICS_ENABLED", "false").lower() == "true"
    )
    environment: str = field(
        default_factory=lambda: os.getenv("SHOP_ENVIRONMENT", "development")
    )
    console_export: bool = field(
        default_factory=lambda: os.getenv("OTEL_CONSOLE_EXPORT", "false").lower() == "true"
    )
    export_interval_millis: int = 60000
    # Extra readers, e.g. InMemoryMetricReader in tests; skips OTLP export when set
    readers: List[MetricReader] = field(default_factory=list)


class ShopMetrics:
    """Central metrics collector for the command pipeline."""

    def __init__(self, meter: Meter):
        self.meter = meter

        self.commands_total = meter.create_counter(
            name="shop_commands_total",
            description="Total handled requests by outcome",
            unit="1",
        )

        self.command_duration = meter.create_histogram(
            name="shop_command_duration_seconds",
            description="Duration of request handling",
            unit="s",
        )

        self.event_log_appends = meter.create_counter(
            name="shop_event_log_appends_total",
            description="Event log append attempts by status",
            unit="1",
        )

        self.read_syncs = meter.create_counter(
            name="shop_read_sync_total",
            description="Read model sync attempts by status",
            unit="1",
        )

        self.outbox_relayed = meter.create_counter(
            name="shop_outbox_relayed_total",
            description="Outbox messages processed by the relay",
            unit="1",
        )

    def record_command(self, request_type: str, outcome: str, duration: float) -> None:
        attributes = {"request_type": request_type, "outcome": outcome}
        self.commands_total.add(1, attributes)
        self.command_duration.record(duration, attributes)


def setup_metrics(config: Optional[MetricsConfig] = None) -> Optional[SDKMeterProvider]:
    """
    Configure OpenTelemetry metrics with OTLP export.

    Returns None when metrics are disabled; record_* helpers then do nothing.
    """
    global _meter_provider, _shop_metrics

    if _meter_provider is not None:
        return _meter_provider

    config = config or MetricsConfig()
    if not config.enabled:
        return None

    resource = Resource.create({
        SERVICE_NAME: config.service_name,
        SERVICE_VERSION: config.service_version,
        "deployment.environment": config.environment,
    })

    readers: List[MetricReader] = list(config.readers)
    if not readers:
        readers.append(
            PeriodicExportingMetricReader(
                OTLPMetricExporter(endpoint=config.otlp_endpoint, insecure=True),
                export_interval_millis=config.export_interval_millis,
            )
        )
    if config.console_export:
        readers.append(
            PeriodicExportingMetricReader(
                ConsoleMetricExporter(),
                export_interval_millis=config.export_interval_millis,
            )
        )

    _meter_provider = SDKMeterProvider(resource=resource, metric_readers=readers)
    meter = _meter_provider.get_meter(config.service_name, config.service_version)
    _shop_metrics = ShopMetrics(meter)
    return _meter_provider


def get_shop_metrics() -> Optional[ShopMetrics]:
    """Get the global ShopMetrics instance."""
    return _shop_metrics


def shutdown_metrics() -> None:
    """Gracefully shutdown metrics collection."""
    global _meter_provider, _shop_metrics

    if _meter_provider is not None:
        _meter_provider.shutdown()

    _meter_provider = None
    _shop_metrics = None


# Convenience functions for direct metric recording
def record_command(request_type: str, outcome: str, duration: float) -> None:
    """Record a handled request."""
    m = get_shop_metrics()
    if m:
        m.record_command(request_type, outcome, duration)


def record_event_log_append(event_type: str, status: str) -> None:
    """Record an event log append attempt."""
    m = get_shop_metrics()
    if m:
        m.event_log_appends.add(1, {"event_type": event_type, "status": status})


def record_read_sync(event_type: str, status: str) -> None:
    """Record a read model sync attempt."""
    m = get_shop_metrics()
    if m:
        m.read_syncs.add(1, {"event_type": event_type, "status": status})


def record_outbox_relay(status: str, count: int = 1) -> None:
    """Record outbox messages processed by the relay."""
    m = get_shop_metrics()
    if m and count:
        m.outbox_relayed.add(count, {"status": status})
