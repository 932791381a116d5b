"""
SHOP - Observability Package

Tracing, metrics, and logging for the command pipeline.

Components:
- tracing: OpenTelemetry distributed tracing with OTLP export
- metrics: Command, event log, and read sync metrics
- logging: Structlog integration with trace context propagation

Usage:
    from observability import setup_observability

    # Initialize at application startup
    setup_observability(get_config())
"""
from typing import TYPE_CHECKING

from .logging import (
    LoggingConfig,
    get_logger,
    setup_logging,
    shutdown_logging,
)
from .metrics import (
    MetricsConfig,
    ShopMetrics,
    get_shop_metrics,
    record_command,
    record_event_log_append,
    record_outbox_relay,
    record_read_sync,
    setup_metrics,
    shutdown_metrics,
)
from .tracing import (
    TracingConfig,
    get_tracer,
    setup_tracing,
    shutdown_tracing,
)

if TYPE_CHECKING:
    from config import Config

__all__ = [
    # Tracing
    "setup_tracing",
    "get_tracer",
    "TracingConfig",
    "shutdown_tracing",
    # Metrics
    "setup_metrics",
    "get_shop_metrics",
    "MetricsConfig",
    "ShopMetrics",
    "record_command",
    "record_event_log_append",
    "record_read_sync",
    "record_outbox_relay",
    "shutdown_metrics",
    # Logging
    "setup_logging",
    "get_logger",
    "LoggingConfig",
    "shutdown_logging",
    # Combined setup
    "setup_observability",
    "shutdown_observability",
]


def setup_observability(config: "Config") -> None:
    """
    Initialize all observability components from application config.

    Tracing and metrics are only exported when enabled in the
    observability section; logging is always configured.
    """
    obs = config.observability
    setup_tracing(TracingConfig(
        service_name=config.service_name,
        otlp_endpoint=obs.otlp_endpoint,
        enabled=obs.tracing_enabled,
        environment=config.environment.value,
    ))
    setup_metrics(MetricsConfig(
        service_name=config.service_name,
        otlp_endpoint=obs.otlp_endpoint,
        enabled=obs.metrics_enabled,
        environment=config.environment.value,
    ))
    setup_logging(LoggingConfig(
        service_name=config.service_name,
        level=obs.log_level,
        json_format=obs.json_logs,
        environment=config.environment.value,
    ))


def shutdown_observability() -> None:
    """Flush all telemetry during application shutdown."""
    shutdown_tracing()
    shutdown_metrics()
    shutdown_logging()
