"""
SHOP - Structured Logging with Trace Context

Integrates structlog with OpenTelemetry trace context propagation,
ensuring all log messages include trace_id and span_id for correlation
with distributed traces.

Usage:
    from observability.logging import setup_logging, get_logger

    # Setup at startup
    setup_logging(LoggingConfig(level="INFO", json_format=True))

    # Get logger
    logger = get_logger(__name__)
    logger.info("Customer created", customer_id=customer.id)
"""
from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from opentelemetry import trace
from structlog.types import EventDict, WrappedLogger

# Global state
_configured: bool = False


@dataclass
class LoggingConfig:
    """Configuration for structured logging."""

    service_name: str = "shop"
    level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO")
    )
    json_format: bool = field(
        default_factory=lambda: os.getenv("LOG_JSON", "false").lower() == "true"
    )
    enable_trace_context: bool = True
    include_timestamp: bool = True
    environment: str = field(
        default_factory=lambda: os.getenv("SHOP_ENVIRONMENT", "development")
    )


def add_trace_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """
    Structlog processor that adds OpenTelemetry trace context to log events.

    Adds trace_id and span_id from the current span context, enabling
    correlation between logs and traces in observability backends.
    """
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        if ctx.is_valid:
            event_dict["trace_id"] = format(ctx.trace_id, "032x")
            event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def add_service_context(
    service_name: str,
    environment: str,
) -> structlog.types.Processor:
    """Create a processor that adds service context to all log events."""

    def processor(
        logger: WrappedLogger,
        method_name: str,
        event_dict: EventDict,
    ) -> EventDict:
        event_dict["service"] = service_name
        event_dict["environment"] = environment
        return event_dict

    return processor


def add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add ISO8601 timestamp."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """
    Configure structlog with OpenTelemetry trace context integration.

    Safe to call more than once; only the first call takes effect.
    """
    global _configured

    if _configured:
        return

    config = config or LoggingConfig()

    processors: List[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_context(config.service_name, config.environment),
    ]

    if config.include_timestamp:
        processors.append(add_timestamp)

    if config.enable_trace_context:
        processors.append(add_trace_context)

    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ])

    if config.json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configure_stdlib_logging(config)

    _configured = True


def _configure_stdlib_logging(config: LoggingConfig) -> None:
    """Route stdlib loggers (shop.*, sqlalchemy) to stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    # Noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("opentelemetry").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structlog logger instance.

    Until setup_logging() runs, structlog's default configuration applies.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Event appended", event_id=str(event.event_id))
    """
    return structlog.get_logger(name)


def shutdown_logging() -> None:
    """Flush handlers and allow reconfiguration."""
    global _configured

    for handler in logging.getLogger().handlers:
        handler.flush()

    structlog.reset_defaults()
    _configured = False
