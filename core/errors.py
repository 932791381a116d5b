"""
SHOP - Unified Error Handling

Errors raised below the command handler. Handlers translate them into
Result values; nothing here reaches a caller of Mediator.send.

    ShopError
    ├── ShopConfigError            bad settings, raised at startup
    ├── PersistenceFailure         write store commit failed
    │   └── UniqueConstraintViolation
    ├── EventLogAppendError        append after commit failed (outbox retries)
    ├── SyncFailure                read model upsert failed (queued for retry)
    └── MappingRegistrationError   read mapping misuse
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode


class ErrorSeverity(Enum):
    """Error severity levels for prioritized handling."""

    WARNING = "warning"      # Degraded, committed state intact
    ERROR = "error"          # Operation failed
    CRITICAL = "critical"    # Process cannot continue


class ShopError(Exception):
    """
    Base exception for all SHOP errors.

    Records itself on the current OpenTelemetry span when raised inside
    one, so failed commits and appends show up on the request trace.
    """

    default_severity: ErrorSeverity = ErrorSeverity.ERROR
    error_code: str = "SHOP_ERROR"

    def __init__(
        self,
        message: str,
        severity: Optional[ErrorSeverity] = None,
        cause: Optional[BaseException] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity or self.default_severity
        self.cause = cause
        self.recoverable = recoverable
        self.timestamp = datetime.now(timezone.utc)

        self._record_to_span()

    def _record_to_span(self) -> None:
        span = trace.get_current_span()
        if span and span.is_recording():
            span.set_status(Status(StatusCode.ERROR, self.message))
            span.record_exception(self)
            span.set_attribute("error.code", self.error_code)
            span.set_attribute("error.severity", self.severity.value)
            span.set_attribute("error.recoverable", self.recoverable)

    def details(self) -> Dict[str, Any]:
        """Subclass-specific identifiers (event id, constraint, ...)."""
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
            **self.details(),
        }

    def __str__(self) -> str:
        text = f"[{self.error_code}] {self.message}"
        if self.cause:
            text += f" [caused by: {self.cause}]"
        return text


class ShopConfigError(ShopError):
    """Configuration-related errors."""

    error_code = "CONFIG_ERROR"
    default_severity = ErrorSeverity.CRITICAL

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.config_key = config_key

    def details(self) -> Dict[str, Any]:
        return {"config_key": self.config_key}


class PersistenceFailure(ShopError):
    """The write store rejected or could not complete a commit."""

    error_code = "PERSISTENCE_FAILURE"

    def __init__(self, message: str, database: Optional[str] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.database = database

    def details(self) -> Dict[str, Any]:
        return {"database": self.database}


class UniqueConstraintViolation(PersistenceFailure):
    """A store-level unique constraint fired at commit."""

    error_code = "UNIQUE_CONSTRAINT_VIOLATION"

    def __init__(self, message: str, constraint: Optional[str] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.constraint = constraint

    def details(self) -> Dict[str, Any]:
        return {**super().details(), "constraint": self.constraint}


class EventLogAppendError(ShopError):
    """Appending to the event log failed after the write store committed."""

    error_code = "EVENT_LOG_APPEND_ERROR"
    default_severity = ErrorSeverity.WARNING

    def __init__(self, message: str, event_id: Optional[str] = None, **kwargs: Any):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)
        self.event_id = event_id

    def details(self) -> Dict[str, Any]:
        return {"event_id": self.event_id}


class SyncFailure(ShopError):
    """Read model propagation failed. Isolated from the command outcome."""

    error_code = "SYNC_FAILURE"
    default_severity = ErrorSeverity.WARNING

    def __init__(
        self,
        message: str,
        event_id: Optional[str] = None,
        aggregate_id: Optional[str] = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)
        self.event_id = event_id
        self.aggregate_id = aggregate_id

    def details(self) -> Dict[str, Any]:
        return {"event_id": self.event_id, "aggregate_id": self.aggregate_id}


class MappingRegistrationError(ShopError):
    """Read model mapping registered after the registry was frozen."""

    error_code = "MAPPING_REGISTRATION_ERROR"
    default_severity = ErrorSeverity.CRITICAL
