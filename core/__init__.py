"""
SHOP - Core Module

Foundational components shared by every layer:
- Error hierarchy with severity and span recording
- Result type for command and query outcomes
- Retry policy for transient failures
- Bounded background task runner

Application wiring lives in core.bootstrap, which is imported on its
own because it depends on the db and domain layers.

Usage:
    from core import Result, ResultStatus, ShopError

    result = Result.error("Unable to save the customer.")
    assert result.status is ResultStatus.ERROR
"""

from core.errors import (
    ErrorSeverity,
    ShopError,
    ShopConfigError,
    PersistenceFailure,
    UniqueConstraintViolation,
    EventLogAppendError,
    SyncFailure,
    MappingRegistrationError,
)
from core.types import (
    Result,
    ResultStatus,
    ValidationErrorDetail,
)
from core.resilience import (
    RetryConfig,
    RetryPolicy,
)
from core.async_utils import (
    BackgroundTaskConfig,
    BackgroundTaskRunner,
)

__all__ = [
    # Errors
    "ErrorSeverity",
    "ShopError",
    "ShopConfigError",
    "PersistenceFailure",
    "UniqueConstraintViolation",
    "EventLogAppendError",
    "SyncFailure",
    "MappingRegistrationError",
    # Types
    "Result",
    "ResultStatus",
    "ValidationErrorDetail",
    # Resilience
    "RetryConfig",
    "RetryPolicy",
    # Async
    "BackgroundTaskConfig",
    "BackgroundTaskRunner",
]
