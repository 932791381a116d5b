"""
SHOP - Centralized Type Definitions

Provides the command outcome type and shared protocols.

Usage:
    from core.types import Result, ResultStatus

    result = await mediator.send(command)
    if result.status is ResultStatus.INVALID:
        for detail in result.validation_errors:
            print(detail.identifier, detail.error_message)
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Iterable,
    Optional,
    Protocol,
    Tuple,
    TypeVar,
    runtime_checkable,
)


T = TypeVar("T")
R = TypeVar("R")


# =============================================================================
# PROTOCOLS
# =============================================================================


@runtime_checkable
class Serializable(Protocol):
    """Protocol for objects that can be serialized."""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        ...


# =============================================================================
# RESULT TYPES - Explicit success/validation/business outcome
# =============================================================================


class ResultStatus(Enum):
    """Outcome variant tag."""

    OK = "ok"
    INVALID = "invalid"
    ERROR = "error"


@dataclass(frozen=True)
class ValidationErrorDetail:
    """A single field-level validation failure."""

    identifier: str
    error_message: str

    def to_dict(self) -> Dict[str, str]:
        return {"identifier": self.identifier, "error_message": self.error_message}


def _unique(items: Iterable[Any]) -> Tuple[Any, ...]:
    """Drop repeats, keeping first-seen order."""
    seen = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return tuple(seen)


class Result(Generic[T]):
    """
    Tagged outcome of a handled request.

    Exactly one variant is populated:
      - OK: ``value`` and ``success_message``
      - INVALID: ``validation_errors`` (ordered, duplicate-free)
      - ERROR: ``errors`` (duplicate-free business messages)

    Usage:
        result = await handler.handle(command)
        if result.is_success:
            print(result.value, result.success_message)
        else:
            print(result.errors or result.validation_errors)
    """

    __slots__ = ("_status", "_value", "_success_message", "_errors", "_validation_errors")

    def __init__(
        self,
        status: ResultStatus,
        value: Optional[T] = None,
        success_message: str = "",
        errors: Iterable[str] = (),
        validation_errors: Iterable[ValidationErrorDetail] = (),
    ):
        self._status = status
        self._value = value
        self._success_message = success_message
        self._errors: Tuple[str, ...] = _unique(errors)
        self._validation_errors: Tuple[ValidationErrorDetail, ...] = _unique(validation_errors)

    @property
    def status(self) -> ResultStatus:
        return self._status

    @property
    def is_success(self) -> bool:
        return self._status is ResultStatus.OK

    @property
    def is_failure(self) -> bool:
        return not self.is_success

    @property
    def value(self) -> T:
        if self.is_failure:
            raise ValueError(f"Cannot get value from {self._status.value} result")
        return self._value  # type: ignore

    @property
    def success_message(self) -> str:
        return self._success_message

    @property
    def errors(self) -> Tuple[str, ...]:
        return self._errors

    @property
    def validation_errors(self) -> Tuple[ValidationErrorDetail, ...]:
        return self._validation_errors

    def unwrap_or(self, default: T) -> T:
        """Get value or return default."""
        if self.is_failure:
            return default
        return self._value  # type: ignore

    def map(self, fn: Callable[[T], R]) -> "Result[R]":
        """Transform value if successful."""
        if self.is_failure:
            return Result(
                self._status,
                errors=self._errors,
                validation_errors=self._validation_errors,
            )
        return Result(ResultStatus.OK, value=fn(self._value), success_message=self._success_message)  # type: ignore

    def to_dict(self) -> Dict[str, Any]:
        value = self._value
        if isinstance(value, Serializable):
            value = value.to_dict()
        return {
            "status": self._status.value,
            "value": value,
            "success_message": self._success_message,
            "errors": list(self._errors),
            "validation_errors": [e.to_dict() for e in self._validation_errors],
        }

    def __repr__(self) -> str:
        if self.is_success:
            return f"Result.success({self._value!r}, {self._success_message!r})"
        if self._status is ResultStatus.INVALID:
            return f"Result.invalid({list(self._validation_errors)!r})"
        return f"Result.error({', '.join(repr(e) for e in self._errors)})"

    @classmethod
    def success(cls, value: T, message: str = "") -> "Result[T]":
        """Create successful result."""
        return cls(ResultStatus.OK, value=value, success_message=message)

    @classmethod
    def invalid(cls, errors: Iterable[ValidationErrorDetail]) -> "Result[T]":
        """Create validation failure from field errors."""
        return cls(ResultStatus.INVALID, validation_errors=errors)

    @classmethod
    def error(cls, *messages: str) -> "Result[T]":
        """Create business failure with one or more messages."""
        return cls(ResultStatus.ERROR, errors=messages)
