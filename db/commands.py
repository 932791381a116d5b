"""
CQRS: Command Definitions

Commands represent intentions to change system state. Each command has
a validator that checks it before anything touches a store.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Union
from uuid import UUID, uuid4

from core.types import Result, ValidationErrorDetail
from domain.entities import Email, Gender
from domain.mediator import Command


NAME_MAX_LENGTH = 100


@dataclass(frozen=True)
class CreateCustomerResponse:
    """Identity of a newly registered customer."""
    id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id}


# ==================== Customer Commands ====================

@dataclass(frozen=True)
class CreateCustomerCommand(Command[Result[CreateCustomerResponse]]):
    """
    Command to register a new customer.

    Every field defaults to empty so a blank command can be built and
    rejected by validation.

    Args:
        first_name: Given name
        last_name: Family name
        gender: Gender member or its name (case-insensitive)
        email: Contact address, the customer's business key
        date_of_birth: Must not be in the future
    """
    first_name: str = ""
    last_name: str = ""
    gender: Optional[Union[Gender, str]] = None
    email: str = ""
    date_of_birth: Optional[date] = None
    command_id: UUID = field(default_factory=uuid4)


# ==================== Validators ====================

class CreateCustomerCommandValidator:
    """
    Structural and range checks for CreateCustomerCommand.

    Fields are checked in declaration order and each field reports at
    most its first failing rule. No I/O.
    """

    def __init__(self, today: Callable[[], date] = date.today):
        self._today = today

    def validate(self, command: CreateCustomerCommand) -> List[ValidationErrorDetail]:
        errors: List[ValidationErrorDetail] = []
        checks = (
            ("first_name", self._check_name(command.first_name, "First name")),
            ("last_name", self._check_name(command.last_name, "Last name")),
            ("gender", self._check_gender(command.gender)),
            ("email", self._check_email(command.email)),
            ("date_of_birth", self._check_date_of_birth(command.date_of_birth)),
        )
        for identifier, message in checks:
            if message is not None:
                errors.append(ValidationErrorDetail(identifier, message))
        return errors

    @staticmethod
    def _check_name(value: Optional[str], label: str) -> Optional[str]:
        if not value or not value.strip():
            return f"{label} is required."
        if len(value.strip()) > NAME_MAX_LENGTH:
            return f"{label} must be at most {NAME_MAX_LENGTH} characters."
        return None

    @staticmethod
    def _check_gender(value: Optional[Union[Gender, str]]) -> Optional[str]:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "Gender is required."
        try:
            Gender.parse(value)
        except ValueError:
            allowed = ", ".join(g.value for g in Gender)
            return f"Gender must be one of: {allowed}."
        return None

    @staticmethod
    def _check_email(value: Optional[str]) -> Optional[str]:
        if not value or not value.strip():
            return "E-mail address is required."
        if len(value.strip()) > Email.MAX_LENGTH:
            return f"E-mail address must be at most {Email.MAX_LENGTH} characters."
        if not Email.is_valid(value):
            return "E-mail address is not valid."
        return None

    def _check_date_of_birth(self, value: Optional[date]) -> Optional[str]:
        if value is None:
            return "Date of birth is required."
        if isinstance(value, datetime) or not isinstance(value, date):
            return "Date of birth must be a date."
        if value > self._today():
            return "Date of birth cannot be in the future."
        return None
