"""
SHOP - Domain Entities

Domain model for the customer aggregate: value objects, domain events,
and the aggregate root base classes.

Design Principles:
    - Aggregates are consistency boundaries
    - Value objects are immutable and self-validating
    - Domain events capture all significant state changes
    - State changes only through aggregate-owned behavior
"""
from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import (
    Any,
    ClassVar,
    Dict,
    List,
    Optional,
    Pattern,
    Type,
)
from uuid import UUID, uuid4


# =============================================================================
# VALUE OBJECTS - Immutable, self-validating domain primitives
# =============================================================================


class Gender(str, Enum):
    """Customer gender."""
    MALE = "MALE"
    FEMALE = "FEMALE"

    @classmethod
    def parse(cls, value: Any) -> "Gender":
        """Accept a member or its (case-insensitive) name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        raise ValueError(f"Invalid gender: {value!r}")


@dataclass(frozen=True, slots=True)
class Email:
    """
    Value object for e-mail addresses.

    Stored lower-cased so the uniqueness key compares case-insensitively.
    """
    address: str

    PATTERN: ClassVar[Pattern[str]] = re.compile(
        r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
        r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)+$"
    )
    MAX_LENGTH: ClassVar[int] = 100

    def __post_init__(self) -> None:
        if self.address != self.address.strip().lower():
            raise ValueError(f"Email must be normalized: {self.address!r}")
        if len(self.address) > self.MAX_LENGTH:
            raise ValueError(f"Email exceeds {self.MAX_LENGTH} characters")
        if not self.PATTERN.match(self.address):
            raise ValueError(f"Invalid email address: {self.address!r}")

    def __str__(self) -> str:
        return self.address

    @classmethod
    def parse(cls, raw: str) -> "Email":
        """Normalize and validate a raw address."""
        return cls(raw.strip().lower())

    @classmethod
    def is_valid(cls, raw: str) -> bool:
        return bool(cls.PATTERN.match(raw.strip()))


# =============================================================================
# DOMAIN EVENTS - Signals of significant state changes
# =============================================================================


_EVENT_TYPES: Dict[str, Type["DomainEvent"]] = {}


def register_event_type(event_cls: Type["DomainEvent"]) -> Type["DomainEvent"]:
    """Class decorator recording an event type for deserialization."""
    _EVENT_TYPES[event_cls.__name__] = event_cls
    return event_cls


@dataclass(frozen=True)
class DomainEvent:
    """
    Base class for domain events.

    Domain events are immutable records of significant occurrences
    in the domain. They are appended verbatim to the event log and
    drive read model projections.
    """
    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    aggregate_id: Optional[str] = None

    aggregate_type: ClassVar[str] = ""

    @property
    def event_type(self) -> str:
        """Return the event type name."""
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization."""
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type,
            "occurred_at": self.occurred_at.isoformat(),
            "aggregate_id": self.aggregate_id,
            "aggregate_type": self.aggregate_type,
            "data": self._event_data(),
        }

    def _event_data(self) -> Dict[str, Any]:
        """Override in subclasses to provide event-specific data."""
        return {}

    @classmethod
    def _from_event_data(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """Override in subclasses to decode event-specific data."""
        return {}

    @staticmethod
    def from_dict(payload: Dict[str, Any]) -> "DomainEvent":
        """Rebuild an event from its serialized form."""
        event_type = payload.get("event_type", "")
        event_cls = _EVENT_TYPES.get(event_type)
        if event_cls is None:
            raise ValueError(f"Unknown event type: {event_type!r}")
        return event_cls(
            event_id=UUID(payload["event_id"]),
            occurred_at=datetime.fromisoformat(payload["occurred_at"]),
            aggregate_id=payload.get("aggregate_id"),
            **event_cls._from_event_data(payload.get("data") or {}),
        )


@register_event_type
@dataclass(frozen=True)
class CustomerCreatedEvent(DomainEvent):
    """Emitted when a new customer is registered."""
    first_name: str = ""
    last_name: str = ""
    gender: Gender = Gender.MALE
    email: str = ""
    date_of_birth: Optional[date] = None

    aggregate_type: ClassVar[str] = "Customer"

    def _event_data(self) -> Dict[str, Any]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "gender": self.gender.value,
            "email": self.email,
            "date_of_birth": self.date_of_birth.isoformat() if self.date_of_birth else None,
        }

    @classmethod
    def _from_event_data(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        dob = data.get("date_of_birth")
        return {
            "first_name": data.get("first_name", ""),
            "last_name": data.get("last_name", ""),
            "gender": Gender(data.get("gender", Gender.MALE.value)),
            "email": data.get("email", ""),
            "date_of_birth": date.fromisoformat(dob) if dob else None,
        }


# =============================================================================
# BASE AGGREGATE AND ENTITY CLASSES
# =============================================================================


class Entity(ABC):
    """
    Base class for domain entities.

    Entities have identity that persists over time, distinguishing them
    from value objects which are defined solely by their attributes.
    """

    @property
    @abstractmethod
    def id(self) -> str:
        """Unique identifier for this entity."""
        pass

    @property
    def entity_type(self) -> str:
        """Return the type name of this entity."""
        return self.__class__.__name__

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Entity):
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        return f"{self.entity_type}(id={self.id!r})"


class AggregateRoot(Entity, ABC):
    """
    Base class for aggregate roots.

    Aggregate roots are the entry point to a cluster of domain objects.
    They maintain invariants across the aggregate boundary and collect
    domain events which the unit of work drains on commit.
    """

    def __init__(self) -> None:
        self._domain_events: List[DomainEvent] = []
        self._version: int = 0
        self._invariant_violations: List[str] = []

    @property
    def version(self) -> int:
        """Current version for optimistic concurrency."""
        return self._version

    @property
    def domain_events(self) -> List[DomainEvent]:
        """Pending domain events to be dispatched."""
        return list(self._domain_events)

    @property
    def has_pending_events(self) -> bool:
        return len(self._domain_events) > 0

    def add_domain_event(self, event: DomainEvent) -> None:
        """Add a domain event to be dispatched on commit."""
        self._domain_events.append(event)

    def clear_domain_events(self) -> List[DomainEvent]:
        """Clear and return all pending domain events."""
        events = self._domain_events
        self._domain_events = []
        return events

    def increment_version(self) -> None:
        self._version += 1

    @property
    def is_valid(self) -> bool:
        self._validate_invariants()
        return len(self._invariant_violations) == 0

    @property
    def invariant_violations(self) -> List[str]:
        """Any invariants that are currently violated."""
        self._validate_invariants()
        return list(self._invariant_violations)

    def _validate_invariants(self) -> None:
        """Override in subclasses to add domain-specific invariant checks."""
        self._invariant_violations = []

    def _add_invariant_violation(self, violation: str) -> None:
        if violation not in self._invariant_violations:
            self._invariant_violations.append(violation)

    @property
    def aggregate_type(self) -> str:
        """The type of this aggregate, used as the event log stream type."""
        return self.__class__.__name__

    @property
    def stream_name(self) -> str:
        """Event stream name: {type}-{id}."""
        return f"{self.aggregate_type.lower()}-{self.id}"


# =============================================================================
# AGGREGATE ROOTS
# =============================================================================


class Customer(AggregateRoot):
    """
    Aggregate root for customers.

    Invariants:
        - Identity is assigned once at creation
        - First and last name are non-blank
        - Date of birth is checked on the command, against the
          validator's clock
        - E-mail (business key) is unique; enforced by the repository
          and the write store's unique constraint
    """

    def __init__(
        self,
        id: str,
        first_name: str,
        last_name: str,
        gender: Gender,
        email: Email,
        date_of_birth: date,
        created_at: Optional[datetime] = None,
    ) -> None:
        super().__init__()
        self._id = id
        self._first_name = first_name
        self._last_name = last_name
        self._gender = gender
        self._email = email
        self._date_of_birth = date_of_birth
        self._created_at = created_at or datetime.now(timezone.utc)

    @property
    def id(self) -> str:
        return self._id

    @property
    def first_name(self) -> str:
        return self._first_name

    @property
    def last_name(self) -> str:
        return self._last_name

    @property
    def full_name(self) -> str:
        return f"{self._first_name} {self._last_name}".strip()

    @property
    def gender(self) -> Gender:
        return self._gender

    @property
    def email(self) -> Email:
        return self._email

    @property
    def date_of_birth(self) -> date:
        return self._date_of_birth

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def aggregate_type(self) -> str:
        return CustomerCreatedEvent.aggregate_type

    def _validate_invariants(self) -> None:
        super()._validate_invariants()
        if not self._first_name.strip():
            self._add_invariant_violation("First name is required")
        if not self._last_name.strip():
            self._add_invariant_violation("Last name is required")

    @classmethod
    def create(
        cls,
        first_name: str,
        last_name: str,
        gender: Gender,
        email: Email,
        date_of_birth: date,
    ) -> "Customer":
        """Factory method to create a new customer."""
        customer = cls(
            id=str(uuid4()),
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            gender=gender,
            email=email,
            date_of_birth=date_of_birth,
        )
        violations = customer.invariant_violations
        if violations:
            raise ValueError("; ".join(violations))

        customer.add_domain_event(CustomerCreatedEvent(
            aggregate_id=customer.id,
            occurred_at=customer.created_at,
            first_name=customer.first_name,
            last_name=customer.last_name,
            gender=gender,
            email=str(email),
            date_of_birth=date_of_birth,
        ))
        return customer
