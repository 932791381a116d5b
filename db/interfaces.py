"""
SHOP - Database Abstraction Interfaces

Interfaces for both sides of the command pipeline:
- Write-only and read-only repositories (interface segregation)
- Append-only event log
- Unit of Work with domain event collection and a transactional outbox
- Document-oriented read store

Usage:
    from db.interfaces import ICustomerWriteOnlyRepository, IUnitOfWork

    class CreateCustomerCommandHandler:
        def __init__(self, validator, repository: ICustomerWriteOnlyRepository,
                     unit_of_work: IUnitOfWork):
            ...
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import (
    Any,
    AsyncIterator,
    Dict,
    List,
    Optional,
    Protocol,
    runtime_checkable,
)

from domain.entities import Customer, DomainEvent
from db.models import OutboxStatus


# =============================================================================
# WRITE SIDE
# =============================================================================


class ICustomerWriteOnlyRepository(ABC):
    """
    Customer persistence against the authoritative store.

    Nothing here commits; staged changes are flushed by the unit of work.
    """

    @abstractmethod
    async def exists_by_email(self, email: str) -> bool:
        """
        Check whether a customer with this e-mail exists.

        Sees customers staged in the current unit of work as well as
        committed ones.

        Raises:
            PersistenceFailure: If the write store could not be queried
        """
        pass

    @abstractmethod
    def add(self, customer: Customer) -> None:
        """Stage a new customer for insertion."""
        pass

    @abstractmethod
    async def get_by_id(self, customer_id: str) -> Optional[Customer]:
        pass

    @abstractmethod
    async def list_all(self) -> List[Customer]:
        pass


@runtime_checkable
class IDomainEventPublisher(Protocol):
    """Publishes committed domain events (the mediator implements this)."""

    async def publish_domain_event(
        self,
        event: DomainEvent,
        transaction_tag: Optional[str] = None
    ) -> None:
        ...


class IUnitOfWork(ABC):
    """
    Commit boundary for the write store.

    save_changes() flushes staged aggregates and their outbox rows in one
    transaction, then appends the collected events to the event log and
    triggers read model sync.

    Usage:
        repository.add(customer)
        await unit_of_work.save_changes()
    """

    @abstractmethod
    async def save_changes(self) -> bool:
        """
        Commit all staged changes.

        Returns:
            True once the write store transaction committed

        Raises:
            PersistenceFailure: If the commit failed (rolled back)
        """
        pass

    @abstractmethod
    async def rollback(self) -> None:
        """Discard staged changes and pending events."""
        pass

    @abstractmethod
    def get_pending_events(self) -> List[DomainEvent]:
        """Domain events of aggregates staged in this unit of work."""
        pass


# =============================================================================
# EVENT LOG
# =============================================================================


@dataclass(frozen=True)
class StoredEvent:
    """An event as recorded in the event log."""
    position: int
    event_id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    payload: Dict[str, Any]
    transaction_tag: Optional[str]
    occurred_at: datetime
    stored_at: Optional[datetime] = None

    def to_domain_event(self) -> DomainEvent:
        return DomainEvent.from_dict(self.payload)


class IEventStoreRepository(ABC):
    """
    Append-only event log keyed by aggregate.

    There are no update or delete operations.
    """

    @abstractmethod
    async def append(
        self,
        aggregate_type: str,
        aggregate_id: str,
        event_payload: Dict[str, Any],
        transaction_tag: Optional[str] = None,
    ) -> int:
        """
        Append one event.

        Idempotent on the payload's event_id: re-appending returns the
        existing position.

        Returns:
            Position of the event in the log
        """
        pass

    @abstractmethod
    async def get_events_by_aggregate(
        self,
        aggregate_type: str,
        aggregate_id: str,
    ) -> List[StoredEvent]:
        pass

    @abstractmethod
    def stream_events(
        self,
        from_position: int = 0,
        batch_size: int = 500,
    ) -> AsyncIterator[StoredEvent]:
        """Yield every stored event in log order."""
        pass


# =============================================================================
# OUTBOX PATTERN FOR RELIABLE EVENT LOG APPENDS
# =============================================================================


@dataclass
class OutboxMessage:
    """
    Domain event recorded alongside the aggregate in the write store.

    Guarantees at-least-once delivery to the event log.
    """
    id: str
    transaction_tag: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    payload: Dict[str, Any]
    status: OutboxStatus = OutboxStatus.PENDING
    retry_count: int = 0
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_event(cls, event: DomainEvent, transaction_tag: str) -> "OutboxMessage":
        return cls(
            id=str(event.event_id),
            transaction_tag=transaction_tag,
            aggregate_type=event.aggregate_type,
            aggregate_id=event.aggregate_id or "",
            event_type=event.event_type,
            payload=event.to_dict(),
        )


class IOutboxRepository(ABC):
    """Repository for outbox messages."""

    @abstractmethod
    def add(self, message: OutboxMessage) -> None:
        """Stage a message in the current write store transaction."""
        pass

    @abstractmethod
    async def get_pending(self, limit: int = 100, max_retries: int = 5) -> List[OutboxMessage]:
        """Messages not yet appended that still have retries left."""
        pass

    @abstractmethod
    async def mark_completed(self, message_id: str) -> None:
        pass

    @abstractmethod
    async def mark_failed(self, message_id: str, error: str, max_retries: int = 5) -> None:
        """Record a failed attempt; gives up once max_retries is reached."""
        pass

    @abstractmethod
    async def requeue_failed(self, limit: Optional[int] = None) -> int:
        """Return given-up messages to pending with a fresh retry budget."""
        pass


# =============================================================================
# READ SIDE
# =============================================================================


class IReadStore(ABC):
    """
    Document-oriented read store.

    Documents are upserted whole, keyed by aggregate id.
    """

    @abstractmethod
    async def upsert(self, collection: str, document_id: str, document: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def find_all(self, collection: str) -> List[Dict[str, Any]]:
        pass

    async def initialize(self) -> None:
        """Open connections. No-op by default."""

    async def close(self) -> None:
        """Release connections. No-op by default."""
