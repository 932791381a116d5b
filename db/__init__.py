"""
SHOP - Database Layer

Write store, event log and read store for the customer pipeline:
- PostgreSQL write store: customers and the transactional outbox
- Event log: append-only, idempotent on event id, in its own database
- Read store: denormalized documents in Redis (or memory)

Committing a customer stages its events in the outbox inside the same
transaction, appends them to the event log after commit, then hands
them to the read model synchronizer. The outbox relay re-delivers
anything the append step left behind.

Usage:
    from db import PostgresClient, UnitOfWork, CustomerWriteOnlyRepository

    async with write_db.session_factory() as session:
        repository = CustomerWriteOnlyRepository(session)
        repository.add(customer)
        await UnitOfWork(session, event_store, mediator).save_changes()
"""

from db.models import (
    Base,
    EventLogBase,
    CustomerModel,
    OutboxMessageModel,
    OutboxStatus,
    StoredEventModel,
)
from db.interfaces import (
    ICustomerWriteOnlyRepository,
    IDomainEventPublisher,
    IEventStoreRepository,
    IOutboxRepository,
    IReadStore,
    IUnitOfWork,
    OutboxMessage,
    StoredEvent,
)
from db.postgres import PostgresClient
from db.repositories import CustomerWriteOnlyRepository
from db.event_store import EventStoreRepository
from db.outbox import OutboxRelay, OutboxRelayReport, OutboxRepository
from db.unit_of_work import UnitOfWork
from db.read_store import InMemoryReadStore, RedisReadStore
from db.read_mappings import (
    ReadModelRegistry,
    configure_read_mappings,
    get_read_model_registry,
)
from db.query_models import BaseQueryModel, CustomerQueryModel
from db.projections import ReadModelSynchronizer, ReadModelSyncHandler

__all__ = [
    # Models
    "Base",
    "EventLogBase",
    "CustomerModel",
    "OutboxMessageModel",
    "OutboxStatus",
    "StoredEventModel",
    # Interfaces
    "ICustomerWriteOnlyRepository",
    "IDomainEventPublisher",
    "IEventStoreRepository",
    "IOutboxRepository",
    "IReadStore",
    "IUnitOfWork",
    "OutboxMessage",
    "StoredEvent",
    # Write side
    "PostgresClient",
    "CustomerWriteOnlyRepository",
    "EventStoreRepository",
    "OutboxRepository",
    "OutboxRelay",
    "OutboxRelayReport",
    "UnitOfWork",
    # Read side
    "InMemoryReadStore",
    "RedisReadStore",
    "ReadModelRegistry",
    "configure_read_mappings",
    "get_read_model_registry",
    "BaseQueryModel",
    "CustomerQueryModel",
    "ReadModelSynchronizer",
    "ReadModelSyncHandler",
]
