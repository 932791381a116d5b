"""
SHOP - Domain Layer

Customer aggregate, its value objects and domain events, plus the
mediator that routes commands, queries and notifications.

Usage:
    from domain import CustomerFactory, Gender

    customer = CustomerFactory.create(
        "Ana", "Silva", Gender.FEMALE, "ana@x.com", date(1990, 1, 1)
    )
    customer.domain_events  # [CustomerCreatedEvent(...)]
"""

from domain.entities import (
    AggregateRoot,
    Customer,
    CustomerCreatedEvent,
    DomainEvent,
    Email,
    Entity,
    Gender,
)
from domain.factories import CustomerFactory
from domain.mediator import (
    Command,
    DomainEventNotification,
    ICommandHandler,
    INotification,
    INotificationHandler,
    IPipelineBehavior,
    IQueryHandler,
    IRequestHandler,
    LoggingBehavior,
    Mediator,
    MediatorBuilder,
    Query,
)

__all__ = [
    # Entities
    "AggregateRoot",
    "Customer",
    "CustomerCreatedEvent",
    "DomainEvent",
    "Email",
    "Entity",
    "Gender",
    "CustomerFactory",
    # Mediator
    "Command",
    "Query",
    "INotification",
    "DomainEventNotification",
    "IRequestHandler",
    "ICommandHandler",
    "IQueryHandler",
    "INotificationHandler",
    "IPipelineBehavior",
    "LoggingBehavior",
    "Mediator",
    "MediatorBuilder",
]
