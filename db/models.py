"""
SHOP - SQLAlchemy ORM Models

Write store tables (customers, outbox) and the append-only event log
table. The event log has its own declarative base so it can live in a
separate database.
"""
from datetime import date, datetime
from typing import Any, Dict, Optional
from sqlalchemy import (
    JSON, BigInteger, Date, DateTime, Integer, String, Text,
    Index, UniqueConstraint, Enum as SQLEnum
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func
import enum

from domain.entities import Gender


class Base(DeclarativeBase):
    """Base class for write store models."""
    pass


class EventLogBase(DeclarativeBase):
    """Base class for event log models."""
    pass


class OutboxStatus(enum.Enum):
    """Outbox message delivery status."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CustomerModel(Base):
    """Authoritative customer record."""
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    first_name: Mapped[str] = mapped_column(String(100))
    last_name: Mapped[str] = mapped_column(String(100))
    gender: Mapped[Gender] = mapped_column(
        SQLEnum(Gender, name="customer_gender", native_enum=False, length=16)
    )
    email: Mapped[str] = mapped_column(String(100))
    date_of_birth: Mapped[date] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("email", name="uq_customers_email"),
    )

    def __repr__(self) -> str:
        return f"<Customer {self.id}: {self.email}>"


class OutboxMessageModel(Base):
    """
    Domain event recorded in the same transaction as the aggregate.

    Drained into the event log after commit; rows left pending are
    picked up by the outbox relay.
    """
    __tablename__ = "outbox_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)  # event_id
    transaction_tag: Mapped[str] = mapped_column(String(36), index=True)
    aggregate_type: Mapped[str] = mapped_column(String(100))
    aggregate_id: Mapped[str] = mapped_column(String(36))
    event_type: Mapped[str] = mapped_column(String(100))
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON)
    status: Mapped[OutboxStatus] = mapped_column(
        SQLEnum(OutboxStatus, name="outbox_status", native_enum=False, length=16),
        default=OutboxStatus.PENDING,
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_outbox_messages_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<OutboxMessage {self.id}: {self.event_type} ({self.status.value})>"


class StoredEventModel(EventLogBase):
    """Append-only event log row. Never updated or deleted."""
    __tablename__ = "event_store"

    position: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    event_id: Mapped[str] = mapped_column(String(36))
    aggregate_type: Mapped[str] = mapped_column(String(100))
    aggregate_id: Mapped[str] = mapped_column(String(36), index=True)
    event_type: Mapped[str] = mapped_column(String(100))
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON)
    transaction_tag: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    stored_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("event_id", name="uq_event_store_event_id"),
        Index("ix_event_store_aggregate", "aggregate_type", "aggregate_id"),
    )

    def __repr__(self) -> str:
        return f"<StoredEvent #{self.position}: {self.event_type} {self.aggregate_id}>"
