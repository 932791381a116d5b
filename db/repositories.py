"""
SHOP - Write-Side Repositories

SQLAlchemy implementations of the write-only repositories. They stage
changes on the session they are given; the unit of work owning that
session commits.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import exists, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import PersistenceFailure
from db.interfaces import ICustomerWriteOnlyRepository
from db.models import CustomerModel
from domain.entities import AggregateRoot, Customer, Email

logger = logging.getLogger("shop.db.repositories")

TRACKED_AGGREGATES_KEY = "shop.tracked_aggregates"


def tracked_aggregates(session: AsyncSession) -> List[AggregateRoot]:
    """Aggregates staged on this session whose events await commit."""
    return session.info.setdefault(TRACKED_AGGREGATES_KEY, [])


def _to_model(customer: Customer) -> CustomerModel:
    return CustomerModel(
        id=customer.id,
        first_name=customer.first_name,
        last_name=customer.last_name,
        gender=customer.gender,
        email=str(customer.email),
        date_of_birth=customer.date_of_birth,
        created_at=customer.created_at,
    )


def _as_utc(value: datetime) -> datetime:
    # SQLite hands DateTime(timezone=True) columns back naive
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_aggregate(model: CustomerModel) -> Customer:
    return Customer(
        id=model.id,
        first_name=model.first_name,
        last_name=model.last_name,
        gender=model.gender,
        email=Email(model.email),
        date_of_birth=model.date_of_birth,
        created_at=_as_utc(model.created_at),
    )


class CustomerWriteOnlyRepository(ICustomerWriteOnlyRepository):
    """
    Customer repository over the authoritative store.

    The e-mail check is a fast path; the uq_customers_email constraint
    remains the guard against concurrent duplicates.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def exists_by_email(self, email: str) -> bool:
        normalized = email.strip().lower()

        # Staged in this unit of work but not flushed yet
        for pending in self._session.new:
            if isinstance(pending, CustomerModel) and pending.email == normalized:
                return True

        try:
            with self._session.sync_session.no_autoflush:
                result = await self._session.execute(
                    select(exists().where(CustomerModel.email == normalized))
                )
        except SQLAlchemyError as e:
            raise PersistenceFailure(
                "E-mail uniqueness check failed", database="write", cause=e
            ) from e
        return bool(result.scalar())

    def add(self, customer: Customer) -> None:
        self._session.add(_to_model(customer))
        tracked_aggregates(self._session).append(customer)
        logger.debug(f"Staged customer {customer.id}")

    async def get_by_id(self, customer_id: str) -> Optional[Customer]:
        model = await self._session.get(CustomerModel, customer_id)
        return _to_aggregate(model) if model else None

    async def list_all(self) -> List[Customer]:
        result = await self._session.execute(
            select(CustomerModel).order_by(CustomerModel.created_at, CustomerModel.id)
        )
        return [_to_aggregate(m) for m in result.scalars().all()]
