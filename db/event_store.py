"""
SHOP - Event Store Implementation

Append-only ledger of domain events keyed by aggregate. Each append
runs in its own short transaction against the event log database,
independent of the write store's transaction.

Features:
    - Global ordering by position
    - Idempotent appends keyed on event_id (safe for outbox redelivery)
    - Transaction tag linking events to the write store commit
    - Cursor-based streaming for projection rebuilds

Usage:
    event_store = EventStoreRepository(event_log_client.session_factory)
    position = await event_store.append(
        "Customer", customer.id, event.to_dict(), transaction_tag=tag
    )
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.errors import EventLogAppendError
from db.interfaces import IEventStoreRepository, StoredEvent
from db.models import StoredEventModel
from observability.metrics import record_event_log_append

logger = logging.getLogger("shop.db.event_store")


def _to_stored_event(model: StoredEventModel) -> StoredEvent:
    return StoredEvent(
        position=model.position,
        event_id=model.event_id,
        aggregate_type=model.aggregate_type,
        aggregate_id=model.aggregate_id,
        event_type=model.event_type,
        payload=model.payload,
        transaction_tag=model.transaction_tag,
        occurred_at=model.occurred_at,
        stored_at=model.stored_at,
    )


class EventStoreRepository(IEventStoreRepository):
    """SQLAlchemy event log."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _find_position(self, session: AsyncSession, event_id: str) -> Optional[int]:
        result = await session.execute(
            select(StoredEventModel.position).where(StoredEventModel.event_id == event_id)
        )
        return result.scalar_one_or_none()

    async def append(
        self,
        aggregate_type: str,
        aggregate_id: str,
        event_payload: Dict[str, Any],
        transaction_tag: Optional[str] = None,
    ) -> int:
        event_id = str(event_payload["event_id"])
        event_type = str(event_payload.get("event_type", ""))

        try:
            async with self._session_factory() as session:
                existing = await self._find_position(session, event_id)
                if existing is not None:
                    logger.debug(f"Event {event_id} already appended at {existing}")
                    record_event_log_append(event_type, "duplicate")
                    return existing

                model = StoredEventModel(
                    event_id=event_id,
                    aggregate_type=aggregate_type,
                    aggregate_id=aggregate_id,
                    event_type=event_type,
                    payload=event_payload,
                    transaction_tag=transaction_tag,
                    occurred_at=datetime.fromisoformat(event_payload["occurred_at"]),
                )
                session.add(model)
                try:
                    await session.commit()
                except IntegrityError:
                    # Lost a race with a concurrent append of the same event
                    await session.rollback()
                    existing = await self._find_position(session, event_id)
                    if existing is None:
                        raise
                    record_event_log_append(event_type, "duplicate")
                    return existing

                record_event_log_append(event_type, "appended")
                logger.debug(
                    f"Appended {event_type} {event_id} for {aggregate_type}/{aggregate_id} "
                    f"at position {model.position}"
                )
                return model.position
        except SQLAlchemyError as e:
            record_event_log_append(event_type, "failed")
            raise EventLogAppendError(
                f"Failed to append {event_type} {event_id}",
                event_id=event_id,
                cause=e,
            ) from e

    async def get_events_by_aggregate(
        self,
        aggregate_type: str,
        aggregate_id: str,
    ) -> List[StoredEvent]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StoredEventModel)
                .where(
                    StoredEventModel.aggregate_type == aggregate_type,
                    StoredEventModel.aggregate_id == aggregate_id,
                )
                .order_by(StoredEventModel.position)
            )
            return [_to_stored_event(m) for m in result.scalars().all()]

    async def get_events_by_transaction(self, transaction_tag: str) -> List[StoredEvent]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StoredEventModel)
                .where(StoredEventModel.transaction_tag == transaction_tag)
                .order_by(StoredEventModel.position)
            )
            return [_to_stored_event(m) for m in result.scalars().all()]

    async def stream_events(
        self,
        from_position: int = 0,
        batch_size: int = 500,
    ) -> AsyncIterator[StoredEvent]:
        position = from_position
        while True:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(StoredEventModel)
                    .where(StoredEventModel.position > position)
                    .order_by(StoredEventModel.position)
                    .limit(batch_size)
                )
                batch = [_to_stored_event(m) for m in result.scalars().all()]

            if not batch:
                return

            for event in batch:
                yield event
            position = batch[-1].position
