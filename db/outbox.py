"""
SHOP - Transactional Outbox

Outbox rows are written in the same write store transaction as the
aggregate they describe. The unit of work drains them into the event
log right after commit; anything left behind (event log unavailable,
process died between commit and append) is picked up by OutboxRelay.

Delivery to the event log is at-least-once; the event log's append is
idempotent on event_id, so each event is recorded exactly once.

Usage:
    relay = OutboxRelay(write_client.session_factory, event_store, mediator)
    report = await relay.process_pending()
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.errors import EventLogAppendError
from db.interfaces import (
    IDomainEventPublisher,
    IEventStoreRepository,
    IOutboxRepository,
    OutboxMessage,
)
from db.models import OutboxMessageModel, OutboxStatus
from domain.entities import DomainEvent
from observability.metrics import record_outbox_relay
from observability.tracing import get_tracer

logger = logging.getLogger("shop.db.outbox")
tracer = get_tracer("shop.db.outbox")


def _to_message(model: OutboxMessageModel) -> OutboxMessage:
    return OutboxMessage(
        id=model.id,
        transaction_tag=model.transaction_tag,
        aggregate_type=model.aggregate_type,
        aggregate_id=model.aggregate_id,
        event_type=model.event_type,
        payload=model.payload,
        status=model.status,
        retry_count=model.retry_count,
        error_message=model.error_message,
        created_at=model.created_at,
    )


class OutboxRepository(IOutboxRepository):
    """Outbox rows on a caller-owned session. Never commits."""

    def __init__(self, session: AsyncSession):
        self._session = session

    def add(self, message: OutboxMessage) -> None:
        self._session.add(OutboxMessageModel(
            id=message.id,
            transaction_tag=message.transaction_tag,
            aggregate_type=message.aggregate_type,
            aggregate_id=message.aggregate_id,
            event_type=message.event_type,
            payload=message.payload,
            status=message.status,
            retry_count=message.retry_count,
            error_message=message.error_message,
            created_at=message.created_at,
        ))

    async def get(self, message_id: str) -> Optional[OutboxMessage]:
        model = await self._session.get(OutboxMessageModel, message_id)
        return _to_message(model) if model else None

    async def get_pending(self, limit: int = 100, max_retries: int = 5) -> List[OutboxMessage]:
        result = await self._session.execute(
            select(OutboxMessageModel)
            .where(
                OutboxMessageModel.status == OutboxStatus.PENDING,
                OutboxMessageModel.retry_count < max_retries,
            )
            .order_by(OutboxMessageModel.created_at, OutboxMessageModel.id)
            .limit(limit)
        )
        return [_to_message(m) for m in result.scalars().all()]

    async def mark_completed(self, message_id: str) -> None:
        model = await self._session.get(OutboxMessageModel, message_id)
        if model is None:
            logger.warning(f"Outbox message {message_id} not found")
            return
        model.status = OutboxStatus.COMPLETED
        model.error_message = None
        model.processed_at = datetime.now(timezone.utc)

    async def mark_failed(self, message_id: str, error: str, max_retries: int = 5) -> None:
        model = await self._session.get(OutboxMessageModel, message_id)
        if model is None:
            logger.warning(f"Outbox message {message_id} not found")
            return
        model.retry_count = (model.retry_count or 0) + 1
        model.error_message = error
        if model.retry_count >= max_retries:
            model.status = OutboxStatus.FAILED
            logger.error(
                f"Outbox message {message_id} gave up after {model.retry_count} attempts: {error}"
            )
        else:
            model.status = OutboxStatus.PENDING

    async def requeue_failed(self, limit: Optional[int] = None) -> int:
        query = (
            select(OutboxMessageModel)
            .where(OutboxMessageModel.status == OutboxStatus.FAILED)
            .order_by(OutboxMessageModel.created_at, OutboxMessageModel.id)
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self._session.execute(query)
        models = result.scalars().all()
        for model in models:
            model.status = OutboxStatus.PENDING
            model.retry_count = 0
            model.error_message = None
        if models:
            logger.warning(f"Requeued {len(models)} failed outbox messages")
        return len(models)


@dataclass
class OutboxRelayReport:
    """Outcome of one relay pass."""
    requeued: int = 0
    processed: int = 0
    appended: int = 0
    failed: int = 0
    published_events: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "requeued": self.requeued,
            "processed": self.processed,
            "appended": self.appended,
            "failed": self.failed,
            "published": len(self.published_events),
        }


class OutboxRelay:
    """
    Out-of-band delivery of outbox rows to the event log.

    Each pass appends pending rows in creation order, marks them
    completed (or records the failed attempt), commits, then publishes
    the appended events so the read side catches up.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        event_store: IEventStoreRepository,
        publisher: Optional[IDomainEventPublisher] = None,
        batch_size: int = 100,
        max_retries: int = 5,
    ):
        self._session_factory = session_factory
        self._event_store = event_store
        self._publisher = publisher
        self.batch_size = batch_size
        self.max_retries = max_retries

    async def process_pending(
        self,
        limit: Optional[int] = None,
        include_failed: bool = False,
    ) -> OutboxRelayReport:
        """
        Run one relay pass.

        With include_failed, messages that already gave up are first put
        back in the queue with a fresh retry budget.
        """
        report = OutboxRelayReport()
        appended: List[OutboxMessage] = []

        with tracer.start_as_current_span("outbox.relay") as span:
            async with self._session_factory() as session:
                outbox = OutboxRepository(session)
                if include_failed:
                    report.requeued = await outbox.requeue_failed()
                messages = await outbox.get_pending(limit or self.batch_size, self.max_retries)
                report.processed = len(messages)

                for message in messages:
                    try:
                        await self._event_store.append(
                            message.aggregate_type,
                            message.aggregate_id,
                            message.payload,
                            transaction_tag=message.transaction_tag,
                        )
                    except EventLogAppendError as e:
                        logger.warning(f"Relay could not append outbox message {message.id}: {e}")
                        await outbox.mark_failed(message.id, str(e), self.max_retries)
                        report.failed += 1
                        continue

                    await outbox.mark_completed(message.id)
                    appended.append(message)
                    report.appended += 1

                await session.commit()

            span.set_attribute("shop.outbox.requeued", report.requeued)
            span.set_attribute("shop.outbox.processed", report.processed)
            span.set_attribute("shop.outbox.appended", report.appended)
            span.set_attribute("shop.outbox.failed", report.failed)

        if report.appended:
            record_outbox_relay("appended", report.appended)
        if report.failed:
            record_outbox_relay("failed", report.failed)

        for message in appended:
            await self._publish(message, report)

        if report.processed:
            logger.info(
                f"Outbox relay processed {report.processed} messages "
                f"({report.appended} appended, {report.failed} failed)"
            )
        return report

    async def _publish(self, message: OutboxMessage, report: OutboxRelayReport) -> None:
        if self._publisher is None:
            return
        try:
            event = DomainEvent.from_dict(message.payload)
            await self._publisher.publish_domain_event(event, message.transaction_tag)
        except Exception as e:
            logger.error(f"Relay could not publish event {message.id}: {e}", exc_info=True)
            return
        report.published_events.append(message.id)
