"""
SHOP - Unit of Work

Commit boundary for one command. save_changes() runs, strictly in order:

    1. Commit staged aggregates plus one outbox row per pending domain
       event in a single write store transaction.
    2. Append each event to the event log, tagged with the transaction
       tag, and mark its outbox row completed.
    3. Publish a DomainEventNotification per appended event so the read
       side synchronizes.

Only step 1 can fail the command. Step 2 failures leave the outbox row
pending for OutboxRelay; step 3 runs on a background task unless
read_sync_blocking is set.

Usage:
    async with write_client.session_factory() as session:
        repository = CustomerWriteOnlyRepository(session)
        unit_of_work = UnitOfWork(session, event_store, mediator,
                                  background_tasks=runner)
        repository.add(customer)
        await unit_of_work.save_changes()
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.async_utils import BackgroundTaskRunner
from core.errors import PersistenceFailure, UniqueConstraintViolation
from db.interfaces import (
    IDomainEventPublisher,
    IEventStoreRepository,
    IUnitOfWork,
    OutboxMessage,
)
from db.outbox import OutboxRepository
from db.repositories import tracked_aggregates
from domain.entities import DomainEvent
from observability.tracing import get_tracer

logger = logging.getLogger("shop.db.unit_of_work")
tracer = get_tracer("shop.db.unit_of_work")


class UnitOfWork(IUnitOfWork):
    """Write store transaction, event log append and read sync trigger."""

    def __init__(
        self,
        session: AsyncSession,
        event_store: IEventStoreRepository,
        publisher: Optional[IDomainEventPublisher] = None,
        *,
        background_tasks: Optional[BackgroundTaskRunner] = None,
        read_sync_blocking: bool = False,
        outbox_max_retries: int = 5,
    ):
        self._session = session
        self._event_store = event_store
        self._publisher = publisher
        self._background = background_tasks or BackgroundTaskRunner()
        self._read_sync_blocking = read_sync_blocking
        self._outbox = OutboxRepository(session)
        self._outbox_max_retries = outbox_max_retries
        self._scheduled: List[asyncio.Task] = []
        self.last_transaction_tag: Optional[str] = None

    @property
    def session(self) -> AsyncSession:
        return self._session

    def get_pending_events(self) -> List[DomainEvent]:
        events: List[DomainEvent] = []
        for aggregate in tracked_aggregates(self._session):
            events.extend(aggregate.domain_events)
        return events

    async def rollback(self) -> None:
        await self._session.rollback()
        tracked_aggregates(self._session).clear()

    async def save_changes(self) -> bool:
        events = self.get_pending_events()
        transaction_tag = str(uuid4())

        with tracer.start_as_current_span("unit_of_work.save_changes") as span:
            span.set_attribute("shop.transaction_tag", transaction_tag)
            span.set_attribute("shop.event_count", len(events))

            await self._commit(events, transaction_tag)
            self.last_transaction_tag = transaction_tag

            aggregates = tracked_aggregates(self._session)
            for aggregate in aggregates:
                aggregate.clear_domain_events()
                aggregate.increment_version()
            aggregates.clear()

            appended = await self._append_to_event_log(events, transaction_tag)
            span.set_attribute("shop.events_appended", len(appended))

        await self._dispatch_sync(appended, transaction_tag)
        return True

    async def _commit(self, events: List[DomainEvent], transaction_tag: str) -> None:
        for event in events:
            self._outbox.add(OutboxMessage.from_event(event, transaction_tag))

        try:
            await self._session.commit()
        except asyncio.CancelledError:
            logger.warning(f"Commit of transaction {transaction_tag} cancelled, rolling back")
            await self.rollback()
            raise
        except IntegrityError as e:
            await self.rollback()
            detail = str(e.orig) if e.orig is not None else str(e)
            if "unique" in detail.lower():
                raise UniqueConstraintViolation(
                    f"Unique constraint violated in transaction {transaction_tag}",
                    database="write",
                    cause=e,
                ) from e
            raise PersistenceFailure(
                f"Integrity error in transaction {transaction_tag}",
                database="write",
                cause=e,
            ) from e
        except SQLAlchemyError as e:
            await self.rollback()
            raise PersistenceFailure(
                f"Write store commit failed for transaction {transaction_tag}",
                database="write",
                cause=e,
            ) from e

        logger.debug(f"Committed transaction {transaction_tag} with {len(events)} events")

    async def _append_to_event_log(
        self,
        events: List[DomainEvent],
        transaction_tag: str,
    ) -> List[DomainEvent]:
        """Append committed events; failures stay in the outbox for the relay."""
        appended: List[DomainEvent] = []
        if not events:
            return appended

        for event in events:
            event_id = str(event.event_id)
            try:
                await self._event_store.append(
                    event.aggregate_type,
                    event.aggregate_id or "",
                    event.to_dict(),
                    transaction_tag=transaction_tag,
                )
            except Exception as e:
                logger.error(
                    f"Event log append failed for {event.event_type} {event_id} "
                    f"(transaction {transaction_tag}); left in outbox: {e}"
                )
                await self._outbox.mark_failed(event_id, str(e), self._outbox_max_retries)
                continue
            await self._outbox.mark_completed(event_id)
            appended.append(event)

        try:
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            logger.warning(f"Could not record outbox status for transaction {transaction_tag}: {e}")

        return appended

    async def _dispatch_sync(self, events: List[DomainEvent], transaction_tag: str) -> None:
        if self._publisher is None or not events:
            return

        if self._read_sync_blocking:
            for event in events:
                await self._publish(event, transaction_tag)
            return

        for event in events:
            self._scheduled.append(self._background.spawn(
                self._publish(event, transaction_tag),
                name=f"read-sync-{event.event_id}",
            ))

    async def _publish(self, event: DomainEvent, transaction_tag: str) -> None:
        try:
            await self._publisher.publish_domain_event(event, transaction_tag)  # type: ignore[union-attr]
        except Exception as e:
            logger.error(
                f"Read sync dispatch failed for {event.event_type} {event.event_id}: {e}",
                exc_info=True,
            )

    async def wait_for_background_sync(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for read syncs scheduled by this unit of work.

        Returns:
            True if all of them finished before the timeout
        """
        scheduled = [task for task in self._scheduled if not task.done()]
        if scheduled:
            _, pending = await asyncio.wait(scheduled, timeout=timeout)
            if pending:
                return False
        self._scheduled = [task for task in self._scheduled if not task.done()]
        return True
