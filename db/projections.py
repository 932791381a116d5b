"""
SHOP - Read Model Projections

Projections turn committed domain events into denormalized query models
and upsert them into the read store. They are keyed by aggregate id and
derived only from event data, so applying an event twice leaves the
same document.

Read model sync is best-effort: a failing sync is logged, counted and
queued for retry_failed(); it never reaches the command's outcome.
"""
import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Iterable, List, Optional

from core.errors import SyncFailure
from core.resilience import RetryConfig, RetryPolicy
from db.interfaces import IEventStoreRepository, IReadStore
from db.query_models import BaseQueryModel, CustomerQueryModel
from db.read_mappings import ReadModelRegistry
from domain.entities import Customer, CustomerCreatedEvent, DomainEvent
from domain.mediator import DomainEventNotification, INotificationHandler
from observability.metrics import record_read_sync
from observability.tracing import get_tracer


logger = logging.getLogger("shop.db.projections")
tracer = get_tracer("shop.db.projections")


def project_customer_created(event: CustomerCreatedEvent) -> CustomerQueryModel:
    return CustomerQueryModel(
        id=event.aggregate_id or "",
        first_name=event.first_name,
        last_name=event.last_name,
        full_name=f"{event.first_name} {event.last_name}".strip(),
        gender=event.gender,
        email=event.email,
        date_of_birth=event.date_of_birth,
        created_at=event.occurred_at,
    )


def project_customer(customer: Customer) -> CustomerQueryModel:
    """Query model straight from the authoritative aggregate."""
    return CustomerQueryModel(
        id=customer.id,
        first_name=customer.first_name,
        last_name=customer.last_name,
        full_name=customer.full_name,
        gender=customer.gender,
        email=str(customer.email),
        date_of_birth=customer.date_of_birth,
        created_at=customer.created_at,
    )


# Event type name -> projector
PROJECTORS: Dict[str, Callable[..., BaseQueryModel]] = {
    "CustomerCreatedEvent": project_customer_created,
}


@dataclass
class FailedSync:
    """A sync that failed and awaits retry."""
    event: DomainEvent
    error: SyncFailure
    attempts: int = 1


class ReadModelSynchronizer:
    """
    Applies domain events to the read store.

    Usage:
        synchronizer = ReadModelSynchronizer(read_store, registry)
        await synchronizer.sync(event)           # never raises
        await synchronizer.retry_failed()        # out-of-band
    """

    def __init__(
        self,
        read_store: IReadStore,
        registry: ReadModelRegistry,
        failure_queue_size: int = 1000,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.read_store = read_store
        self.registry = registry
        self.retry_policy = retry_policy or RetryPolicy(RetryConfig(max_attempts=3))
        self._failures: Deque[FailedSync] = deque(maxlen=failure_queue_size)

    @property
    def failed(self) -> List[FailedSync]:
        return list(self._failures)

    async def _apply(self, event: DomainEvent) -> bool:
        projector = PROJECTORS.get(event.event_type)
        if projector is None:
            logger.debug(f"No projector for {event.event_type}")
            return False

        model = projector(event)
        await self.read_store.upsert(
            self.registry.collection_for(type(model)),
            self.registry.document_id(model),
            self.registry.serialize(model),
        )
        return True

    def _record_failure(self, event: DomainEvent, error: Exception, attempts: int = 1) -> None:
        failure = SyncFailure(
            f"Read model sync failed for {event.event_type}: {error}",
            event_id=str(event.event_id),
            aggregate_id=event.aggregate_id,
            cause=error,
        )
        if self._failures.maxlen is not None and len(self._failures) == self._failures.maxlen:
            dropped = self._failures[0]
            logger.warning(f"Sync failure queue full, dropping event {dropped.event.event_id}")
        self._failures.append(FailedSync(event=event, error=failure, attempts=attempts))

    async def sync(self, event: DomainEvent) -> bool:
        """
        Project and upsert one event.

        Returns:
            True if a projection was written, False if the event has no
            projector or the sync failed (failure is queued)
        """
        with tracer.start_as_current_span("read_model.sync") as span:
            span.set_attribute("shop.event_type", event.event_type)
            span.set_attribute("shop.aggregate_id", event.aggregate_id or "")
            try:
                applied = await self._apply(event)
            except Exception as e:
                logger.error(
                    f"Read model sync failed for {event.event_type} {event.event_id}: {e}",
                    exc_info=True,
                )
                record_read_sync(event.event_type, "failed")
                self._record_failure(event, e)
                return False

        record_read_sync(event.event_type, "ok" if applied else "skipped")
        return applied

    async def retry_failed(self) -> int:
        """
        Re-apply queued failures with backoff.

        Returns:
            Number of events synced
        """
        pending = list(self._failures)
        self._failures.clear()
        synced = 0

        for failed in pending:
            try:
                await self.retry_policy.execute(self._apply, failed.event)
            except Exception as e:
                logger.warning(f"Retry of sync for event {failed.event.event_id} failed: {e}")
                record_read_sync(failed.event.event_type, "failed")
                self._record_failure(failed.event, e, failed.attempts + 1)
                continue
            record_read_sync(failed.event.event_type, "retried")
            synced += 1

        if pending:
            logger.info(f"Retried {len(pending)} failed syncs, {synced} succeeded")
        return synced

    async def rebuild_from_event_log(self, event_store: IEventStoreRepository) -> int:
        """Re-project every stored event in log order."""
        logger.info("Rebuilding read models from event log")
        count = 0
        async for stored in event_store.stream_events():
            if await self.sync(stored.to_domain_event()):
                count += 1
        logger.info(f"Read model rebuild complete: {count} events projected")
        return count

    async def rebuild_from_aggregates(self, customers: Iterable[Customer]) -> int:
        """Re-project customers read from the write store."""
        count = 0
        for customer in customers:
            model = project_customer(customer)
            await self.read_store.upsert(
                self.registry.collection_for(CustomerQueryModel),
                model.id,
                self.registry.serialize(model),
            )
            count += 1
        logger.info(f"Projected {count} customers from the write store")
        return count


class ReadModelSyncHandler(INotificationHandler[DomainEventNotification]):
    """Routes committed domain events to the synchronizer."""

    def __init__(self, synchronizer: ReadModelSynchronizer):
        self.synchronizer = synchronizer

    async def handle(self, notification: DomainEventNotification) -> None:
        await self.synchronizer.sync(notification.event)
