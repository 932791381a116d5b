"""
SHOP - Application Bootstrap

Wires the command pipeline together and owns its lifecycle.

Startup order:
    read mappings (registered once, then frozen) -> write store ->
    event log -> read store -> mediator

Each CreateCustomerCommand gets its own session, repository and unit
of work through a scoped handler; shared components (event log, read
model synchronizer, background task runner) live for the application.

Usage:
    from core.bootstrap import bootstrap

    async with bootstrap(create_tables=True) as app:
        result = await app.mediator.send(CreateCustomerCommand(...))
"""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator, Optional

from config import Config, ReadStoreConfig, get_config
from core.async_utils import BackgroundTaskConfig, BackgroundTaskRunner
from core.errors import ShopConfigError
from core.resilience import RetryConfig, RetryPolicy
from db.command_handlers import CreateCustomerCommandHandler
from db.commands import CreateCustomerCommand, CreateCustomerCommandValidator
from db.event_store import EventStoreRepository
from db.interfaces import IReadStore
from db.models import Base, EventLogBase
from db.outbox import OutboxRelay
from db.postgres import PostgresClient
from db.projections import ReadModelSynchronizer, ReadModelSyncHandler
from db.queries import (
    CustomerReadOnlyRepository,
    GetCustomerByIdQuery,
    GetCustomerByIdQueryHandler,
    ListCustomersQuery,
    ListCustomersQueryHandler,
)
from db.read_mappings import (
    ReadModelRegistry,
    configure_read_mappings,
    get_read_model_registry,
)
from db.read_store import InMemoryReadStore, RedisReadStore
from db.repositories import CustomerWriteOnlyRepository
from db.unit_of_work import UnitOfWork
from domain.mediator import DomainEventNotification, Mediator, MediatorBuilder

logger = logging.getLogger("shop.bootstrap")


class ApplicationPhase(Enum):
    """
    Application lifecycle phases.

    CREATED → INITIALIZING → RUNNING → SHUTTING_DOWN → TERMINATED
    """
    CREATED = "created"
    INITIALIZING = "initializing"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"
    FAILED = "failed"


def build_read_store(config: ReadStoreConfig) -> IReadStore:
    """Read store for the configured backend (redis or memory)."""
    backend = config.backend.lower()
    if backend == "memory":
        return InMemoryReadStore()
    if backend == "redis":
        return RedisReadStore(config.redis_url, key_prefix=config.key_prefix)
    raise ShopConfigError(f"Unknown read store backend: {config.backend!r}", config_key="SHOP_READ_STORE")


class Application:
    """The running command pipeline."""

    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        read_store: Optional[IReadStore] = None,
        registry: Optional[ReadModelRegistry] = None,
    ):
        self.config = config or get_config()
        self.phase = ApplicationPhase.CREATED

        database = self.config.database
        self.write_db = PostgresClient(
            database.write_database_url,
            pool_size=database.pool_size,
            max_overflow=database.max_overflow,
            echo=database.echo,
            metadata=Base.metadata,
        )
        self.event_log_db = PostgresClient(
            database.resolved_event_log_url,
            pool_size=database.pool_size,
            max_overflow=database.max_overflow,
            echo=database.echo,
            metadata=EventLogBase.metadata,
        )
        self.read_store = read_store or build_read_store(self.config.read_store)
        self.registry = registry or get_read_model_registry()
        self.background_tasks = BackgroundTaskRunner(BackgroundTaskConfig())

        self._event_store: Optional[EventStoreRepository] = None
        self._synchronizer: Optional[ReadModelSynchronizer] = None
        self._mediator: Optional[Mediator] = None
        self._outbox_relay: Optional[OutboxRelay] = None

    def _require(self, component):
        if component is None:
            raise RuntimeError("Application not started. Call startup() first.")
        return component

    @property
    def event_store(self) -> EventStoreRepository:
        return self._require(self._event_store)

    @property
    def synchronizer(self) -> ReadModelSynchronizer:
        return self._require(self._synchronizer)

    @property
    def mediator(self) -> Mediator:
        return self._require(self._mediator)

    @property
    def outbox_relay(self) -> OutboxRelay:
        return self._require(self._outbox_relay)

    async def startup(self, create_tables: bool = False) -> None:
        if self.phase is ApplicationPhase.RUNNING:
            return
        self.phase = ApplicationPhase.INITIALIZING
        start = time.perf_counter()

        try:
            configure_read_mappings(self.registry)

            await self.write_db.initialize()
            await self.event_log_db.initialize()
            if create_tables:
                await self.write_db.create_tables()
                await self.event_log_db.create_tables()
            await self.read_store.initialize()
        except Exception:
            self.phase = ApplicationPhase.FAILED
            logger.error("Application startup failed", exc_info=True)
            raise

        pipeline = self.config.pipeline
        self._event_store = EventStoreRepository(self.event_log_db.session_factory)
        self._synchronizer = ReadModelSynchronizer(
            self.read_store,
            self.registry,
            failure_queue_size=pipeline.sync_failure_queue_size,
            retry_policy=RetryPolicy(RetryConfig(
                max_attempts=pipeline.retry_max_attempts,
                base_delay=pipeline.retry_base_delay,
                max_delay=pipeline.retry_max_delay,
            )),
        )
        read_repository = CustomerReadOnlyRepository(self.read_store, self.registry)

        self._mediator = (MediatorBuilder()
            .with_logging()
            .register_scoped_handler(CreateCustomerCommand, self._create_customer_scope)
            .register_handler(GetCustomerByIdQuery, GetCustomerByIdQueryHandler(read_repository))
            .register_handler(ListCustomersQuery, ListCustomersQueryHandler(read_repository))
            .register_notification_handler(
                DomainEventNotification, ReadModelSyncHandler(self._synchronizer)
            )
            .build())

        self._outbox_relay = OutboxRelay(
            self.write_db.session_factory,
            self._event_store,
            self._mediator,
            batch_size=pipeline.outbox_batch_size,
            max_retries=pipeline.outbox_max_retries,
        )

        self.phase = ApplicationPhase.RUNNING
        logger.info(
            f"Application started in {(time.perf_counter() - start) * 1000:.1f}ms "
            f"(environment={self.config.environment.value}, "
            f"read_sync_blocking={pipeline.read_sync_blocking})"
        )

    @asynccontextmanager
    async def _create_customer_scope(self) -> AsyncIterator[CreateCustomerCommandHandler]:
        pipeline = self.config.pipeline
        async with self.write_db.session_factory() as session:
            unit_of_work = UnitOfWork(
                session,
                self.event_store,
                self.mediator,
                background_tasks=self.background_tasks,
                read_sync_blocking=pipeline.read_sync_blocking,
                outbox_max_retries=pipeline.outbox_max_retries,
            )
            yield CreateCustomerCommandHandler(
                CreateCustomerCommandValidator(),
                CustomerWriteOnlyRepository(session),
                unit_of_work,
            )

    async def shutdown(self) -> None:
        if self.phase in (ApplicationPhase.TERMINATED, ApplicationPhase.CREATED):
            return
        self.phase = ApplicationPhase.SHUTTING_DOWN
        logger.info("Shutting down application...")

        if not await self.background_tasks.drain():
            await self.background_tasks.cancel_all()
        await self.read_store.close()
        await self.event_log_db.close()
        await self.write_db.close()

        self.phase = ApplicationPhase.TERMINATED
        logger.info("Application shutdown complete")


@asynccontextmanager
async def bootstrap(
    config: Optional[Config] = None,
    *,
    create_tables: bool = False,
    read_store: Optional[IReadStore] = None,
    registry: Optional[ReadModelRegistry] = None,
) -> AsyncIterator[Application]:
    """Start an application and shut it down on exit."""
    app = Application(config, read_store=read_store, registry=registry)
    await app.startup(create_tables=create_tables)
    try:
        yield app
    finally:
        await app.shutdown()
