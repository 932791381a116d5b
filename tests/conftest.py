"""
SHOP - Test Configuration

Pytest fixtures and configuration for all tests.

Write store and event log tests run against SQLite files (aiosqlite)
in a per-test temporary directory; the read store is in memory.
"""
import pytest
from datetime import date
from pathlib import Path
from typing import Any, Dict


def sqlite_url(path: Path) -> str:
    return f"sqlite+aiosqlite:///{path}"


_DEFAULT = object()


@pytest.fixture
def valid_customer() -> Dict[str, Any]:
    """Fields of a valid CreateCustomerCommand."""
    from domain.entities import Gender

    return {
        "first_name": "Ana",
        "last_name": "Silva",
        "gender": Gender.FEMALE,
        "email": "ana@x.com",
        "date_of_birth": date(1990, 1, 1),
    }


@pytest.fixture
async def write_db(tmp_path):
    """Write store with customers and outbox tables."""
    from db.models import Base
    from db.postgres import PostgresClient

    client = PostgresClient(sqlite_url(tmp_path / "write.db"), metadata=Base.metadata)
    await client.create_tables()
    yield client
    await client.close()


@pytest.fixture
async def event_log_db(tmp_path):
    """Event log database, separate from the write store."""
    from db.models import EventLogBase
    from db.postgres import PostgresClient

    client = PostgresClient(sqlite_url(tmp_path / "events.db"), metadata=EventLogBase.metadata)
    await client.create_tables()
    yield client
    await client.close()


@pytest.fixture
def event_store(event_log_db):
    from db.event_store import EventStoreRepository

    return EventStoreRepository(event_log_db.session_factory)


@pytest.fixture
def read_registry():
    """A fresh, configured and frozen read mapping registry."""
    from db.read_mappings import ReadModelRegistry, configure_read_mappings

    return configure_read_mappings(ReadModelRegistry())


@pytest.fixture
def read_store():
    from db.read_store import InMemoryReadStore

    return InMemoryReadStore()


@pytest.fixture
def synchronizer(read_store, read_registry):
    from core.resilience import RetryConfig, RetryPolicy
    from db.projections import ReadModelSynchronizer

    return ReadModelSynchronizer(
        read_store,
        read_registry,
        failure_queue_size=10,
        retry_policy=RetryPolicy(RetryConfig(max_attempts=2, base_delay=0.0, jitter=False)),
    )


@pytest.fixture
def mediator(synchronizer):
    """Mediator routing committed events to the read model synchronizer."""
    from db.projections import ReadModelSyncHandler
    from domain.mediator import DomainEventNotification, MediatorBuilder

    return (MediatorBuilder()
        .with_logging()
        .register_notification_handler(DomainEventNotification, ReadModelSyncHandler(synchronizer))
        .build())


@pytest.fixture
def handle_create(write_db, event_store, mediator):
    """
    Run one CreateCustomerCommand through a fresh session, repository
    and unit of work, waiting for read sync before returning.
    """
    from db.command_handlers import CreateCustomerCommandHandler
    from db.commands import CreateCustomerCommandValidator
    from db.repositories import CustomerWriteOnlyRepository
    from db.unit_of_work import UnitOfWork

    async def _handle(command, *, publisher=_DEFAULT, store=None, read_sync_blocking=False):
        async with write_db.session_factory() as session:
            unit_of_work = UnitOfWork(
                session,
                store or event_store,
                mediator if publisher is _DEFAULT else publisher,
                read_sync_blocking=read_sync_blocking,
            )
            handler = CreateCustomerCommandHandler(
                CreateCustomerCommandValidator(),
                CustomerWriteOnlyRepository(session),
                unit_of_work,
            )
            result = await handler.handle(command)
            assert await unit_of_work.wait_for_background_sync(timeout=5)
            return result

    return _handle


@pytest.fixture
def count_rows(write_db):
    """Count rows of a write store model."""
    from sqlalchemy import func, select

    async def _count(model) -> int:
        async with write_db.session_factory() as session:
            result = await session.execute(select(func.count()).select_from(model))
            return result.scalar_one()

    return _count


@pytest.fixture
def sqlite_config(tmp_path):
    """Application config on SQLite files and the in-memory read store."""
    from config import Config, DatabaseConfig, PipelineConfig, ReadStoreConfig

    return Config(
        database=DatabaseConfig(
            write_database_url=sqlite_url(tmp_path / "app_write.db"),
            event_log_database_url=sqlite_url(tmp_path / "app_events.db"),
        ),
        read_store=ReadStoreConfig(backend="memory"),
        pipeline=PipelineConfig(read_sync_blocking=False, retry_base_delay=0.0),
    )
