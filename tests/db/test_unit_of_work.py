"""
Tests for db/unit_of_work.py - UnitOfWork.

Covers:
- Commit, event log append and sync ordering
- Outbox rows written with the aggregate and completed after append
- Rollback on constraint violations and other commit failures
- Cancellation during commit
- Event log failures left for the outbox relay
- Blocking and background read sync
"""
import asyncio
import pytest
from datetime import date
from unittest.mock import AsyncMock, Mock, patch


def _new_customer(email: str = "ana@x.com"):
    from domain.entities import Gender
    from domain.factories import CustomerFactory

    return CustomerFactory.create("Ana", "Silva", Gender.FEMALE, email, date(1990, 1, 1))


def _publisher():
    publisher = Mock()
    publisher.publish_domain_event = AsyncMock()
    return publisher


# =============================================================================
# Successful Commit
# =============================================================================

class TestUnitOfWorkCommit:
    """Tests for the happy path of save_changes()."""

    @pytest.mark.asyncio
    async def test_commit_appends_events_with_transaction_tag(self, write_db, event_store):
        """Every pending event lands in the event log tagged with the transaction."""
        from db.repositories import CustomerWriteOnlyRepository
        from db.unit_of_work import UnitOfWork

        customer = _new_customer()
        async with write_db.session_factory() as session:
            unit_of_work = UnitOfWork(session, event_store, _publisher(), read_sync_blocking=True)
            CustomerWriteOnlyRepository(session).add(customer)

            assert len(unit_of_work.get_pending_events()) == 1
            assert await unit_of_work.save_changes() is True
            tag = unit_of_work.last_transaction_tag

        events = await event_store.get_events_by_transaction(tag)
        assert len(events) == 1
        assert events[0].aggregate_id == customer.id
        assert events[0].aggregate_type == "Customer"
        assert events[0].to_domain_event().email == "ana@x.com"

    @pytest.mark.asyncio
    async def test_pending_events_cleared_after_commit(self, write_db, event_store):
        """Aggregates are drained and versioned once committed."""
        from db.repositories import CustomerWriteOnlyRepository
        from db.unit_of_work import UnitOfWork

        customer = _new_customer()
        async with write_db.session_factory() as session:
            unit_of_work = UnitOfWork(session, event_store, None)
            CustomerWriteOnlyRepository(session).add(customer)
            await unit_of_work.save_changes()

            assert unit_of_work.get_pending_events() == []
        assert not customer.has_pending_events
        assert customer.version == 1

    @pytest.mark.asyncio
    async def test_outbox_row_completed(self, write_db, event_store):
        """The outbox row is committed with the aggregate and completed after append."""
        from db.models import OutboxMessageModel, OutboxStatus
        from db.repositories import CustomerWriteOnlyRepository
        from db.unit_of_work import UnitOfWork

        customer = _new_customer()
        event_id = str(customer.domain_events[0].event_id)
        async with write_db.session_factory() as session:
            unit_of_work = UnitOfWork(session, event_store, None)
            CustomerWriteOnlyRepository(session).add(customer)
            await unit_of_work.save_changes()

        async with write_db.session_factory() as session:
            row = await session.get(OutboxMessageModel, event_id)

        assert row.status is OutboxStatus.COMPLETED
        assert row.retry_count == 0
        assert row.processed_at is not None

    @pytest.mark.asyncio
    async def test_sync_published_after_append(self, write_db, event_store):
        """The notification is published only once the event is in the log."""
        from db.repositories import CustomerWriteOnlyRepository
        from db.unit_of_work import UnitOfWork

        seen_positions = []

        async def publish(event, transaction_tag):
            stored = await event_store.get_events_by_aggregate("Customer", event.aggregate_id)
            seen_positions.append(len(stored))

        publisher = Mock()
        publisher.publish_domain_event = AsyncMock(side_effect=publish)

        async with write_db.session_factory() as session:
            unit_of_work = UnitOfWork(session, event_store, publisher, read_sync_blocking=True)
            CustomerWriteOnlyRepository(session).add(_new_customer())
            await unit_of_work.save_changes()

        assert seen_positions == [1]

    @pytest.mark.asyncio
    async def test_background_sync_runs_after_return(self, write_db, event_store):
        """By default sync is scheduled, not awaited, and can be drained."""
        from core.async_utils import BackgroundTaskRunner
        from db.repositories import CustomerWriteOnlyRepository
        from db.unit_of_work import UnitOfWork

        gate = asyncio.Event()

        async def publish(event, transaction_tag):
            await gate.wait()

        publisher = Mock()
        publisher.publish_domain_event = AsyncMock(side_effect=publish)
        runner = BackgroundTaskRunner()

        async with write_db.session_factory() as session:
            unit_of_work = UnitOfWork(session, event_store, publisher, background_tasks=runner)
            CustomerWriteOnlyRepository(session).add(_new_customer())
            assert await unit_of_work.save_changes() is True

            assert runner.pending == 1
            assert await unit_of_work.wait_for_background_sync(timeout=0.05) is False

            gate.set()
            assert await unit_of_work.wait_for_background_sync(timeout=5) is True

        publisher.publish_domain_event.assert_awaited_once()
        assert runner.failures == []


# =============================================================================
# Commit Failures
# =============================================================================

class TestUnitOfWorkCommitFailure:
    """Tests for failures in the write store transaction."""

    @pytest.mark.asyncio
    async def test_unique_violation_rolls_back(self, write_db, event_store, read_store, count_rows):
        """A duplicate e-mail at commit raises and leaves every store untouched."""
        from core.errors import UniqueConstraintViolation
        from db.models import CustomerModel, OutboxMessageModel
        from db.repositories import CustomerWriteOnlyRepository
        from db.unit_of_work import UnitOfWork

        publisher = _publisher()
        async with write_db.session_factory() as session:
            unit_of_work = UnitOfWork(session, event_store, publisher, read_sync_blocking=True)
            repository = CustomerWriteOnlyRepository(session)
            # Bypass the existence check to reach the constraint
            repository.add(_new_customer())
            repository.add(_new_customer())

            with pytest.raises(UniqueConstraintViolation):
                await unit_of_work.save_changes()
            assert unit_of_work.get_pending_events() == []

        assert await count_rows(CustomerModel) == 0
        assert await count_rows(OutboxMessageModel) == 0
        assert [e async for e in event_store.stream_events()] == []
        assert await read_store.find_all("customers") == []
        publisher.publish_domain_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_constraint_against_committed_row(self, write_db, event_store, count_rows):
        """A concurrent writer that committed first wins at the constraint."""
        from core.errors import UniqueConstraintViolation
        from db.models import CustomerModel
        from db.repositories import CustomerWriteOnlyRepository
        from db.unit_of_work import UnitOfWork

        async with write_db.session_factory() as first, write_db.session_factory() as second:
            first_uow = UnitOfWork(first, event_store, None)
            second_uow = UnitOfWork(second, event_store, None)
            first_repo = CustomerWriteOnlyRepository(first)
            second_repo = CustomerWriteOnlyRepository(second)

            assert not await first_repo.exists_by_email("ana@x.com")
            assert not await second_repo.exists_by_email("ana@x.com")
            first_repo.add(_new_customer())
            second_repo.add(_new_customer())

            await first_uow.save_changes()
            with pytest.raises(UniqueConstraintViolation):
                await second_uow.save_changes()

        assert await count_rows(CustomerModel) == 1
        assert len([e async for e in event_store.stream_events()]) == 1

    @pytest.mark.asyncio
    async def test_store_error_raises_persistence_failure(self, write_db, event_store):
        """Other SQLAlchemy errors become PersistenceFailure after rollback."""
        from sqlalchemy.exc import OperationalError
        from core.errors import PersistenceFailure, UniqueConstraintViolation
        from db.repositories import CustomerWriteOnlyRepository
        from db.unit_of_work import UnitOfWork

        store = Mock()
        store.append = AsyncMock()
        async with write_db.session_factory() as session:
            unit_of_work = UnitOfWork(session, store, None)
            CustomerWriteOnlyRepository(session).add(_new_customer())

            failing_commit = AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception("disk I/O error")))
            with patch.object(session, "commit", failing_commit):
                with pytest.raises(PersistenceFailure) as exc_info:
                    await unit_of_work.save_changes()

        assert not isinstance(exc_info.value, UniqueConstraintViolation)
        store.append.assert_not_awaited()


# =============================================================================
# Cancellation
# =============================================================================

class TestUnitOfWorkCancellation:
    """Tests for caller cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_during_commit_rolls_back(self, write_db, event_store, count_rows):
        """Cancelling while the commit is in flight leaves no write and no event."""
        from db.models import CustomerModel, OutboxMessageModel
        from db.repositories import CustomerWriteOnlyRepository
        from db.unit_of_work import UnitOfWork

        publisher = _publisher()
        started = asyncio.Event()

        async def stalled_commit():
            started.set()
            await asyncio.sleep(30)

        async with write_db.session_factory() as session:
            unit_of_work = UnitOfWork(session, event_store, publisher, read_sync_blocking=True)
            CustomerWriteOnlyRepository(session).add(_new_customer())

            with patch.object(session, "commit", side_effect=stalled_commit):
                task = asyncio.create_task(unit_of_work.save_changes())
                await started.wait()
                task.cancel()
                with pytest.raises(asyncio.CancelledError):
                    await task

            assert unit_of_work.get_pending_events() == []

        assert await count_rows(CustomerModel) == 0
        assert await count_rows(OutboxMessageModel) == 0
        assert [e async for e in event_store.stream_events()] == []
        publisher.publish_domain_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_before_commit_leaves_nothing(
        self, write_db, event_store, valid_customer, count_rows
    ):
        """Cancelling the handler during its existence check writes nothing."""
        from db.command_handlers import CreateCustomerCommandHandler
        from db.commands import CreateCustomerCommand, CreateCustomerCommandValidator
        from db.models import CustomerModel
        from db.repositories import CustomerWriteOnlyRepository
        from db.unit_of_work import UnitOfWork

        checking = asyncio.Event()

        async def slow_exists(email):
            checking.set()
            await asyncio.sleep(30)
            return False

        async with write_db.session_factory() as session:
            repository = CustomerWriteOnlyRepository(session)
            repository.exists_by_email = slow_exists
            handler = CreateCustomerCommandHandler(
                CreateCustomerCommandValidator(),
                repository,
                UnitOfWork(session, event_store, None),
            )

            task = asyncio.create_task(handler.handle(CreateCustomerCommand(**valid_customer)))
            await checking.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert await count_rows(CustomerModel) == 0
        assert [e async for e in event_store.stream_events()] == []


# =============================================================================
# Event Log Failures
# =============================================================================

class TestUnitOfWorkEventLogFailure:
    """Tests for failures after the write store committed."""

    @pytest.mark.asyncio
    async def test_append_failure_keeps_commit(self, write_db, count_rows):
        """The commit stands; the outbox row stays pending with one attempt."""
        from core.errors import EventLogAppendError
        from db.models import CustomerModel, OutboxMessageModel, OutboxStatus
        from db.repositories import CustomerWriteOnlyRepository
        from db.unit_of_work import UnitOfWork

        store = Mock()
        store.append = AsyncMock(side_effect=EventLogAppendError("event log down"))
        publisher = _publisher()

        customer = _new_customer()
        event_id = str(customer.domain_events[0].event_id)
        async with write_db.session_factory() as session:
            unit_of_work = UnitOfWork(session, store, publisher, read_sync_blocking=True)
            CustomerWriteOnlyRepository(session).add(customer)
            assert await unit_of_work.save_changes() is True

        async with write_db.session_factory() as session:
            row = await session.get(OutboxMessageModel, event_id)

        assert await count_rows(CustomerModel) == 1
        assert row.status is OutboxStatus.PENDING
        assert row.retry_count == 1
        assert "event log down" in row.error_message
        publisher.publish_domain_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_relay_delivers_after_append_failure(self, write_db, event_store):
        """The outbox relay appends and publishes what the unit of work could not."""
        from core.errors import EventLogAppendError
        from db.models import OutboxMessageModel, OutboxStatus
        from db.outbox import OutboxRelay
        from db.repositories import CustomerWriteOnlyRepository
        from db.unit_of_work import UnitOfWork

        failing_store = Mock()
        failing_store.append = AsyncMock(side_effect=EventLogAppendError("event log down"))

        customer = _new_customer()
        event_id = str(customer.domain_events[0].event_id)
        async with write_db.session_factory() as session:
            unit_of_work = UnitOfWork(session, failing_store, None)
            CustomerWriteOnlyRepository(session).add(customer)
            await unit_of_work.save_changes()
            tag = unit_of_work.last_transaction_tag

        publisher = _publisher()
        relay = OutboxRelay(write_db.session_factory, event_store, publisher)
        report = await relay.process_pending()

        assert report.appended == 1
        assert report.failed == 0
        stored = await event_store.get_events_by_aggregate("Customer", customer.id)
        assert [str(e.event_id) for e in stored] == [event_id]
        assert stored[0].transaction_tag == tag
        publisher.publish_domain_event.assert_awaited_once()

        async with write_db.session_factory() as session:
            row = await session.get(OutboxMessageModel, event_id)
        assert row.status is OutboxStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_given_up_row_redriven_once_event_log_recovers(self, write_db, event_store):
        """A row that exhausted its retries reaches the log after an operator requeue."""
        from core.errors import EventLogAppendError
        from db.models import OutboxMessageModel, OutboxStatus
        from db.outbox import OutboxRelay
        from db.repositories import CustomerWriteOnlyRepository
        from db.unit_of_work import UnitOfWork

        failing_store = Mock()
        failing_store.append = AsyncMock(side_effect=EventLogAppendError("event log down"))

        customer = _new_customer()
        event_id = str(customer.domain_events[0].event_id)
        async with write_db.session_factory() as session:
            unit_of_work = UnitOfWork(session, failing_store, None, outbox_max_retries=2)
            CustomerWriteOnlyRepository(session).add(customer)
            await unit_of_work.save_changes()

        await OutboxRelay(write_db.session_factory, failing_store, max_retries=2).process_pending()
        async with write_db.session_factory() as session:
            assert (await session.get(OutboxMessageModel, event_id)).status is OutboxStatus.FAILED

        relay = OutboxRelay(write_db.session_factory, event_store, _publisher(), max_retries=2)
        assert (await relay.process_pending()).processed == 0
        report = await relay.process_pending(include_failed=True)

        assert (report.requeued, report.appended, report.failed) == (1, 1, 0)
        stored = await event_store.get_events_by_aggregate("Customer", customer.id)
        assert [str(e.event_id) for e in stored] == [event_id]
        async with write_db.session_factory() as session:
            assert (await session.get(OutboxMessageModel, event_id)).status is OutboxStatus.COMPLETED
