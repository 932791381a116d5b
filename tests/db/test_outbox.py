"""
Tests for db/outbox.py - OutboxRepository and OutboxRelay.
"""
import pytest
from datetime import date
from unittest.mock import AsyncMock, Mock


async def _stage_customer(write_db, email: str = "ana@x.com", tag: str = "tx-1"):
    """Commit a customer's outbox row without draining it."""
    from db.interfaces import OutboxMessage
    from db.outbox import OutboxRepository
    from domain.entities import Gender
    from domain.factories import CustomerFactory

    customer = CustomerFactory.create("Ana", "Silva", Gender.FEMALE, email, date(1990, 1, 1))
    event = customer.domain_events[0]
    async with write_db.session_factory() as session:
        OutboxRepository(session).add(OutboxMessage.from_event(event, tag))
        await session.commit()
    return event


def _failing_store():
    from core.errors import EventLogAppendError

    store = Mock()
    store.append = AsyncMock(side_effect=EventLogAppendError("event log down"))
    return store


class TestOutboxRepository:
    """Tests for row state transitions."""

    @pytest.mark.asyncio
    async def test_pending_rows_listed_in_order(self, write_db):
        from db.outbox import OutboxRepository

        first = await _stage_customer(write_db, "a@x.com")
        second = await _stage_customer(write_db, "b@x.com")

        async with write_db.session_factory() as session:
            pending = await OutboxRepository(session).get_pending()

        assert [m.id for m in pending] == [str(first.event_id), str(second.event_id)]

    @pytest.mark.asyncio
    async def test_mark_failed_gives_up_after_max_retries(self, write_db):
        from db.models import OutboxStatus
        from db.outbox import OutboxRepository

        event = await _stage_customer(write_db)
        message_id = str(event.event_id)

        async with write_db.session_factory() as session:
            outbox = OutboxRepository(session)
            await outbox.mark_failed(message_id, "boom", max_retries=2)
            assert (await outbox.get(message_id)).status is OutboxStatus.PENDING

            await outbox.mark_failed(message_id, "boom", max_retries=2)
            message = await outbox.get(message_id)
            await session.commit()

        assert message.status is OutboxStatus.FAILED
        assert message.retry_count == 2

        async with write_db.session_factory() as session:
            assert await OutboxRepository(session).get_pending(max_retries=2) == []

    @pytest.mark.asyncio
    async def test_mark_unknown_message_is_ignored(self, write_db):
        from db.outbox import OutboxRepository

        async with write_db.session_factory() as session:
            outbox = OutboxRepository(session)
            await outbox.mark_completed("missing")
            await outbox.mark_failed("missing", "boom")

            assert await outbox.get("missing") is None

    @pytest.mark.asyncio
    async def test_requeue_failed_resets_retry_budget(self, write_db):
        from db.models import OutboxStatus
        from db.outbox import OutboxRepository

        failed = await _stage_customer(write_db, "a@x.com")
        pending = await _stage_customer(write_db, "b@x.com")

        async with write_db.session_factory() as session:
            outbox = OutboxRepository(session)
            await outbox.mark_failed(str(failed.event_id), "boom", max_retries=1)
            await outbox.mark_failed(str(pending.event_id), "boom", max_retries=5)
            await session.commit()

        async with write_db.session_factory() as session:
            outbox = OutboxRepository(session)
            requeued = await outbox.requeue_failed()
            await session.commit()

        async with write_db.session_factory() as session:
            outbox = OutboxRepository(session)
            message = await outbox.get(str(failed.event_id))
            untouched = await outbox.get(str(pending.event_id))
            again = await outbox.requeue_failed()

        assert requeued == 1
        assert again == 0
        assert message.status is OutboxStatus.PENDING
        assert message.retry_count == 0
        assert message.error_message is None
        assert untouched.retry_count == 1


class TestOutboxRelay:
    """Tests for out-of-band delivery to the event log."""

    @pytest.mark.asyncio
    async def test_relay_appends_and_publishes(self, write_db, event_store):
        from db.outbox import OutboxRelay

        event = await _stage_customer(write_db, tag="tx-9")
        publisher = Mock()
        publisher.publish_domain_event = AsyncMock()

        report = await OutboxRelay(write_db.session_factory, event_store, publisher).process_pending()

        assert report.to_dict() == {
            "requeued": 0, "processed": 1, "appended": 1, "failed": 0, "published": 1,
        }
        stored = await event_store.get_events_by_transaction("tx-9")
        assert [s.event_id for s in stored] == [str(event.event_id)]

        published, tag = publisher.publish_domain_event.await_args.args
        assert published.event_id == event.event_id
        assert tag == "tx-9"

    @pytest.mark.asyncio
    async def test_second_pass_finds_nothing(self, write_db, event_store):
        from db.outbox import OutboxRelay

        await _stage_customer(write_db)
        relay = OutboxRelay(write_db.session_factory, event_store)

        await relay.process_pending()
        report = await relay.process_pending()

        assert report.processed == 0

    @pytest.mark.asyncio
    async def test_relay_tolerates_already_appended_event(self, write_db, event_store):
        """A row whose event already reached the log is completed without a duplicate."""
        from db.outbox import OutboxRelay

        event = await _stage_customer(write_db)
        await event_store.append(
            event.aggregate_type, event.aggregate_id, event.to_dict(), transaction_tag="tx-1"
        )

        report = await OutboxRelay(write_db.session_factory, event_store).process_pending()

        assert report.appended == 1
        assert len([e async for e in event_store.stream_events()]) == 1

    @pytest.mark.asyncio
    async def test_relay_gives_up_after_max_retries(self, write_db):
        from db.models import OutboxStatus
        from db.outbox import OutboxRelay, OutboxRepository

        event = await _stage_customer(write_db)
        relay = OutboxRelay(write_db.session_factory, _failing_store(), max_retries=2)

        first = await relay.process_pending()
        second = await relay.process_pending()
        third = await relay.process_pending()

        assert (first.failed, second.failed, third.processed) == (1, 1, 0)
        async with write_db.session_factory() as session:
            message = await OutboxRepository(session).get(str(event.event_id))
        assert message.status is OutboxStatus.FAILED
        assert "event log down" in message.error_message

    @pytest.mark.asyncio
    async def test_include_failed_redrives_given_up_rows(self, write_db, event_store):
        from db.models import OutboxStatus
        from db.outbox import OutboxRelay, OutboxRepository

        event = await _stage_customer(write_db)
        down = OutboxRelay(write_db.session_factory, _failing_store(), max_retries=1)
        assert (await down.process_pending()).failed == 1

        recovered = OutboxRelay(write_db.session_factory, event_store, max_retries=1)
        skipped = await recovered.process_pending()
        report = await recovered.process_pending(include_failed=True)

        assert skipped.processed == 0
        assert (report.requeued, report.appended) == (1, 1)
        assert [str(e.event_id) async for e in event_store.stream_events()] == [str(event.event_id)]
        async with write_db.session_factory() as session:
            message = await OutboxRepository(session).get(str(event.event_id))
        assert message.status is OutboxStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_publisher_failure_does_not_undo_append(self, write_db, event_store):
        from db.models import OutboxStatus
        from db.outbox import OutboxRelay, OutboxRepository

        event = await _stage_customer(write_db)
        publisher = Mock()
        publisher.publish_domain_event = AsyncMock(side_effect=RuntimeError("bus down"))

        report = await OutboxRelay(write_db.session_factory, event_store, publisher).process_pending()

        assert report.appended == 1
        assert report.published_events == []
        async with write_db.session_factory() as session:
            message = await OutboxRepository(session).get(str(event.event_id))
        assert message.status is OutboxStatus.COMPLETED
