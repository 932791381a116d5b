"""
Tests for domain/mediator.py - Mediator, LoggingBehavior and builder.

Covers:
- Request routing to shared and scoped handlers
- Pipeline behavior ordering
- LoggingBehavior log events, outcome classification and metrics
- Notification fan-out with failing handlers
"""
import asyncio
import pytest
from contextlib import asynccontextmanager
from dataclasses import dataclass
from unittest.mock import AsyncMock, Mock

from structlog.testing import capture_logs

from domain.mediator import (
    Command,
    DomainEventNotification,
    INotificationHandler,
    IPipelineBehavior,
    IRequestHandler,
    MediatorBuilder,
    Query,
    classify_outcome,
)


@dataclass(frozen=True)
class PingQuery(Query[str]):
    text: str = "ping"


@dataclass(frozen=True)
class SlowCommand(Command[None]):
    delay: float = 30.0


class EchoHandler(IRequestHandler[PingQuery, str]):
    async def handle(self, request: PingQuery) -> str:
        return request.text.upper()


class RaisingHandler(IRequestHandler[PingQuery, str]):
    async def handle(self, request: PingQuery) -> str:
        raise RuntimeError("handler exploded")


class SlowHandler(IRequestHandler[SlowCommand, None]):
    def __init__(self):
        self.started = asyncio.Event()

    async def handle(self, request: SlowCommand) -> None:
        self.started.set()
        await asyncio.sleep(request.delay)


class RecordingBehavior(IPipelineBehavior):
    def __init__(self, name, calls):
        self.name = name
        self.calls = calls

    async def handle(self, request, next):
        self.calls.append(f"{self.name}:before")
        result = await next()
        self.calls.append(f"{self.name}:after")
        return result


def _events(logs, event):
    return [entry for entry in logs if entry["event"] == event]


# =============================================================================
# Routing
# =============================================================================

class TestMediatorRouting:
    """Tests for send()."""

    @pytest.mark.asyncio
    async def test_send_to_registered_handler(self):
        mediator = MediatorBuilder().register_handler(PingQuery, EchoHandler()).build()

        assert await mediator.send(PingQuery("hello")) == "HELLO"

    @pytest.mark.asyncio
    async def test_send_without_handler_raises(self):
        mediator = MediatorBuilder().build()

        with pytest.raises(ValueError, match="PingQuery"):
            await mediator.send(PingQuery())

    @pytest.mark.asyncio
    async def test_scoped_handler_built_per_request(self):
        """Each request enters and exits its own scope."""
        entered = []
        exited = []

        @asynccontextmanager
        async def scope():
            handler = EchoHandler()
            entered.append(handler)
            try:
                yield handler
            finally:
                exited.append(handler)

        mediator = MediatorBuilder().register_scoped_handler(PingQuery, scope).build()

        await mediator.send(PingQuery("a"))
        await mediator.send(PingQuery("b"))

        assert len(entered) == 2
        assert entered[0] is not entered[1]
        assert exited == entered

    @pytest.mark.asyncio
    async def test_behaviors_wrap_in_registration_order(self):
        calls = []
        mediator = (MediatorBuilder()
            .with_behavior(RecordingBehavior("outer", calls))
            .with_behavior(RecordingBehavior("inner", calls))
            .register_handler(PingQuery, EchoHandler())
            .build())

        await mediator.send(PingQuery())

        assert calls == ["outer:before", "inner:before", "inner:after", "outer:after"]


# =============================================================================
# LoggingBehavior
# =============================================================================

class TestLoggingBehavior:
    """Tests for the observability stage."""

    @pytest.mark.asyncio
    async def test_logs_start_and_completion(self):
        mediator = (MediatorBuilder()
            .with_logging()
            .register_handler(PingQuery, EchoHandler())
            .build())

        with capture_logs() as logs:
            result = await mediator.send(PingQuery("hi"))

        assert result == "HI"
        [started] = _events(logs, "request.started")
        [completed] = _events(logs, "request.completed")
        assert started["request_type"] == "PingQuery"
        assert completed["request_id"] == started["request_id"]
        assert completed["outcome"] == "ok"
        assert completed["success"] is True
        assert completed["duration_ms"] >= 0

    @pytest.mark.asyncio
    async def test_result_passes_through_unchanged(self):
        from core.types import Result, ValidationErrorDetail

        invalid = Result.invalid([ValidationErrorDetail("email", "E-mail address is required.")])
        handler = Mock()
        handler.handle = AsyncMock(return_value=invalid)
        mediator = MediatorBuilder().with_logging().register_handler(PingQuery, handler).build()

        with capture_logs() as logs:
            result = await mediator.send(PingQuery())

        assert result is invalid
        [completed] = _events(logs, "request.completed")
        assert completed["outcome"] == "invalid"
        assert completed["success"] is False

    @pytest.mark.asyncio
    async def test_exception_logged_and_reraised(self):
        mediator = (MediatorBuilder()
            .with_logging()
            .register_handler(PingQuery, RaisingHandler())
            .build())

        with capture_logs() as logs:
            with pytest.raises(RuntimeError, match="handler exploded"):
                await mediator.send(PingQuery())

        [failed] = _events(logs, "request.failed")
        assert failed["log_level"] == "error"
        assert failed["error_type"] == "RuntimeError"
        assert _events(logs, "request.completed") == []

    @pytest.mark.asyncio
    async def test_cancellation_logged_and_propagated(self):
        handler = SlowHandler()
        mediator = MediatorBuilder().with_logging().register_handler(SlowCommand, handler).build()

        with capture_logs() as logs:
            task = asyncio.create_task(mediator.send(SlowCommand()))
            await handler.started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        [cancelled] = _events(logs, "request.cancelled")
        assert cancelled["request_type"] == "SlowCommand"

    @pytest.mark.asyncio
    async def test_records_command_metrics(self, metric_reader):
        from core.types import Result

        handler = Mock()
        handler.handle = AsyncMock(return_value=Result.error("boom"))
        mediator = MediatorBuilder().with_logging().register_handler(PingQuery, handler).build()

        await mediator.send(PingQuery())

        points = _data_points(metric_reader, "shop_commands_total")
        assert [(p.attributes["outcome"], p.value) for p in points] == [("error", 1)]


class TestClassifyOutcome:

    def test_classify_result_statuses(self):
        from core.types import Result, ValidationErrorDetail

        assert classify_outcome(Result.success("x")) == "ok"
        assert classify_outcome(Result.invalid([ValidationErrorDetail("f", "m")])) == "invalid"
        assert classify_outcome(Result.error("m")) == "error"

    def test_plain_values_are_ok(self):
        assert classify_outcome("HELLO") == "ok"
        assert classify_outcome(None) == "ok"


# =============================================================================
# Notifications
# =============================================================================

class TestMediatorPublish:
    """Tests for publish()."""

    @pytest.mark.asyncio
    async def test_all_handlers_receive_notification(self):
        first = Mock(spec=INotificationHandler)
        first.handle = AsyncMock()
        second = Mock(spec=INotificationHandler)
        second.handle = AsyncMock()
        mediator = (MediatorBuilder()
            .register_notification_handler(DomainEventNotification, first)
            .register_notification_handler(DomainEventNotification, second)
            .build())

        await mediator.publish_domain_event(Mock(event_type="CustomerCreatedEvent"), "tx-1")

        notification = first.handle.await_args.args[0]
        assert notification.transaction_tag == "tx-1"
        second.handle.assert_awaited_once_with(notification)

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self):
        failing = Mock(spec=INotificationHandler)
        failing.handle = AsyncMock(side_effect=RuntimeError("read store down"))
        working = Mock(spec=INotificationHandler)
        working.handle = AsyncMock()
        mediator = (MediatorBuilder()
            .register_notification_handler(DomainEventNotification, failing)
            .register_notification_handler(DomainEventNotification, working)
            .build())

        await mediator.publish_domain_event(Mock(), "tx-1")

        working.handle.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_publish_without_handlers_is_a_no_op(self):
        await MediatorBuilder().build().publish_domain_event(Mock(), None)


def _data_points(reader, name):
    data = reader.get_metrics_data()
    points = []
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                if metric.name == name:
                    points.extend(metric.data.data_points)
    return points


@pytest.fixture
def metric_reader():
    from opentelemetry.sdk.metrics.export import InMemoryMetricReader
    from observability.metrics import MetricsConfig, setup_metrics, shutdown_metrics

    shutdown_metrics()
    reader = InMemoryMetricReader()
    setup_metrics(MetricsConfig(enabled=True, readers=[reader]))
    yield reader
    shutdown_metrics()
