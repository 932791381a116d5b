"""
SHOP - Mediator Pattern Implementation

The mediator routes commands and queries through a pipeline of
behaviors that provide cross-cutting concerns like logging, and
broadcasts notifications (committed domain events) to their handlers.

Architecture:
    - Commands: Write operations that change state (emits domain events)
    - Queries: Read operations that return data (no side effects)
    - Pipeline Behaviors: Middleware that wraps handler execution
    - Notifications: Domain events broadcast to multiple handlers

Behaviors are composed explicitly: each one registered with the
mediator wraps every handler invocation, in registration order.

Usage:
    from domain.mediator import MediatorBuilder

    mediator = (MediatorBuilder()
        .with_logging()
        .register_scoped_handler(CreateCustomerCommand, handler_scope)
        .build())

    result = await mediator.send(CreateCustomerCommand(first_name="Ana", ...))
"""
from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncContextManager,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    Type,
    TypeVar,
)
from uuid import UUID, uuid4

from opentelemetry.trace import Status, StatusCode

from domain.entities import DomainEvent
from observability.logging import get_logger
from observability.metrics import record_command
from observability.tracing import get_tracer


logger = logging.getLogger("shop.mediator")


# =============================================================================
# BASE TYPES FOR CQRS
# =============================================================================


TResult = TypeVar("TResult")
TRequest = TypeVar("TRequest", bound="IRequest")
TCommand = TypeVar("TCommand", bound="Command")
TQuery = TypeVar("TQuery", bound="Query")
TNotification = TypeVar("TNotification", bound="INotification")


class IRequest(ABC, Generic[TResult]):
    """
    Base interface for all requests (commands and queries).

    The request_id is generated lazily and pinned on first access, so
    frozen dataclass subclasses work unchanged.
    """

    @property
    def request_id(self) -> UUID:
        if not hasattr(self, "_request_id"):
            object.__setattr__(self, "_request_id", uuid4())
        return self._request_id  # type: ignore


class Command(IRequest[TResult], Generic[TResult]):
    """
    Base class for commands.

    Commands represent intent to change system state. They:
    - Have side effects (modify data)
    - Are validated before execution
    - Emit domain events on success

    Note: Subclasses should use @dataclass(frozen=True).
    """


class Query(IRequest[TResult], Generic[TResult]):
    """
    Base class for queries.

    Queries represent requests for data and have no side effects.
    """


class INotification(ABC):
    """
    Base interface for notifications.

    Notifications are broadcast to every registered handler.
    """

    @property
    @abstractmethod
    def notification_id(self) -> UUID:
        """Unique identifier for this notification."""
        pass


@dataclass
class DomainEventNotification(INotification):
    """
    Notification wrapper for a committed domain event.

    Published after the event has been appended to the event log.
    """
    event: DomainEvent
    transaction_tag: Optional[str] = None
    _notification_id: UUID = field(default_factory=uuid4)

    @property
    def notification_id(self) -> UUID:
        return self._notification_id


# =============================================================================
# HANDLER INTERFACES
# =============================================================================


class IRequestHandler(ABC, Generic[TRequest, TResult]):
    """
    Base interface for request handlers.

    Each request type has exactly one handler.
    """

    @abstractmethod
    async def handle(self, request: TRequest) -> TResult:
        """Handle the request and return a result."""
        pass


class ICommandHandler(IRequestHandler[TCommand, TResult], Generic[TCommand, TResult]):
    """Handler for commands."""
    pass


class IQueryHandler(IRequestHandler[TQuery, TResult], Generic[TQuery, TResult]):
    """Handler for queries."""
    pass


class INotificationHandler(ABC, Generic[TNotification]):
    """
    Handler for notifications.

    Multiple handlers can process the same notification type.
    """

    @abstractmethod
    async def handle(self, notification: TNotification) -> None:
        """Handle the notification."""
        pass


# Yields a handler bound to per-request resources (session, unit of work)
HandlerScope = Callable[[], AsyncContextManager[IRequestHandler]]


# =============================================================================
# PIPELINE BEHAVIORS
# =============================================================================


# Type for the next delegate in the pipeline
RequestHandlerDelegate = Callable[[], Awaitable[TResult]]


class IPipelineBehavior(ABC, Generic[TRequest, TResult]):
    """
    Pipeline behavior for cross-cutting concerns.

    Behaviors wrap around handler execution, forming a middleware pipeline:
        Behavior1 -> Behavior2 -> Handler -> Behavior2 -> Behavior1
    """

    @abstractmethod
    async def handle(
        self,
        request: TRequest,
        next: RequestHandlerDelegate[TResult]
    ) -> TResult:
        """
        Handle the request in the pipeline.

        Args:
            request: The request being processed
            next: Delegate to call the next behavior or handler

        Returns:
            The result from the handler
        """
        pass


def classify_outcome(result: Any) -> str:
    """Map a handler result to an outcome label (ok / invalid / error)."""
    status = getattr(result, "status", None)
    value = getattr(status, "value", None)
    return value if isinstance(value, str) else "ok"


class LoggingBehavior(IPipelineBehavior[TRequest, TResult], Generic[TRequest, TResult]):
    """
    Pipeline behavior that observes request handling.

    Logs entry, exit, elapsed time and outcome classification, records
    the duration metric and a span. Results pass through untouched;
    exceptions are logged and re-raised.
    """

    def __init__(self, log_level: int = logging.INFO) -> None:
        self._log_level = log_level
        self._logger = get_logger("shop.pipeline")
        self._tracer = get_tracer("shop.pipeline")

    async def handle(
        self,
        request: TRequest,
        next: RequestHandlerDelegate[TResult]
    ) -> TResult:
        request_type = type(request).__name__
        request_id = str(getattr(request, "request_id", "unknown"))
        log = self._logger.bind(request_type=request_type, request_id=request_id)

        log.log(self._log_level, "request.started")
        start_time = time.perf_counter()

        with self._tracer.start_as_current_span(f"handle {request_type}") as span:
            span.set_attribute("shop.request_type", request_type)
            span.set_attribute("shop.request_id", request_id)
            try:
                result = await next()
            except asyncio.CancelledError:
                duration = time.perf_counter() - start_time
                log.warning("request.cancelled", duration_ms=round(duration * 1000, 2))
                record_command(request_type, "cancelled", duration)
                raise
            except Exception as e:
                duration = time.perf_counter() - start_time
                log.error(
                    "request.failed",
                    duration_ms=round(duration * 1000, 2),
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                record_command(request_type, "exception", duration)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

            duration = time.perf_counter() - start_time
            outcome = classify_outcome(result)
            span.set_attribute("shop.outcome", outcome)
            log.log(
                self._log_level,
                "request.completed",
                outcome=outcome,
                success=outcome == "ok",
                duration_ms=round(duration * 1000, 2),
            )
            record_command(request_type, outcome, duration)
            return result


# =============================================================================
# MEDIATOR IMPLEMENTATION
# =============================================================================


class Mediator:
    """
    Central mediator for routing requests to handlers.

    Usage:
        mediator = Mediator()
        mediator.register_handler(GetCustomerByIdQuery, GetCustomerByIdQueryHandler(repo))
        mediator.add_behavior(LoggingBehavior())
        result = await mediator.send(GetCustomerByIdQuery(customer_id=id))
    """

    def __init__(self) -> None:
        self._handlers: Dict[Type, IRequestHandler] = {}
        self._scoped_handlers: Dict[Type, HandlerScope] = {}
        self._notification_handlers: Dict[Type, List[INotificationHandler]] = {}
        self._behaviors: List[IPipelineBehavior] = []

    def register_handler(
        self,
        request_type: Type[TRequest],
        handler: IRequestHandler[TRequest, Any]
    ) -> None:
        """Register a shared handler instance for a request type."""
        self._handlers[request_type] = handler
        logger.debug(f"Registered handler for {request_type.__name__}")

    def register_scoped_handler(
        self,
        request_type: Type[TRequest],
        scope: HandlerScope
    ) -> None:
        """Register a factory that builds a fresh handler per request."""
        self._scoped_handlers[request_type] = scope
        logger.debug(f"Registered scoped handler for {request_type.__name__}")

    def register_notification_handler(
        self,
        notification_type: Type[TNotification],
        handler: INotificationHandler[TNotification]
    ) -> None:
        """Register a handler for a notification type."""
        if notification_type not in self._notification_handlers:
            self._notification_handlers[notification_type] = []
        self._notification_handlers[notification_type].append(handler)
        logger.debug(f"Registered notification handler for {notification_type.__name__}")

    def add_behavior(self, behavior: IPipelineBehavior) -> None:
        """Add a pipeline behavior that applies to all requests."""
        self._behaviors.append(behavior)

    async def send(self, request: IRequest[TResult]) -> TResult:
        """
        Send a request through the pipeline to its handler.

        Raises:
            ValueError: If no handler is registered for the request type
        """
        request_type = type(request)
        handler = self._handlers.get(request_type)
        scope = self._scoped_handlers.get(request_type)

        if handler is None and scope is None:
            raise ValueError(f"No handler registered for {request_type.__name__}")

        async def final_handler() -> TResult:
            if handler is not None:
                return await handler.handle(request)
            async with scope() as scoped:
                return await scoped.handle(request)

        pipeline = self._build_pipeline(request, self._behaviors, final_handler)
        return await pipeline()

    def _build_pipeline(
        self,
        request: Any,
        behaviors: List[IPipelineBehavior],
        handler: Callable[[], Awaitable[TResult]]
    ) -> Callable[[], Awaitable[TResult]]:
        """Build the pipeline of behaviors wrapping the handler."""
        current: Callable[[], Awaitable[Any]] = handler

        # Build from inside out (last behavior wraps handler first)
        for behavior in reversed(behaviors):
            current = (
                lambda b=behavior, n=current: b.handle(request, n)
            )  # type: ignore

        return current  # type: ignore

    async def publish(self, notification: INotification) -> None:
        """
        Publish a notification to all registered handlers.

        Handlers run concurrently; a failing handler is logged and does
        not affect the others.
        """
        notification_type = type(notification)
        handlers = self._notification_handlers.get(notification_type, [])

        if not handlers:
            logger.debug(f"No handlers for notification {notification_type.__name__}")
            return

        results = await asyncio.gather(
            *(handler.handle(notification) for handler in handlers),
            return_exceptions=True
        )
        for handler, result in zip(handlers, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.error(
                    f"Notification handler {type(handler).__name__} failed for "
                    f"{notification_type.__name__}: {result}",
                    exc_info=result,
                )

    async def publish_domain_event(
        self,
        event: DomainEvent,
        transaction_tag: Optional[str] = None
    ) -> None:
        """Wrap a domain event in a notification and publish it."""
        await self.publish(DomainEventNotification(event=event, transaction_tag=transaction_tag))


# =============================================================================
# MEDIATOR BUILDER
# =============================================================================


class MediatorBuilder:
    """
    Builder for constructing a configured Mediator.

    Usage:
        mediator = (MediatorBuilder()
            .with_logging()
            .register_scoped_handler(CreateCustomerCommand, scope)
            .register_notification_handler(DomainEventNotification, sync_handler)
            .build())
    """

    def __init__(self) -> None:
        self._mediator = Mediator()

    def with_logging(self, log_level: int = logging.INFO) -> "MediatorBuilder":
        """Add the observability behavior."""
        self._mediator.add_behavior(LoggingBehavior(log_level))
        return self

    def with_behavior(self, behavior: IPipelineBehavior) -> "MediatorBuilder":
        """Add a custom behavior."""
        self._mediator.add_behavior(behavior)
        return self

    def register_handler(
        self,
        request_type: Type[TRequest],
        handler: IRequestHandler[TRequest, Any]
    ) -> "MediatorBuilder":
        self._mediator.register_handler(request_type, handler)
        return self

    def register_scoped_handler(
        self,
        request_type: Type[TRequest],
        scope: HandlerScope
    ) -> "MediatorBuilder":
        self._mediator.register_scoped_handler(request_type, scope)
        return self

    def register_notification_handler(
        self,
        notification_type: Type[TNotification],
        handler: INotificationHandler[TNotification]
    ) -> "MediatorBuilder":
        self._mediator.register_notification_handler(notification_type, handler)
        return self

    def build(self) -> Mediator:
        """Build and return the configured mediator."""
        return self._mediator
