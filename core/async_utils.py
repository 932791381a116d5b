"""
SHOP - Async Utilities

Background task tracking for fire-and-forget work (read model sync)
that must not block the caller yet must not be lost or leak exceptions.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Coroutine, List, Optional, Set

from opentelemetry import trace

logger = logging.getLogger("shop.async_utils")

tracer = trace.get_tracer(__name__)


@dataclass
class BackgroundTaskConfig:
    """Configuration for background task runner."""

    max_concurrency: int = 32
    drain_timeout_seconds: Optional[float] = 30.0


class BackgroundTaskRunner:
    """
    Tracks fire-and-forget tasks.

    Features:
    - Strong references to running tasks so they are not garbage collected
    - Bounded concurrency with a semaphore
    - Exceptions logged when a task finishes, never raised to the spawner
    - drain() to wait for outstanding work (shutdown, tests)

    Usage:
        runner = BackgroundTaskRunner()
        runner.spawn(mediator.publish(notification), name="read-sync")
        ...
        await runner.drain()
    """

    def __init__(self, config: Optional[BackgroundTaskConfig] = None):
        self.config = config or BackgroundTaskConfig()
        self._tasks: Set[asyncio.Task] = set()
        self._failures: List[BaseException] = []
        self._semaphore: Optional[asyncio.Semaphore] = None

    @property
    def pending(self) -> int:
        """Number of tasks still running."""
        return len(self._tasks)

    @property
    def failures(self) -> List[BaseException]:
        """Exceptions raised by finished tasks."""
        return list(self._failures)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
        """Schedule a coroutine without awaiting it."""
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.config.max_concurrency)
        semaphore = self._semaphore

        async def wrapped() -> Any:
            async with semaphore:
                with tracer.start_as_current_span(name or "background_task"):
                    return await coro

        task = asyncio.create_task(wrapped(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug(f"Background task {task.get_name()} cancelled")
            return
        exc = task.exception()
        if exc is not None:
            self._failures.append(exc)
            logger.error(
                f"Background task {task.get_name()} failed: {exc}",
                exc_info=exc,
            )

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for all running tasks.

        Returns:
            True if every task finished before the timeout
        """
        timeout = self.config.drain_timeout_seconds if timeout is None else timeout
        while True:
            running = {task for task in self._tasks if not task.done()}
            if not running:
                break
            _, pending = await asyncio.wait(running, timeout=timeout)
            if pending:
                logger.warning(f"{len(pending)} background tasks still running after {timeout}s")
                return False
        # Let done callbacks run
        await asyncio.sleep(0)
        return True

    async def cancel_all(self) -> None:
        """Cancel outstanding tasks and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
