"""
SHOP - Resilience Patterns

Retry with exponential backoff for out-of-band work: re-applying failed
read model syncs. Command handling itself is never retried.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Set, Type, TypeVar

from opentelemetry import trace

T = TypeVar("T")

logger = logging.getLogger("shop.resilience")
tracer = trace.get_tracer("shop.resilience")


@dataclass
class RetryConfig:
    """Configuration for retry policy."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: Set[Type[Exception]] = field(
        default_factory=lambda: {Exception}
    )
    non_retryable_exceptions: Set[Type[Exception]] = field(default_factory=set)


class RetryPolicy:
    """
    Retry an async call with capped exponential backoff.

    Usage:
        policy = RetryPolicy(RetryConfig(max_attempts=3))
        await policy.execute(store.upsert, "customers", id, doc)
    """

    def __init__(self, config: Optional[RetryConfig] = None):
        self.config = config or RetryConfig()

    def calculate_delay(self, attempt: int) -> float:
        """Delay before retrying after the given 0-based attempt."""
        cfg = self.config
        delay = min(cfg.base_delay * cfg.exponential_base ** attempt, cfg.max_delay)
        if cfg.jitter:
            delay *= 0.5 + random.random()
        return delay

    def is_retryable(self, exception: Exception) -> bool:
        if isinstance(exception, tuple(self.config.non_retryable_exceptions)):
            return False
        return isinstance(exception, tuple(self.config.retryable_exceptions))

    async def execute(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Await func(*args, **kwargs) until it succeeds or attempts run out.

        Raises:
            The first non-retryable exception, or the last exception once
            max_attempts is reached
        """
        name = getattr(func, "__name__", "call")
        with tracer.start_as_current_span(f"retry {name}") as span:
            span.set_attribute("retry.max_attempts", self.config.max_attempts)
            attempt = 0
            while True:
                span.set_attribute("retry.attempts", attempt + 1)
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    span.set_attribute("retry.exception", type(e).__name__)
                    if not self.is_retryable(e) or attempt + 1 >= self.config.max_attempts:
                        raise
                    delay = self.calculate_delay(attempt)
                    logger.warning(
                        f"{name} failed (attempt {attempt + 1}/{self.config.max_attempts}), "
                        f"retrying in {delay:.2f}s: {e}"
                    )
                    await asyncio.sleep(delay)
                    attempt += 1
