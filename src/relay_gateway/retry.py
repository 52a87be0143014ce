"""Bounded exponential-backoff retry for provider calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, TypeVar

from .config import RetrySettings
from .providers.base import ProviderError

LOGGER = logging.getLogger("relay_gateway.retry")

T = TypeVar("T")
SleepFn = Callable[[float], Awaitable[None]]


class RetryPolicy:
    """Run an operation up to ``max_attempts`` times.

    The wait between attempt ``i`` and ``i + 1`` is
    ``base_delay * backoff_factor ** (i - 1)``. Errors whose kind is terminal
    (invalid request, model not found) propagate immediately; anything that
    is not a :class:`ProviderError` is never retried.
    """

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        backoff_factor: float = 2.0,
        sleep: Optional[SleepFn] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.backoff_factor = backoff_factor
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_settings(cls, settings: RetrySettings, *, sleep: Optional[SleepFn] = None) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            backoff_factor=settings.backoff_factor,
            sleep=sleep,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay applied after the given (1-based) failed attempt."""
        return self.base_delay * (self.backoff_factor ** (attempt - 1))

    def schedule(self, max_attempts: Optional[int] = None) -> List[float]:
        attempts = max_attempts or self.max_attempts
        return [self.delay_for(attempt) for attempt in range(1, attempts)]

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: Optional[int] = None,
        *,
        label: str = "operation",
    ) -> T:
        attempts = max_attempts or self.max_attempts
        last_error: Optional[ProviderError] = None
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except ProviderError as exc:
                last_error = exc
                if not exc.retryable:
                    LOGGER.debug("%s failed with terminal %s, not retrying", label, exc.kind.value)
                    raise
                if attempt >= attempts:
                    LOGGER.error("%s failed after %s attempts: %s", label, attempts, exc.message)
                    break
                delay = self.delay_for(attempt)
                LOGGER.warning(
                    "%s failed (attempt %s/%s, kind=%s), retrying in %.2fs",
                    label,
                    attempt,
                    attempts,
                    exc.kind.value,
                    delay,
                )
                if delay > 0:
                    await self._sleep(delay)
        assert last_error is not None
        raise last_error


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int,
    *,
    policy: Optional[RetryPolicy] = None,
) -> T:
    """Functional form of :meth:`RetryPolicy.run`."""
    policy = policy or RetryPolicy(max_attempts=max_attempts)
    return await policy.run(operation, max_attempts)
