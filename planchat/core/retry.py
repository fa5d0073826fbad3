"""
Bounded retry with exponential backoff for store operations.

Only errors flagged retryable are retried. A per-operation circuit breaker
stops hammering a store that keeps failing.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

from planchat.config import Settings
from planchat.core.errors import CircuitOpen, SyncError
from planchat.infra.logging_config import get_logger

logger = get_logger("retry")

T = TypeVar("T")


class CircuitBreaker:
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_seconds = reset_seconds
        self._clock = clock
        self.failures = 0
        self.state = self.CLOSED
        self._opened_at = 0.0

    def allow(self) -> bool:
        if self.state == self.OPEN:
            if self._clock() - self._opened_at >= self.reset_seconds:
                self.state = self.HALF_OPEN
                return True
            return False
        return True

    def record_success(self) -> None:
        self.failures = 0
        self.state = self.CLOSED

    def record_failure(self) -> None:
        self.failures += 1
        if self.state == self.HALF_OPEN or self.failures >= self.failure_threshold:
            if self.state != self.OPEN:
                logger.warning(
                    "Circuit breaker for %s opened after %d failures",
                    self.name,
                    self.failures,
                )
            self.state = self.OPEN
            self._opened_at = self._clock()


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    breaker: Optional[CircuitBreaker] = None,
    name: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run operation, retrying retryable SyncErrors up to attempts times."""
    for attempt in range(1, attempts + 1):
        if breaker is not None and not breaker.allow():
            raise CircuitOpen(f"Circuit breaker open for operation: {name}")
        try:
            result = await operation()
        except SyncError as exc:
            if not exc.retryable:
                raise
            if breaker is not None:
                breaker.record_failure()
            if attempt == attempts:
                raise
            wait = delay * backoff ** (attempt - 1)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                name,
                attempt,
                attempts,
                wait,
                exc,
            )
            await sleep(wait)
            continue
        if breaker is not None:
            breaker.record_success()
        return result
    raise AssertionError("unreachable")


class RetryPolicy:
    """Retry settings plus one circuit breaker per named operation."""

    def __init__(
        self,
        attempts: int = 3,
        delay: float = 1.0,
        backoff: float = 2.0,
        failure_threshold: int = 5,
        reset_seconds: float = 60.0,
    ) -> None:
        self.attempts = attempts
        self.delay = delay
        self.backoff = backoff
        self.failure_threshold = failure_threshold
        self.reset_seconds = reset_seconds
        self._breakers: dict[str, CircuitBreaker] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            attempts=settings.store_retry_attempts,
            delay=settings.store_retry_delay_seconds,
            backoff=settings.store_retry_backoff,
            failure_threshold=settings.circuit_breaker_threshold,
            reset_seconds=settings.circuit_breaker_reset_seconds,
        )

    def breaker(self, name: str) -> CircuitBreaker:
        if name not in self._breakers:
            self._breakers[name] = CircuitBreaker(
                name, self.failure_threshold, self.reset_seconds
            )
        return self._breakers[name]

    async def run(self, name: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await with_retry(
            operation,
            attempts=self.attempts,
            delay=self.delay,
            backoff=self.backoff,
            breaker=self.breaker(name),
            name=name,
        )
