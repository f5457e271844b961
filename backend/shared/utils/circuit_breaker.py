"""
Circuit breaker for fixture sources.

States:
  CLOSED   : fetches pass through
  OPEN     : repeated failures; the source is skipped until the cooldown ends
  HALF_OPEN: cooldown elapsed; one trial fetch decides whether to close again
"""
from __future__ import annotations

import time
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from shared.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(Exception):
    """Raised when the circuit is open and the call is skipped."""

    def __init__(self, name: str, retry_after: float):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{name}' is open; retry after {retry_after:.0f}s")


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    Args:
        name: Identifier for logging (the source name).
        failure_threshold: Consecutive failures before opening.
        recovery_timeout_s: Seconds spent OPEN before a trial fetch is allowed.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        recovery_timeout_s: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout_s = recovery_timeout_s
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0
        self._probing = False

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._clock() - self._opened_at >= self.recovery_timeout_s:
            return CircuitState.HALF_OPEN
        return self._state

    @property
    def stats(self) -> dict[str, Any]:
        return {"name": self.name, "state": self.state.value, "failure_count": self._failure_count}

    def _check(self) -> None:
        state = self.state
        if state == CircuitState.OPEN:
            retry_after = self.recovery_timeout_s - (self._clock() - self._opened_at)
            raise CircuitBreakerOpen(self.name, max(retry_after, 1.0))
        if state == CircuitState.HALF_OPEN:
            if self._probing:
                raise CircuitBreakerOpen(self.name, 1.0)
            self._probing = True

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        self._check()
        try:
            result = await func(*args, **kwargs)
        except BaseException as exc:
            self.record_failure(exc)
            raise
        self.record_success()
        return result

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("circuit_breaker_closed", name=self.name)
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._probing = False

    def record_failure(self, exc: BaseException) -> None:
        self._failure_count += 1
        was_probing = self._probing
        self._probing = False
        if was_probing or self._failure_count >= self.failure_threshold:
            if self._state != CircuitState.OPEN or was_probing:
                logger.warning(
                    "circuit_breaker_opened",
                    name=self.name,
                    failures=self._failure_count,
                    error=str(exc) or type(exc).__name__,
                )
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
