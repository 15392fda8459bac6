"""
Circuit Breaker: Resilience for Outbound Calls

Protects the notification path against:
- Transient provider failures (retry with exponential backoff)
- Cascading failures (circuit opens after repeated failures)
"""
from __future__ import annotations
from typing import Callable, Awaitable, Any, Optional
from datetime import datetime
from enum import Enum
import asyncio

from core.models.base import utcnow


class CircuitState(str, Enum):
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, reject calls
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitOpenError(RuntimeError):
    """Raised when a call is rejected because the circuit is open."""


class CircuitBreaker:
    """
    Circuit breaker with exponential backoff between attempts.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure: Optional[datetime] = None

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN:
            if self._last_failure and (
                utcnow() - self._last_failure
            ).total_seconds() > self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    async def call(
        self,
        func: Callable[..., Awaitable[Any]],
        *args,
        **kwargs,
    ) -> Any:
        """Await func with circuit breaker protection."""

        if self.state == CircuitState.OPEN:
            raise CircuitOpenError(f"Circuit breaker OPEN. Retry after {self.recovery_timeout}s")

        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                result = await func(*args, **kwargs)

                # Success, reset circuit
                self._failure_count = 0
                self._state = CircuitState.CLOSED
                return result

            except Exception as e:
                last_error = e
                if attempt < self.max_retries:
                    backoff = min(
                        self.backoff_base * (2 ** attempt),
                        self.backoff_max,
                    )
                    await asyncio.sleep(backoff)

        # All retries failed
        self._failure_count += 1
        self._last_failure = utcnow()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN

        raise last_error
