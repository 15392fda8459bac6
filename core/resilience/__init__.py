"""
Core Resilience: Fault Tolerance Primitives.

Provides reliability patterns for outbound notification delivery:
- CircuitBreaker: Retry with backoff, stop calling a failing provider
- DeadLetterQueue: Capture and retry failed deliveries
"""
from core.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
)
from core.resilience.dlq import (
    DeadLetter,
    DeadLetterQueue,
    DLQStats,
    DLQStatus,
)

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    # DLQ
    "DeadLetter",
    "DeadLetterQueue",
    "DLQStats",
    "DLQStatus",
]
