"""Test circuit breaker and dead letter queue."""
import pytest

from core.resilience import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    DeadLetterQueue,
    DLQStatus,
)


def test_circuit_breaker_initial_state():
    cb = CircuitBreaker()
    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_circuit_breaker_success():
    async def ok():
        return "ok"

    cb = CircuitBreaker()
    assert await cb.call(ok) == "ok"
    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_circuit_breaker_retries():
    attempt = 0

    async def failing_then_ok():
        nonlocal attempt
        attempt += 1
        if attempt < 3:
            raise ConnectionError("transient")
        return "recovered"

    cb = CircuitBreaker(max_retries=3, backoff_base=0.0)
    assert await cb.call(failing_then_ok) == "recovered"
    assert attempt == 3


@pytest.mark.asyncio
async def test_circuit_breaker_opens():
    async def always_fails():
        raise ConnectionError("down")

    cb = CircuitBreaker(failure_threshold=2, max_retries=0, backoff_base=0.0)
    for _ in range(2):
        with pytest.raises(ConnectionError):
            await cb.call(always_fails)
    assert cb.state == CircuitState.OPEN

    with pytest.raises(CircuitOpenError):
        await cb.call(always_fails)


def test_dlq_lifecycle():
    dlq = DeadLetterQueue()
    letter = dlq.enqueue("notifications", "overdue", {"user_email": "ann@example.com"}, "timeout", max_retries=1)

    assert dlq.list_pending("notifications") == [letter]
    assert dlq.mark_retrying(letter.id)
    assert dlq.list_pending("notifications") == []
    dlq.mark_failed(letter.id, "timeout again")
    assert letter.status == DLQStatus.DISCARDED
    assert not dlq.mark_retrying(letter.id)


def test_dlq_stats_and_purge():
    dlq = DeadLetterQueue()
    first = dlq.enqueue("notifications", "overdue", {}, "e1")
    dlq.enqueue("notifications", "hold-ready", {}, "e2")
    dlq.enqueue("other", "x", {}, "e3")
    dlq.mark_resolved(first.id)

    stats = dlq.get_stats("notifications")
    assert (stats.total, stats.pending, stats.resolved) == (2, 1, 1)
    assert dlq.purge_resolved() == 1
    assert dlq.get(first.id) is None


def test_dlq_purge_discarded_returns_dropped_letters():
    dlq = DeadLetterQueue()
    lost = dlq.enqueue("notifications", "overdue", {"user_email": "ann@example.com"}, "e1", max_retries=1)
    kept = dlq.enqueue("notifications", "hold-ready", {}, "e2")
    dlq.mark_retrying(lost.id)
    dlq.mark_failed(lost.id, "still down")

    assert dlq.purge_discarded("other") == []
    assert dlq.purge_discarded("notifications") == [lost]
    assert dlq.get(lost.id) is None
    assert dlq.get(kept.id) is kept
