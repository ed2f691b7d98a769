"""
Unit tests for the circuit breaker.
"""
import asyncio

import pytest

from figbud.core.circuit_breaker import (
    MAX_BACKOFF_MULTIPLIER,
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitState,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def _fail():
    raise RuntimeError("boom")


async def _ok(value="ok"):
    return value


async def _trip(cb: CircuitBreaker) -> None:
    for _ in range(cb.failure_threshold):
        with pytest.raises(RuntimeError):
            await cb.call_async(_fail)


@pytest.mark.asyncio
async def test_circuit_breaker_closed_state():
    """Calls pass through while closed."""
    cb = CircuitBreaker("test")

    assert cb.state == CircuitState.CLOSED
    assert await cb.call_async(_ok, "success") == "success"


@pytest.mark.asyncio
async def test_circuit_breaker_opens_after_consecutive_failures():
    clock = FakeClock()
    cb = CircuitBreaker("test", failure_threshold=3, clock=clock)

    for _ in range(2):
        with pytest.raises(RuntimeError):
            await cb.call_async(_fail)
    assert cb.state == CircuitState.CLOSED

    with pytest.raises(RuntimeError):
        await cb.call_async(_fail)
    assert cb.state == CircuitState.OPEN

    with pytest.raises(CircuitBreakerOpenError):
        await cb.call_async(_ok)


@pytest.mark.asyncio
async def test_success_resets_consecutive_failures():
    cb = CircuitBreaker("test", failure_threshold=3)

    for _ in range(2):
        with pytest.raises(RuntimeError):
            await cb.call_async(_fail)
    await cb.call_async(_ok)
    for _ in range(2):
        with pytest.raises(RuntimeError):
            await cb.call_async(_fail)

    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_after_recovery_timeout_and_closes_after_successes():
    clock = FakeClock()
    cb = CircuitBreaker(
        "test", failure_threshold=3, recovery_timeout_seconds=30.0, success_threshold=2, clock=clock
    )
    await _trip(cb)

    clock.advance(29.9)
    assert cb.state == CircuitState.OPEN

    clock.advance(0.2)
    assert cb.state == CircuitState.HALF_OPEN

    await cb.call_async(_ok, "first")
    assert cb.state == CircuitState.HALF_OPEN
    await cb.call_async(_ok, "second")
    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_failed_half_open_call_reopens_with_backoff():
    clock = FakeClock()
    cb = CircuitBreaker("test", failure_threshold=3, recovery_timeout_seconds=30.0, clock=clock)
    await _trip(cb)

    clock.advance(30.0)
    assert cb.state == CircuitState.HALF_OPEN
    with pytest.raises(RuntimeError):
        await cb.call_async(_fail)

    assert cb.state == CircuitState.OPEN
    assert cb.get_metrics()["backoff_multiplier"] == 2

    # Recovery now takes 60s
    clock.advance(45.0)
    assert cb.state == CircuitState.OPEN
    clock.advance(15.0)
    assert cb.state == CircuitState.HALF_OPEN


@pytest.mark.asyncio
async def test_backoff_is_capped():
    clock = FakeClock()
    cb = CircuitBreaker("test", failure_threshold=1, recovery_timeout_seconds=1.0, clock=clock)
    await _trip(cb)

    for _ in range(10):
        clock.advance(1.0 * MAX_BACKOFF_MULTIPLIER)
        assert cb.state == CircuitState.HALF_OPEN
        with pytest.raises(RuntimeError):
            await cb.call_async(_fail)

    assert cb.get_metrics()["backoff_multiplier"] == MAX_BACKOFF_MULTIPLIER


@pytest.mark.asyncio
async def test_open_error_reports_retry_time():
    clock = FakeClock()
    cb = CircuitBreaker("test", failure_threshold=1, recovery_timeout_seconds=30.0, clock=clock)
    await _trip(cb)
    clock.advance(10.0)

    with pytest.raises(CircuitBreakerOpenError) as exc_info:
        await cb.call_async(_ok)

    assert exc_info.value.name == "test"
    assert exc_info.value.retry_in_seconds == pytest.approx(20.0)


@pytest.mark.asyncio
async def test_call_async_records_failures():
    cb = CircuitBreaker("async", failure_threshold=2)

    async def failing():
        raise ValueError("nope")

    assert await cb.call_async(_ok, 42) == 42
    for _ in range(2):
        with pytest.raises(ValueError):
            await cb.call_async(failing)

    assert cb.state == CircuitState.OPEN
    with pytest.raises(CircuitBreakerOpenError):
        await cb.call_async(_ok)


@pytest.mark.asyncio
async def test_deadline_cancellation_counts_as_failure():
    cb = CircuitBreaker("slow", failure_threshold=3)

    async def hang():
        await asyncio.sleep(10)

    for _ in range(3):
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(cb.call_async(hang), timeout=0.01)

    assert cb.state == CircuitState.OPEN
    assert cb.get_metrics()["total_failures"] == 3


@pytest.mark.asyncio
async def test_reset_and_metrics():
    cb = CircuitBreaker("test", failure_threshold=1)
    await _trip(cb)
    assert cb.get_metrics()["state"] == "open"

    cb.reset()

    metrics = cb.get_metrics()
    assert metrics["state"] == "closed"
    assert metrics["consecutive_failures"] == 0
    assert metrics["total_failures"] == 1
    assert cb.is_available()
