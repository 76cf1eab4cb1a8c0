"""
Unit tests for the per-destination circuit breaker.
"""
import asyncio

import pytest

from ragrelay.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError, CircuitState


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def succeed():
    return "ok"


async def fail():
    raise RuntimeError("upstream down")


async def trip(cb, failures):
    for _ in range(failures):
        with pytest.raises(RuntimeError):
            await cb.call_async(fail)


@pytest.mark.asyncio
async def test_closed_breaker_passes_calls_through():
    cb = CircuitBreaker("test")

    assert await cb.call_async(succeed) == "ok"
    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_breaker_opens_after_error_rate_threshold():
    cb = CircuitBreaker("test", failure_threshold=0.5, min_requests=4, clock=FakeClock())

    await trip(cb, 3)
    assert cb.state == CircuitState.CLOSED

    await trip(cb, 1)
    assert cb.state == CircuitState.OPEN
    with pytest.raises(CircuitBreakerOpenError):
        await cb.call_async(succeed)


@pytest.mark.asyncio
async def test_non_failures_do_not_count():
    cb = CircuitBreaker("test", min_requests=2, clock=FakeClock())

    for _ in range(5):
        with pytest.raises(ValueError):
            await cb.call_async(_raise_value_error, is_failure=lambda exc: not isinstance(exc, ValueError))

    assert cb.state == CircuitState.CLOSED


async def _raise_value_error():
    raise ValueError("client error")


@pytest.mark.asyncio
async def test_half_open_probe_closes_on_success():
    clock = FakeClock()
    cb = CircuitBreaker("test", min_requests=2, open_duration_seconds=30, clock=clock)
    await trip(cb, 2)
    assert cb.state == CircuitState.OPEN

    clock.now += 31
    assert cb.state == CircuitState.HALF_OPEN
    assert await cb.call_async(succeed) == "ok"
    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_probe_reopens_on_failure():
    clock = FakeClock()
    cb = CircuitBreaker("test", min_requests=2, open_duration_seconds=30, clock=clock)
    await trip(cb, 2)

    clock.now += 31
    await trip(cb, 1)

    assert cb.state == CircuitState.OPEN


@pytest.mark.asyncio
async def test_cancelled_probe_releases_half_open_slot():
    clock = FakeClock()
    cb = CircuitBreaker("test", min_requests=2, open_duration_seconds=30, clock=clock)
    await trip(cb, 2)
    clock.now += 31

    async def cancelled():
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await cb.call_async(cancelled)

    assert cb.state == CircuitState.HALF_OPEN
    assert await cb.call_async(succeed) == "ok"


def test_get_metrics_reports_error_rate():
    cb = CircuitBreaker("dest")

    metrics = cb.get_metrics()

    assert metrics["name"] == "dest"
    assert metrics["state"] == "closed"
    assert metrics["error_rate"] == 0.0
