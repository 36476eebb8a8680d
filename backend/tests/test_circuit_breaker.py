"""
Unit tests for the circuit breaker guarding the completion client.
"""
import asyncio

import pytest

from intent_router.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitState,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


async def _ok():
    return "ok"


async def _fail():
    raise ConnectionError("upstream down")


async def _run(cb, func):
    try:
        return await cb.call_async(func)
    except ConnectionError:
        return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(
        "test",
        failure_threshold=0.5,
        time_window_seconds=60,
        open_duration_seconds=30,
        min_requests_for_threshold=4,
        clock=clock,
    )


@pytest.mark.asyncio
async def test_closed_state_passes_calls(breaker):
    assert breaker.state == CircuitState.CLOSED
    assert await breaker.call_async(_ok) == "ok"


@pytest.mark.asyncio
async def test_opens_after_error_rate_threshold(breaker):
    await _run(breaker, _ok)
    await _run(breaker, _fail)
    await _run(breaker, _ok)
    assert breaker.state == CircuitState.CLOSED

    await _run(breaker, _fail)

    assert breaker.state == CircuitState.OPEN
    with pytest.raises(CircuitBreakerOpenError):
        await breaker.call_async(_ok)


@pytest.mark.asyncio
async def test_not_enough_requests_keeps_closed(breaker):
    for _ in range(3):
        await _run(breaker, _fail)
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_old_outcomes_leave_the_window(breaker, clock):
    for _ in range(3):
        await _run(breaker, _fail)
    clock.advance(61)
    await _run(breaker, _fail)
    assert breaker.state == CircuitState.CLOSED
    assert breaker.get_metrics()["recent_requests"] == 1


@pytest.mark.asyncio
async def test_half_open_success_closes(breaker, clock):
    for _ in range(4):
        await _run(breaker, _fail)
    assert breaker.state == CircuitState.OPEN

    clock.advance(30)
    assert breaker.state == CircuitState.HALF_OPEN
    assert await breaker.call_async(_ok) == "ok"
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_failure_reopens(breaker, clock):
    for _ in range(4):
        await _run(breaker, _fail)
    clock.advance(30)

    await _run(breaker, _fail)

    assert breaker.state == CircuitState.OPEN
    with pytest.raises(CircuitBreakerOpenError):
        await breaker.call_async(_ok)


@pytest.mark.asyncio
async def test_half_open_allows_single_trial(breaker, clock):
    for _ in range(4):
        await _run(breaker, _fail)
    clock.advance(30)

    release = asyncio.Event()

    async def _slow():
        await release.wait()
        return "ok"

    trial = asyncio.create_task(breaker.call_async(_slow))
    await asyncio.sleep(0)
    with pytest.raises(CircuitBreakerOpenError):
        await breaker.call_async(_ok)

    release.set()
    assert await trial == "ok"
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_cancelled_trial_frees_slot(breaker, clock):
    for _ in range(4):
        await _run(breaker, _fail)
    clock.advance(30)

    async def _hang():
        await asyncio.sleep(10)

    trial = asyncio.create_task(breaker.call_async(_hang))
    await asyncio.sleep(0)
    trial.cancel()
    with pytest.raises(asyncio.CancelledError):
        await trial

    assert breaker.state == CircuitState.HALF_OPEN
    assert await breaker.call_async(_ok) == "ok"


def test_metrics_snapshot(breaker):
    metrics = breaker.get_metrics()
    assert metrics["name"] == "test"
    assert metrics["state"] == "closed"
    assert metrics["error_rate"] == 0.0
