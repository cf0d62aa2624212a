import asyncio

import pytest

from resilient_weather.resilience import (
    AsyncRateLimiter,
    CallNotPermitted,
    CircuitBreaker,
    CircuitState,
    ResilienceGuard,
)


class Flaky:
    """Async callable failing `failures` times before succeeding."""

    def __init__(self, failures, exc=ConnectionError):
        self.failures = failures
        self.exc = exc
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc("boom")
        return "ok"


def fast_guard(**overrides):
    options = dict(
        transient_errors=(ConnectionError,),
        max_attempts=3,
        min_wait=0,
        max_wait=0,
        call_timeout=1.0,
        failure_threshold=5,
        reset_timeout=30.0,
        rate_per_second=1000.0,
        burst=1000,
        rate_limit_timeout=0,
    )
    options.update(overrides)
    return ResilienceGuard("test", **options)


def test_breaker_opens_after_consecutive_failures_and_recovers():
    now = [0.0]
    breaker = CircuitBreaker("t", failure_threshold=2, reset_timeout=10, failure_types=(ConnectionError,), clock=lambda: now[0])

    async def scenario():
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.call(Flaky(1))
        assert breaker.state is CircuitState.OPEN

        healthy = Flaky(0)
        with pytest.raises(CallNotPermitted):
            await breaker.call(healthy)
        assert healthy.calls == 0

        now[0] = 11
        assert breaker.state is CircuitState.HALF_OPEN
        assert await breaker.call(healthy) == "ok"
        assert breaker.state is CircuitState.CLOSED
        assert breaker.failure_count == 0

    asyncio.run(scenario())


def test_failed_trial_call_reopens_the_breaker():
    now = [0.0]
    breaker = CircuitBreaker("t", failure_threshold=1, reset_timeout=5, failure_types=(ConnectionError,), clock=lambda: now[0])

    async def scenario():
        with pytest.raises(ConnectionError):
            await breaker.call(Flaky(1))
        now[0] = 6
        with pytest.raises(ConnectionError):
            await breaker.call(Flaky(1))
        assert breaker.state is CircuitState.OPEN
        with pytest.raises(CallNotPermitted):
            await breaker.call(Flaky(0))

    asyncio.run(scenario())


def test_cancelled_trial_call_leaves_the_breaker_undecided():
    now = [0.0]
    breaker = CircuitBreaker("t", failure_threshold=1, reset_timeout=5, failure_types=(ConnectionError,), clock=lambda: now[0])

    async def hang():
        await asyncio.Event().wait()

    async def scenario():
        with pytest.raises(ConnectionError):
            await breaker.call(Flaky(1))
        now[0] = 6

        trial = asyncio.ensure_future(breaker.call(hang))
        await asyncio.sleep(0)
        trial.cancel()
        with pytest.raises(asyncio.CancelledError):
            await trial

        assert breaker.state is CircuitState.HALF_OPEN
        assert breaker.failure_count == 1
        # the slot is free again for a real trial
        assert await breaker.call(Flaky(0)) == "ok"
        assert breaker.state is CircuitState.CLOSED

    asyncio.run(scenario())


def test_non_failure_errors_do_not_trip_the_breaker():
    breaker = CircuitBreaker("t", failure_threshold=1, failure_types=(ConnectionError,))

    async def scenario():
        for _ in range(3):
            with pytest.raises(ValueError):
                await breaker.call(Flaky(1, exc=ValueError))
        assert breaker.state is CircuitState.CLOSED

    asyncio.run(scenario())


def test_rate_limiter_gives_up_after_timeout():
    limiter = AsyncRateLimiter(rate=0, burst=1)

    async def scenario():
        assert await limiter.acquire(timeout=0) is True
        assert await limiter.acquire(timeout=0) is False

    asyncio.run(scenario())


def test_rate_limiter_refills_over_time():
    now = [0.0]
    limiter = AsyncRateLimiter(rate=2.0, burst=1, clock=lambda: now[0])

    async def scenario():
        assert await limiter.acquire(timeout=0)
        now[0] = 0.5
        assert await limiter.acquire(timeout=0)

    asyncio.run(scenario())


def test_guard_retries_transient_errors():
    flaky = Flaky(2)
    assert asyncio.run(fast_guard().call(flaky)) == "ok"
    assert flaky.calls == 3


def test_guard_does_not_retry_other_errors():
    flaky = Flaky(1, exc=ValueError)
    with pytest.raises(ValueError):
        asyncio.run(fast_guard().call(flaky))
    assert flaky.calls == 1


def test_guard_reraises_last_error_and_counts_one_breaker_failure():
    guard = fast_guard(max_attempts=2, failure_threshold=1)
    flaky = Flaky(10)

    with pytest.raises(ConnectionError):
        asyncio.run(guard.call(flaky))
    assert flaky.calls == 2
    assert guard.breaker.state is CircuitState.OPEN

    with pytest.raises(CallNotPermitted):
        asyncio.run(guard.call(flaky))
    assert flaky.calls == 2


def test_open_breaker_rejects_without_spending_a_token():
    guard = fast_guard(max_attempts=1, failure_threshold=1, rate_per_second=0, burst=2)

    async def scenario():
        with pytest.raises(ConnectionError):
            await guard.call(Flaky(1))
        with pytest.raises(CallNotPermitted):
            await guard.call(Flaky(0))

    asyncio.run(scenario())
    assert guard.limiter.tokens == 1


def test_guard_times_out_slow_calls():
    async def slow():
        await asyncio.sleep(1)

    with pytest.raises(TimeoutError):
        asyncio.run(fast_guard(call_timeout=0.01, max_attempts=1).call(slow))


def test_guard_rejects_when_rate_limited():
    guard = fast_guard(rate_per_second=0, burst=1)

    assert asyncio.run(guard.call(Flaky(0))) == "ok"
    with pytest.raises(CallNotPermitted):
        asyncio.run(guard.call(Flaky(0)))


def test_status_reports_breaker_state():
    status = fast_guard().get_status()
    assert status["circuitBreaker"] == "CLOSED"
    assert status["retry"] == "3 attempts with exponential backoff"
