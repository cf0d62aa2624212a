"""
Call guard for upstream HTTP calls.

Explicit replacements for annotation-driven resilience:
- AsyncRateLimiter: token bucket, bounded wait for a token
- CircuitBreaker: CLOSED -> OPEN after N consecutive failures,
  OPEN -> HALF_OPEN after a cool-down, one trial call decides
- tenacity retry with exponential backoff
- asyncio timeout around every attempt

ResilienceGuard composes them in that order (outermost first). The guard knows
nothing about HTTP: callers tell it which exception types are transient.
Rejections surface as CallNotPermitted, attempt deadlines as TimeoutError.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CallNotPermitted(RuntimeError):
    """Raised when the breaker is open or no rate-limit token could be acquired."""
    pass


class CircuitState(str, enum.Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    Only exceptions listed in `failure_types` count as failures; anything else
    (e.g. a 4xx from upstream) means the remote side answered and counts as
    success.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        failure_types: Tuple[Type[BaseException], ...] = (Exception,),
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failure_types = failure_types
        self.clock = clock

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        if self._state is CircuitState.OPEN and self._cooled_down():
            return CircuitState.HALF_OPEN
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    def _cooled_down(self) -> bool:
        return self._opened_at is not None and self.clock() - self._opened_at >= self.reset_timeout

    def _transition(self, new_state: CircuitState) -> None:
        if new_state is not self._state:
            logger.info("Circuit breaker %s transitioned from %s to %s", self.name, self._state.value, new_state.value)
        self._state = new_state

    async def _before_call(self) -> None:
        async with self._lock:
            if self._state is CircuitState.OPEN:
                if not self._cooled_down():
                    logger.warning("Circuit breaker %s call not permitted", self.name)
                    raise CallNotPermitted(f"Circuit breaker '{self.name}' is OPEN")
                self._transition(CircuitState.HALF_OPEN)

            if self._state is CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CallNotPermitted(f"Circuit breaker '{self.name}' is HALF_OPEN, trial call in flight")
                self._trial_in_flight = True

    async def _on_success(self) -> None:
        async with self._lock:
            self._failures = 0
            self._opened_at = None
            self._trial_in_flight = False
            self._transition(CircuitState.CLOSED)

    async def _on_failure(self, exc: BaseException) -> None:
        async with self._lock:
            self._failures += 1
            self._trial_in_flight = False
            logger.error("Circuit breaker %s error: %s", self.name, exc)
            if self._state is CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
                if self._state is CircuitState.CLOSED:
                    logger.warning("Circuit breaker %s failure threshold reached (%d)", self.name, self._failures)
                self._opened_at = self.clock()
                self._transition(CircuitState.OPEN)

    async def _release_trial(self) -> None:
        async with self._lock:
            self._trial_in_flight = False

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        await self._before_call()
        try:
            result = await fn()
        except self.failure_types as exc:
            await self._on_failure(exc)
            raise
        except Exception:
            # Upstream answered, just not with something we count as a failure.
            await self._on_success()
            raise
        except BaseException:
            # Cancelled: release a half-open trial without judging it.
            await self._release_trial()
            raise
        await self._on_success()
        return result


class AsyncRateLimiter:
    """
    Token bucket rate limiter for coroutines.

    `rate` tokens per second refill up to `burst`. acquire() waits at most
    `timeout` seconds for a token.
    """

    def __init__(self, rate: float = 1.0, burst: int = 60, clock: Callable[[], float] = time.monotonic):
        self.rate = rate
        self.burst = burst
        self.clock = clock
        self.tokens = float(burst)
        self.last_update = clock()
        self._lock = asyncio.Lock()

    def _refill(self, now: float) -> None:
        elapsed = now - self.last_update
        self.tokens = min(self.burst, self.tokens + elapsed * self.rate)
        self.last_update = now

    async def acquire(self, timeout: Optional[float] = None) -> bool:
        """Take one token. Returns False if none became available before the timeout."""
        deadline = self.clock() + timeout if timeout is not None else float("inf")

        while True:
            async with self._lock:
                now = self.clock()
                self._refill(now)
                if self.tokens >= 1:
                    self.tokens -= 1
                    return True
                wait_time = (1.0 - self.tokens) / self.rate if self.rate > 0 else 0.1

            if self.clock() + min(wait_time, 0.1) > deadline:
                return False
            await asyncio.sleep(min(wait_time, 0.1))

    def get_status(self) -> dict:
        return {"rate_per_second": self.rate, "burst": self.burst, "tokens": round(self.tokens, 2)}


class ResilienceGuard:
    """
    rate limiter -> circuit breaker -> retry -> per-attempt timeout -> fn

    `transient_errors` are retried and counted by the breaker; TimeoutError
    always is. An open breaker rejects before a rate-limit token is taken.
    """

    def __init__(
        self,
        name: str,
        transient_errors: Tuple[Type[BaseException], ...],
        max_attempts: int = 3,
        min_wait: float = 0.5,
        max_wait: float = 4.0,
        call_timeout: Optional[float] = 10.0,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        rate_per_second: float = 1.0,
        burst: int = 60,
        rate_limit_timeout: Optional[float] = 5.0,
    ):
        self.name = name
        self.transient_errors = tuple(transient_errors) + (TimeoutError,)
        self.max_attempts = max_attempts
        self.min_wait = min_wait
        self.max_wait = max_wait
        self.call_timeout = call_timeout
        self.rate_limit_timeout = rate_limit_timeout

        self.breaker = CircuitBreaker(
            name,
            failure_threshold=failure_threshold,
            reset_timeout=reset_timeout,
            failure_types=self.transient_errors,
        )
        self.limiter = AsyncRateLimiter(rate=rate_per_second, burst=burst)

    async def _attempt(self, fn: Callable[[], Awaitable[T]]) -> T:
        if self.call_timeout is None:
            return await fn()
        try:
            return await asyncio.wait_for(fn(), timeout=self.call_timeout)
        except asyncio.TimeoutError as exc:
            raise TimeoutError(f"{self.name} call exceeded {self.call_timeout}s") from exc

    async def _with_retry(self, fn: Callable[[], Awaitable[T]]) -> T:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.min_wait, min=self.min_wait, max=self.max_wait),
            retry=retry_if_exception_type(self.transient_errors),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                result = await self._attempt(fn)
        return result

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        if self.breaker.state is CircuitState.OPEN:
            logger.warning("Circuit breaker %s call not permitted", self.name)
            raise CallNotPermitted(f"Circuit breaker '{self.name}' is OPEN")
        if not await self.limiter.acquire(timeout=self.rate_limit_timeout):
            logger.warning("Rate limiter %s: no token within %ss", self.name, self.rate_limit_timeout)
            raise CallNotPermitted(f"Rate limit exceeded for '{self.name}'")
        return await self.breaker.call(lambda: self._with_retry(fn))

    def get_status(self) -> dict:
        return {
            "circuitBreaker": self.breaker.state.value,
            "consecutiveFailures": self.breaker.failure_count,
            "retry": f"{self.max_attempts} attempts with exponential backoff",
            "rateLimiter": self.limiter.get_status(),
            "timeout": f"{self.call_timeout} seconds",
        }
