"""
Resilience utilities for recovery and delivery paths.

This module provides:
- backoff_delay / retry_async for retrying an operation with exponential backoff
- call_maybe_async for running sync or async callables from a coroutine
- CircuitBreaker for backends that should not be hammered while down
"""

import asyncio
import inspect
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from faultline.utils.logging import get_logger

logger = get_logger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls
    HALF_OPEN = "half_open"  # Testing if the backend recovered


class CircuitBreakerOpenError(Exception):
    """Raised when a call is rejected because the circuit is open."""
    pass


class RetryExhaustedError(Exception):
    """Raised when retry_async is asked to run with no attempts."""
    pass


def backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
) -> float:
    """
    Delay before retry number ``attempt`` (0-based).

    delay = min(base_delay * exponential_base ** attempt, max_delay)
    """
    return min(base_delay * (exponential_base ** attempt), max_delay)


async def call_maybe_async(func: Callable[[], Any]) -> Any:
    """
    Run a zero-argument callable from a coroutine.

    Coroutine functions are awaited directly; plain callables run in a worker
    thread so a blocking operation does not stall the event loop.
    """
    if asyncio.iscoroutinefunction(func):
        return await func()
    result = await asyncio.to_thread(func)
    if inspect.isawaitable(result):
        return await result
    return result


async def retry_async(
    operation: Callable[[], Any],
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Tuple[Any, int]:
    """
    Re-run an operation that already failed once, with exponential backoff.

    Every retry waits first: delays are base_delay, base_delay * 2, ...
    (for the default exponential_base), each capped at max_delay.

    Args:
        operation: Sync or async zero-argument callable
        max_retries: Maximum number of retries
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for any single delay
        exponential_base: Growth factor between delays
        exceptions: Exception types that trigger another retry
        sleep: Awaitable sleep function (injectable for tests)

    Returns:
        Tuple of (operation result, number of retries used)

    Raises:
        RetryExhaustedError: If max_retries is 0
        Exception: The last error raised by the operation
    """
    if max_retries <= 0:
        raise RetryExhaustedError("retry_async called with max_retries=0")

    name = getattr(operation, "__name__", type(operation).__name__)

    for attempt in range(max_retries):
        delay = backoff_delay(attempt, base_delay, max_delay, exponential_base)
        await sleep(delay)
        try:
            result = await call_maybe_async(operation)
        except exceptions as e:
            logger.warning(
                f"{name} failed on retry {attempt + 1}/{max_retries}: {e}",
                extra={"retry": attempt + 1, "max_retries": max_retries, "delay_s": delay},
            )
            if attempt + 1 == max_retries:
                raise
            continue

        if attempt > 0:
            logger.info(f"{name} succeeded on retry {attempt + 1}/{max_retries}")
        return result, attempt + 1

    raise RetryExhaustedError(f"{name} exhausted {max_retries} retries")


class CircuitBreaker:
    """
    Circuit breaker for calls to an external backend.

    States:
    - CLOSED: calls pass through
    - OPEN: calls are rejected with CircuitBreakerOpenError until `timeout` elapses
    - HALF_OPEN: a limited number of trial calls decide whether to close again

    Args:
        failure_threshold: Consecutive failures before opening the circuit
        timeout: Seconds to stay open before allowing trial calls
        half_open_max_calls: Trial calls allowed (and successes needed) in half-open state
        clock: Monotonic clock, injectable for tests

    Example:
        breaker = CircuitBreaker(failure_threshold=5, timeout=60)
        await breaker.call(lambda: backend.send(payload))
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: float = 60.0,
        half_open_max_calls: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.half_open_max_calls = half_open_max_calls
        self._clock = clock

        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CircuitState.CLOSED
        self.half_open_calls = 0

    async def call(self, func: Callable[[], Awaitable[Any]]) -> Any:
        """
        Execute an async call with circuit breaker protection.

        Raises:
            CircuitBreakerOpenError: If the circuit rejects the call
            Exception: Any exception raised by the call
        """
        if self.state == CircuitState.OPEN:
            elapsed = self._clock() - (self.last_failure_time or 0.0)
            if elapsed < self.timeout:
                raise CircuitBreakerOpenError(
                    f"Circuit is OPEN; retrying after {self.timeout - elapsed:.1f}s"
                )
            logger.info("Circuit breaker transitioning to HALF_OPEN state")
            self.state = CircuitState.HALF_OPEN
            self.half_open_calls = 0
            self.success_count = 0

        if self.state == CircuitState.HALF_OPEN:
            if self.half_open_calls >= self.half_open_max_calls:
                raise CircuitBreakerOpenError("Circuit is HALF_OPEN and trial calls are in flight")
            self.half_open_calls += 1

        try:
            result = await func()
        except Exception:
            self._record_failure()
            raise

        self._record_success()
        return result

    def _record_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.half_open_max_calls:
                logger.info("Circuit breaker transitioning to CLOSED state (backend recovered)")
                self.reset()
        else:
            self.failure_count = 0

    def _record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == CircuitState.HALF_OPEN:
            logger.warning("Circuit breaker transitioning to OPEN state (backend still failing)")
            self.state = CircuitState.OPEN
            self.half_open_calls = 0
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                f"Circuit breaker transitioning to OPEN state "
                f"(failure threshold {self.failure_threshold} reached)"
            )
            self.state = CircuitState.OPEN

    def reset(self) -> None:
        """Return the breaker to the closed state."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.half_open_calls = 0
        self.last_failure_time = None
