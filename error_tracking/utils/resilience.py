"""
Resilience utilities for error handling and fault tolerance.

This module provides:
- retry_with_backoff decorator for transient errors
- CircuitBreaker class for persistence calls
- Batch outcome logging for partial failures
"""

import asyncio
import time
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar, ParamSpec
from functools import wraps
from enum import Enum

logger = logging.getLogger(__name__)

# Type variables for generic decorator
P = ParamSpec('P')
T = TypeVar('T')


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreakerOpenError(Exception):
    """Raised when circuit breaker is open."""
    pass


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: tuple = (Exception,)
):
    """
    Decorator for retrying async functions with exponential backoff.

    Only apply this to idempotent calls such as opening a connection pool;
    retrying a counter increment could count it twice.

    Args:
        max_retries: Maximum number of attempts (default: 3)
        base_delay: Initial delay in seconds between retries (default: 1.0)
        max_delay: Maximum delay in seconds between retries (default: 60.0)
        exponential_base: Base for exponential backoff calculation (default: 2.0)
        exceptions: Tuple of exception types to catch and retry (default: all exceptions)

    Returns:
        Decorated function with retry logic

    Example:
        @retry_with_backoff(max_retries=3, base_delay=1.0)
        async def connect():
            return await aiomysql.create_pool(...)
    """
    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            for attempt in range(max_retries):
                try:
                    result = await func(*args, **kwargs)

                    if attempt > 0:
                        logger.info(
                            f"{func.__name__} succeeded on attempt {attempt + 1}/{max_retries}"
                        )

                    return result

                except exceptions as e:
                    if attempt == max_retries - 1:
                        logger.error(
                            f"{func.__name__} failed after {max_retries} attempts: {e}",
                            exc_info=True
                        )
                        raise

                    delay = min(base_delay * (exponential_base ** attempt), max_delay)

                    logger.warning(
                        f"{func.__name__} failed on attempt {attempt + 1}/{max_retries}: {e}. "
                        f"Retrying in {delay:.1f}s..."
                    )

                    await asyncio.sleep(delay)

            raise RuntimeError(f"{func.__name__} called with max_retries={max_retries}")

        return async_wrapper

    return decorator


class CircuitBreaker:
    """
    Circuit breaker for persistence calls on the ingestion path.

    While the database is down every report would otherwise wait for the
    full persistence timeout. Once the breaker opens, reports fail
    immediately until the recovery timeout elapses.

    Only exceptions listed in ``failure_exceptions`` count as failures. Any
    other exception still propagates, but it means the backend answered, so
    it is recorded as a success: one report with bad data must never trip
    the breaker for its siblings.

    States:
    - CLOSED: Normal operation, calls pass through
    - OPEN: Backend is failing, calls are rejected immediately
    - HALF_OPEN: Testing if the backend recovered, limited calls allowed

    Args:
        failure_threshold: Number of consecutive failures before opening circuit (default: 5)
        timeout: Seconds to wait before attempting recovery (default: 60)
        half_open_max_calls: Max calls allowed in half-open state (default: 3)
        name: Label used in log lines
        failure_exceptions: Exception types that mean the backend is unavailable

    Example:
        breaker = CircuitBreaker(failure_threshold=5, timeout=30)
        await breaker.call(lambda: storage.upsert_group(...))
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: float = 60,
        half_open_max_calls: int = 3,
        name: str = "default",
        failure_exceptions: Tuple[Type[BaseException], ...] = (Exception,)
    ):
        self.failure_threshold = failure_threshold
        self.failure_exceptions = failure_exceptions
        self.timeout = timeout
        self.half_open_max_calls = half_open_max_calls
        self.name = name

        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CircuitState.CLOSED
        self.half_open_calls = 0

        logger.info(
            f"CircuitBreaker '{name}' initialized: failure_threshold={failure_threshold}, "
            f"timeout={timeout}s"
        )

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Execute function with circuit breaker protection.

        Args:
            func: Zero-argument callable returning an awaitable

        Returns:
            Function result

        Raises:
            CircuitBreakerOpenError: If circuit is open
            Exception: Any exception raised by the function
        """
        if self.state == CircuitState.OPEN:
            if self.last_failure_time and (time.monotonic() - self.last_failure_time) > self.timeout:
                logger.info(f"Circuit breaker '{self.name}' transitioning to HALF_OPEN state")
                self.state = CircuitState.HALF_OPEN
                self.half_open_calls = 0
                self.success_count = 0
            else:
                raise CircuitBreakerOpenError(
                    f"Circuit breaker '{self.name}' is OPEN. "
                    f"Will retry after {self.timeout}s timeout."
                )

        if self.state == CircuitState.HALF_OPEN:
            if self.half_open_calls >= self.half_open_max_calls:
                raise CircuitBreakerOpenError(
                    f"Circuit breaker '{self.name}' is HALF_OPEN and max test calls reached"
                )
            self.half_open_calls += 1

        try:
            result = await func()
        except self.failure_exceptions:
            self._record_failure()
            raise
        except Exception:
            self._record_success()
            raise

        self._record_success()
        return result

    def _record_success(self) -> None:
        """Record successful call."""
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.half_open_max_calls:
                logger.info(f"Circuit breaker '{self.name}' transitioning to CLOSED state (service recovered)")
                self.state = CircuitState.CLOSED
                self.failure_count = 0
                self.success_count = 0
                self.half_open_calls = 0
        elif self.failure_count > 0:
            logger.debug(f"Circuit breaker '{self.name}': resetting failure count after success")
            self.failure_count = 0

    def _record_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.monotonic()

        if self.state == CircuitState.HALF_OPEN:
            logger.warning(f"Circuit breaker '{self.name}' transitioning to OPEN state (service still failing)")
            self.state = CircuitState.OPEN
            self.success_count = 0
            self.half_open_calls = 0
        elif self.state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
            logger.warning(
                f"Circuit breaker '{self.name}' transitioning to OPEN state "
                f"(failure threshold {self.failure_threshold} exceeded)"
            )
            self.state = CircuitState.OPEN
            self.success_count = 0

    def get_state(self) -> CircuitState:
        """Get current circuit breaker state."""
        return self.state

    def reset(self) -> None:
        """Manually reset circuit breaker to closed state."""
        logger.info(f"Circuit breaker '{self.name}' manually reset to CLOSED state")
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.half_open_calls = 0
        self.last_failure_time = None


def log_batch_outcome(
    total_items: int,
    accepted_items: int,
    invalid_items: int,
    rate_limited_items: int,
    failed_items: int,
    context: Optional[dict] = None
) -> None:
    """
    Log the outcome of one ingestion batch.

    A batch with failed reports is logged as a partial failure; dropped
    (invalid or rate limited) reports are expected and logged at info.

    Args:
        total_items: Number of reports in the batch
        accepted_items: Reports stored
        invalid_items: Reports dropped by validation
        rate_limited_items: Reports dropped by the rate limiter
        failed_items: Reports whose processing raised
        context: Additional context information
    """
    extra = {
        "operation": "ingest_batch",
        "total_items": total_items,
        "accepted_items": accepted_items,
        "invalid_items": invalid_items,
        "rate_limited_items": rate_limited_items,
        "failed_items": failed_items,
        "batch_context": context or {},
    }

    if failed_items > 0:
        logger.warning(
            f"Partial failure in ingest_batch: "
            f"{accepted_items}/{total_items} accepted, {failed_items} failed",
            extra=extra
        )
    else:
        logger.info(
            f"ingest_batch completed: {accepted_items}/{total_items} accepted",
            extra=extra
        )


def create_storage_circuit_breaker(
    unavailable_errors: Tuple[Type[BaseException], ...] = ()
) -> CircuitBreaker:
    """
    Create circuit breaker configured for database persistence calls.

    Timeouts and dropped connections always count as failures; a backend
    adds its own connection-level error types through unavailable_errors.
    """
    return CircuitBreaker(
        failure_threshold=5,
        timeout=30,
        half_open_max_calls=3,
        name="storage",
        failure_exceptions=(asyncio.TimeoutError, ConnectionError) + tuple(unavailable_errors)
    )
