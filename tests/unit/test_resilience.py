"""
Unit tests for retry, circuit breaker and batch outcome helpers.
"""

import asyncio
import logging
import time

import pytest
from unittest.mock import AsyncMock, patch

from error_tracking.utils.resilience import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitState,
    create_storage_circuit_breaker,
    log_batch_outcome,
    retry_with_backoff,
)


class TestRetryWithBackoff:
    """Test retry decorator."""

    @pytest.mark.asyncio
    async def test_async_retries_until_success(self):
        """Test async function succeeds after transient failures."""
        calls = AsyncMock(side_effect=[ConnectionError("down"), ConnectionError("down"), "pool"])

        @retry_with_backoff(max_retries=3, base_delay=0.5)
        async def connect():
            return await calls()

        with patch("error_tracking.utils.resilience.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await connect()

        assert result == "pool"
        assert calls.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_async_raises_after_max_retries(self):
        """Test the last error propagates once retries are exhausted."""
        calls = AsyncMock(side_effect=ConnectionError("down"))

        @retry_with_backoff(max_retries=2, base_delay=0.1)
        async def connect():
            return await calls()

        with patch("error_tracking.utils.resilience.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(ConnectionError):
                await connect()

        assert calls.await_count == 2

    @pytest.mark.asyncio
    async def test_async_does_not_retry_unlisted_exceptions(self):
        """Test exceptions outside the retry list propagate immediately."""
        calls = AsyncMock(side_effect=ValueError("bad config"))

        @retry_with_backoff(max_retries=3, exceptions=(ConnectionError,))
        async def connect():
            return await calls()

        with pytest.raises(ValueError):
            await connect()

        assert calls.await_count == 1


class TestCircuitBreaker:
    """Test circuit breaker state machine."""

    @pytest.mark.asyncio
    async def test_passes_results_through_when_closed(self):
        breaker = CircuitBreaker(failure_threshold=2, timeout=30, name="test")

        result = await breaker.call(AsyncMock(return_value="ok"))

        assert result == "ok"
        assert breaker.get_state() == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        """Test the breaker opens and then fails fast."""
        breaker = CircuitBreaker(failure_threshold=2, timeout=30, name="test")
        failing = AsyncMock(side_effect=RuntimeError("db down"))

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)

        assert breaker.get_state() == CircuitState.OPEN

        with pytest.raises(CircuitBreakerOpenError):
            await breaker.call(failing)

        assert failing.await_count == 2

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        breaker = CircuitBreaker(failure_threshold=2, timeout=30, name="test")

        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("flaky")))
        await breaker.call(AsyncMock(return_value=None))

        assert breaker.failure_count == 0
        assert breaker.get_state() == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_recovers_to_closed(self):
        """Test recovery after the timeout elapses."""
        breaker = CircuitBreaker(failure_threshold=1, timeout=10, half_open_max_calls=2, name="test")

        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("db down")))
        assert breaker.get_state() == CircuitState.OPEN

        breaker.last_failure_time = time.monotonic() - 11

        await breaker.call(AsyncMock(return_value=1))
        assert breaker.get_state() == CircuitState.HALF_OPEN

        await breaker.call(AsyncMock(return_value=2))
        assert breaker.get_state() == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self):
        breaker = CircuitBreaker(failure_threshold=1, timeout=10, name="test")

        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("db down")))
        breaker.last_failure_time = time.monotonic() - 11

        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("still down")))

        assert breaker.get_state() == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_reset(self):
        breaker = CircuitBreaker(failure_threshold=1, timeout=10, name="test")
        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("db down")))

        breaker.reset()

        assert breaker.get_state() == CircuitState.CLOSED
        assert breaker.failure_count == 0
        assert breaker.last_failure_time is None

    @pytest.mark.asyncio
    async def test_unlisted_exceptions_do_not_count_as_failures(self):
        breaker = CircuitBreaker(failure_threshold=2, timeout=30, name="test", failure_exceptions=(ConnectionError,))

        for _ in range(3):
            with pytest.raises(ValueError):
                await breaker.call(AsyncMock(side_effect=ValueError("bad row")))

        assert breaker.get_state() == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_unlisted_exception_resets_failure_streak(self):
        breaker = CircuitBreaker(failure_threshold=2, timeout=30, name="test", failure_exceptions=(ConnectionError,))

        with pytest.raises(ConnectionError):
            await breaker.call(AsyncMock(side_effect=ConnectionError("refused")))
        with pytest.raises(ValueError):
            await breaker.call(AsyncMock(side_effect=ValueError("bad row")))
        with pytest.raises(ConnectionError):
            await breaker.call(AsyncMock(side_effect=ConnectionError("refused")))

        assert breaker.get_state() == CircuitState.CLOSED

    def test_create_storage_circuit_breaker(self):
        breaker = create_storage_circuit_breaker()

        assert breaker.name == "storage"
        assert breaker.failure_threshold == 5
        assert breaker.timeout == 30
        assert breaker.half_open_max_calls == 3
        assert asyncio.TimeoutError in breaker.failure_exceptions
        assert ConnectionError in breaker.failure_exceptions
        assert RuntimeError not in breaker.failure_exceptions

    def test_storage_breaker_adds_backend_errors(self):
        class PoolGone(Exception):
            pass

        breaker = create_storage_circuit_breaker((PoolGone,))

        assert PoolGone in breaker.failure_exceptions
        assert ConnectionError in breaker.failure_exceptions


class TestLogBatchOutcome:
    """Test batch outcome logging levels."""

    def test_partial_failure_logs_warning(self, caplog):
        with caplog.at_level(logging.INFO, logger="error_tracking.utils.resilience"):
            log_batch_outcome(
                total_items=3,
                accepted_items=2,
                invalid_items=0,
                rate_limited_items=0,
                failed_items=1
            )

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.failed_items == 1
        assert "2/3 accepted" in record.getMessage()

    def test_clean_batch_logs_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="error_tracking.utils.resilience"):
            log_batch_outcome(
                total_items=3,
                accepted_items=1,
                invalid_items=1,
                rate_limited_items=1,
                failed_items=0,
                context={"source": "test"}
            )

        record = caplog.records[-1]
        assert record.levelno == logging.INFO
        assert record.batch_context == {"source": "test"}
