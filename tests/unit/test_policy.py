"""Unit tests for retry, timeout and graceful degradation helpers.

Tests cover:
- RetryPolicy backoff and construction from Config
- with_retry attempt counts driven by error classification
- with_timeout deadlines without cancelling the operation
- safe_execute_async and safe_execute_sync fallbacks
"""

import asyncio
import time

import pytest

from prompt_recipes.core.errors import AppError, ErrorCode
from prompt_recipes.core.policy import (
    RetryPolicy,
    safe_execute_async,
    safe_execute_sync,
    with_retry,
    with_timeout,
)


class CountingOperation:
    """Fails with the queued errors, then returns ``result``."""

    def __init__(self, errors=(), result="ok"):
        self.errors = list(errors)
        self.result = result
        self.attempts = 0

    async def __call__(self):
        self.attempts += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestRetryPolicy:
    """Test backoff delay computation."""

    def test_exponential_backoff_capped(self):
        """Delays should double per attempt and stop at the cap."""
        policy = RetryPolicy(max_retries=5, base_delay_ms=1000, max_delay_ms=10000)
        assert [policy.delay_for(n) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_from_config(self):
        """Policy should be built from Config retry settings."""
        class Cfg:
            MAX_RETRIES = 2
            RETRY_BASE_DELAY_MS = 10
            RETRY_MAX_DELAY_MS = 20

        assert RetryPolicy.from_config(Cfg) == RetryPolicy(2, 10, 20)


class TestWithRetry:
    """Attempt counts depend only on the classified error's retryable flag."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, fast_retry, handler):
        """Successful operations should run once."""
        op = CountingOperation()
        assert await with_retry(op, "Test", fast_retry, handler) == "ok"
        assert op.attempts == 1

    @pytest.mark.asyncio
    async def test_non_retryable_single_attempt(self, fast_retry, handler):
        """Non-retryable errors should be raised after one attempt."""
        error = AppError("bad", ErrorCode.INVALID_INPUTS)
        op = CountingOperation(errors=[error] * 10)

        with pytest.raises(AppError) as exc_info:
            await with_retry(op, "Test", fast_retry, handler)

        assert exc_info.value is error
        assert op.attempts == 1

    @pytest.mark.asyncio
    async def test_retryable_exhausts_budget(self, fast_retry, handler):
        """Retryable errors should use every retry before raising."""
        op = CountingOperation(errors=[AppError("t", ErrorCode.TIMEOUT_ERROR) for _ in range(10)])

        with pytest.raises(AppError) as exc_info:
            await with_retry(op, "Test", fast_retry, handler)

        assert exc_info.value.code == ErrorCode.TIMEOUT_ERROR
        assert op.attempts == 1 + fast_retry.max_retries

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, fast_retry, handler):
        """Operations should succeed once transient errors clear."""
        op = CountingOperation(errors=[AppError("n", ErrorCode.NETWORK_ERROR)] * 2, result="done")
        assert await with_retry(op, "Test", fast_retry, handler) == "done"
        assert op.attempts == 3

    @pytest.mark.asyncio
    async def test_foreign_errors_classified(self, fast_retry, handler):
        """Unclassified exceptions are wrapped, retried per heuristics, and chained."""
        op = CountingOperation(errors=[RuntimeError("connection reset")] * 10)

        with pytest.raises(AppError) as exc_info:
            await with_retry(op, "Test", fast_retry, handler)

        assert exc_info.value.code == ErrorCode.NETWORK_ERROR
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert op.attempts == 4

    @pytest.mark.asyncio
    async def test_zero_retries(self, handler):
        """A zero retry budget should allow a single attempt."""
        op = CountingOperation(errors=[AppError("t", ErrorCode.TIMEOUT_ERROR)] * 3)
        with pytest.raises(AppError):
            await with_retry(op, "Test", RetryPolicy(max_retries=0), handler)
        assert op.attempts == 1


class TestWithTimeout:
    """Test deadline enforcement."""

    @pytest.mark.asyncio
    async def test_returns_result_before_deadline(self, handler):
        """Fast operations should return their result."""
        assert await with_timeout(CountingOperation(), 1000, "Test", handler) == "ok"

    @pytest.mark.asyncio
    async def test_never_resolving_operation_times_out(self, handler):
        """TIMEOUT_ERROR is raised no earlier than the deadline."""
        never = asyncio.Event()

        started = time.monotonic()
        with pytest.raises(AppError) as exc_info:
            await with_timeout(never.wait, 50, "Test", handler)
        elapsed = time.monotonic() - started

        assert exc_info.value.code == ErrorCode.TIMEOUT_ERROR
        assert exc_info.value.retryable is True
        assert elapsed >= 0.045
        assert elapsed < 1.0

    @pytest.mark.asyncio
    async def test_operation_not_cancelled_on_timeout(self, handler):
        """The timed-out operation keeps running; only its result is discarded."""
        finished = asyncio.Event()

        async def slow():
            await asyncio.sleep(0.05)
            finished.set()
            return "late"

        with pytest.raises(AppError):
            await with_timeout(slow, 10, "Test", handler)

        await asyncio.wait_for(finished.wait(), timeout=1)
        assert finished.is_set()

    @pytest.mark.asyncio
    async def test_operation_error_classified(self, handler):
        """Operation errors should be classified, not reported as timeouts."""
        async def failing():
            raise RuntimeError("quota exceeded")

        with pytest.raises(AppError) as exc_info:
            await with_timeout(failing, 1000, "Test", handler)

        assert exc_info.value.code == ErrorCode.QUOTA_EXCEEDED

    @pytest.mark.asyncio
    async def test_timeout_inside_retry_is_retried(self, fast_retry, handler):
        """Timeouts should be retried when wrapped in with_retry."""
        calls = 0

        async def hang_then_succeed():
            nonlocal calls
            calls += 1
            if calls < 3:
                await asyncio.Event().wait()
            return "ok"

        result = await with_retry(lambda: with_timeout(hang_then_succeed, 20, "Test", handler), "Test", fast_retry, handler)
        assert result == "ok"
        assert calls == 3


class TestSafeExecute:
    """Test graceful degradation helpers."""

    @pytest.mark.asyncio
    async def test_async_returns_default_on_error(self):
        """Async failures should return the default."""
        async def failing():
            raise ValueError("nope")

        assert await safe_execute_async(failing(), "Test", default_return="fallback") == "fallback"

    @pytest.mark.asyncio
    async def test_async_reraise(self):
        """Async failures should propagate when reraise is set."""
        async def failing():
            raise ValueError("nope")

        with pytest.raises(ValueError):
            await safe_execute_async(failing(), "Test", reraise=True)

    def test_sync_success_and_default(self):
        """Sync calls should return the result or the default on error."""
        assert safe_execute_sync(lambda: 5, "Test") == 5
        assert safe_execute_sync(lambda: 1 / 0, "Test", default_return=0) == 0
