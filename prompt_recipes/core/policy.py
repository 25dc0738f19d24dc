"""Retry and timeout policy around fallible capability calls.

- with_timeout(): advisory wall-clock deadline, raises TIMEOUT_ERROR on expiry
- with_retry(): exponential backoff gated by the classified error's ``retryable`` flag
- safe_execute_async() / safe_execute_sync(): graceful degradation for optional steps

Timeouts never cancel the underlying operation. On expiry its result is
discarded and the task keeps running until the model call returns.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from prompt_recipes.core.errors import AppError, ErrorCode, ErrorHandler, error_handler
from prompt_recipes.utils.logger import logger


T = TypeVar("T")


# ============================================================================
# Error Handling Helpers
# ============================================================================


def _log_error(operation_name: str, exception: Exception, log_level: str = "warning") -> None:
    msg = f"{operation_name}: {exception}"
    if log_level == "debug":
        logger.debug(msg)
    elif log_level == "error":
        logger.error(msg)
    else:
        logger.warning(msg)


async def safe_execute_async(
    coro,
    operation_name: str,
    log_level: str = "warning",
    default_return=None,
    reraise: bool = False,
):
    """Safely execute async operation with consistent error logging.

    Used for steps whose failure must not change the outcome of the caller,
    such as releasing a model session or compressing an image.

    Args:
        coro: Awaitable coroutine to execute.
        operation_name: Description for logging (e.g., "Release model session").
        log_level: Logging level ("debug", "warning", "error"). Default: "warning".
        default_return: Value to return on exception. Default: None.
        reraise: If True, re-raise exception after logging. Default: False.

    Returns:
        Result of coroutine if successful, otherwise ``default_return``.
    """
    try:
        return await coro
    except Exception as e:
        _log_error(operation_name, e, log_level)
        if reraise:
            raise
        return default_return


def safe_execute_sync(
    func,
    operation_name: str,
    log_level: str = "warning",
    default_return=None,
    reraise: bool = False,
):
    """Synchronous version of safe_execute_async. Same behavior and arguments."""
    try:
        return func()
    except Exception as e:
        _log_error(operation_name, e, log_level)
        if reraise:
            raise
        return default_return


# ============================================================================
# Retry & Timeout
# ============================================================================


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and exponential backoff bounds (milliseconds)."""

    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000

    @classmethod
    def from_config(cls, cfg) -> "RetryPolicy":
        return cls(
            max_retries=cfg.MAX_RETRIES,
            base_delay_ms=cfg.RETRY_BASE_DELAY_MS,
            max_delay_ms=cfg.RETRY_MAX_DELAY_MS,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before the retry following ``attempt`` (0-based), in seconds."""
        return min(self.base_delay_ms * (2**attempt), self.max_delay_ms) / 1000


def _discard_outcome(task: asyncio.Future) -> None:
    # Late result of a timed-out operation; retrieve the exception so it is not reported as unhandled
    if not task.cancelled() and task.exception() is not None:
        logger.debug(f"Timed-out operation failed after deadline: {task.exception()}")


def _raise_classified(exc: Exception, context: Optional[str], handler: ErrorHandler):
    app_error = handler.handle_error(exc, context)
    if app_error is exc:
        raise exc
    raise app_error from exc


async def with_timeout(
    operation: Callable[[], Awaitable[T]],
    timeout_ms: int,
    context: Optional[str] = None,
    handler: ErrorHandler = error_handler,
) -> T:
    """Race ``operation`` against a deadline.

    Args:
        operation: Zero-argument callable returning an awaitable.
        timeout_ms: Deadline in milliseconds.
        context: Operation description for error logging.
        handler: Classifier applied to errors raised by the operation.

    Returns:
        The operation's result if it completes before the deadline.

    Raises:
        AppError: TIMEOUT_ERROR on expiry, otherwise the classified error
            raised by the operation.
    """
    task = asyncio.ensure_future(operation())
    done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)

    if task not in done:
        task.add_done_callback(_discard_outcome)
        error = AppError(f"Operation timed out after {timeout_ms}ms", ErrorCode.TIMEOUT_ERROR)
        handler.handle_error(error, context)
        raise error

    try:
        return task.result()
    except Exception as exc:
        _raise_classified(exc, context, handler)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    context: Optional[str] = None,
    policy: Optional[RetryPolicy] = None,
    handler: ErrorHandler = error_handler,
) -> T:
    """Run ``operation`` until it succeeds or the retry budget is spent.

    A non-retryable error propagates after the first attempt. A retryable
    error that keeps failing causes exactly ``1 + max_retries`` attempts.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt.
        context: Operation description for error logging.
        policy: Retry budget and backoff. Default: RetryPolicy().
        handler: Classifier deciding retryability.

    Raises:
        AppError: The classified error of the last attempt.
    """
    policy = policy or RetryPolicy()

    for attempt in range(policy.max_retries + 1):
        try:
            return await operation()
        except Exception as exc:
            # Errors already classified (e.g. by with_timeout) are not logged twice
            app_error = exc if isinstance(exc, AppError) else handler.handle_error(exc, context)
            if not app_error.retryable or attempt >= policy.max_retries:
                if app_error is exc:
                    raise
                raise app_error from exc

            delay = policy.delay_for(attempt)
            logger.info(
                f"{context or 'Operation'}: retry {attempt + 1}/{policy.max_retries} in {delay:.1f}s "
                f"after {app_error.code.value}"
            )
            await asyncio.sleep(delay)

    # Unreachable: the loop either returns or raises
    raise AppError(f"{context or 'Operation'} exhausted retries", ErrorCode.UNKNOWN_ERROR)
