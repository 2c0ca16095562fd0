"""Retry and timeout helpers built on tenacity.

This module provides:
- Retry decorator factory with exponential backoff and jitter
- Per-operation timeout wrapper; a timeout surfaces as ``TimeoutError`` and
  is retried like any other transient failure
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from functools import wraps
from typing import ParamSpec, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from strata_core.config import RetryConfig
from strata_core.errors import TransientBuildError
from strata_core.observability import log_retry_attempt

P = ParamSpec("P")
R = TypeVar("R")

# Default exceptions that trigger retry
DEFAULT_RETRY_EXCEPTIONS: tuple[type[Exception], ...] = (
    TransientBuildError,
    ConnectionError,
    TimeoutError,
)


def create_retry_decorator(
    config: RetryConfig,
    *,
    retry_exceptions: tuple[type[Exception], ...] | None = None,
    operation_name: str | None = None,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Create a retry decorator with the specified configuration.

    The last exception is re-raised once attempts are exhausted.

    Args:
        config: RetryConfig with retry policy settings.
        retry_exceptions: Exception types that trigger retry.
        operation_name: Name for logging purposes.

    Returns:
        Decorator function that adds retry behavior.

    Example:
        >>> config = RetryConfig(max_attempts=3)
        >>> @create_retry_decorator(config, operation_name="upload")
        ... def upload(key: str, data: bytes) -> str:
        ...     return store.put(key, data)
    """
    exceptions = retry_exceptions or DEFAULT_RETRY_EXCEPTIONS

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        op_name = operation_name or func.__name__

        def before_sleep(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            error = outcome.exception() if outcome is not None else None
            wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
            log_retry_attempt(
                operation=op_name,
                attempt=retry_state.attempt_number,
                max_attempts=config.max_attempts,
                wait_seconds=wait,
                error=str(error),
            )

        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            retrying = Retrying(
                retry=retry_if_exception_type(exceptions),
                stop=stop_after_attempt(config.max_attempts),
                wait=wait_exponential_jitter(
                    initial=config.initial_wait_seconds,
                    max=config.max_wait_seconds,
                    jitter=config.jitter_seconds,
                ),
                before_sleep=before_sleep,
                reraise=True,
            )
            return retrying(func, *args, **kwargs)

        return wrapper

    return decorator


def run_with_timeout(func: Callable[[], R], timeout_seconds: float | None) -> R:
    """Run ``func`` and raise ``TimeoutError`` if it exceeds the deadline.

    The call runs on a helper thread; an overrunning call is abandoned, not
    interrupted.

    Args:
        func: Zero-argument callable.
        timeout_seconds: Deadline in seconds, or None for no deadline.

    Returns:
        The callable's result.

    Raises:
        TimeoutError: If the deadline passes first.
    """
    if timeout_seconds is None:
        return func()

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="strata-timeout")
    try:
        future = executor.submit(func)
        try:
            return future.result(timeout=timeout_seconds)
        except FutureTimeoutError as e:
            future.cancel()
            msg = f"Operation exceeded {timeout_seconds}s timeout"
            raise TimeoutError(msg) from e
    finally:
        executor.shutdown(wait=False)
