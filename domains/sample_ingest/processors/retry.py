"""
Retry policy and error-storm backpressure for the ingestion pipeline.

Usage:
    policy = RetryPolicy(attempts=3, base_delay=1.0)
    digest = await retry_async(lambda: asyncio.to_thread(hash_file, path),
                               policy=policy, description="hash")

    errors = ErrorState()
    if errors.record_failure():
        await asyncio.sleep(errors.pause_seconds)
"""

import asyncio
import sqlite3
from dataclasses import dataclass
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from domains.sample_ingest.errors import CopyVerificationError

T = TypeVar("T")

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (
    OSError,
    sqlite3.OperationalError,
    CopyVerificationError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff.

    Attributes:
        attempts: Total attempts including the first
        base_delay: Delay in seconds after the first failure
        multiplier: Growth factor applied per further failure
    """

    attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed ``attempt`` (1-based)."""
        return self.base_delay * (self.multiplier ** (attempt - 1))


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    description: str,
    retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS,
) -> T:
    """
    Run ``operation`` until it succeeds or the policy is exhausted.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt
        policy: Attempt count and backoff
        description: Human-readable name for log lines
        retry_on: Exception types considered transient

    Returns:
        The operation's result

    Raises:
        The last error once attempts are exhausted, or any non-transient
        error immediately.
    """
    attempts = max(1, policy.attempts)

    def log_retry(retry_state: RetryCallState):
        logger.warning(
            f"{description} attempt {retry_state.attempt_number}/{attempts} failed: "
            f"{retry_state.outcome.exception()} "
            f"(retrying in {retry_state.next_action.sleep:.1f}s)"
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=policy.base_delay, exp_base=policy.multiplier),
        retry=retry_if_exception_type(retry_on),
        before_sleep=log_retry,
        sleep=_sleep,
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                return await operation()
    except retry_on as e:
        logger.error(f"{description} failed after {attempts} attempts: {e}")
        raise

    raise AssertionError("unreachable")


@dataclass
class ErrorState:
    """
    Running failure counter owned by one pipeline instance.

    Attributes:
        count: Current failure count
        pause_threshold: Every multiple of this count triggers a pause
        pause_seconds: Length of the pipeline-wide pause
    """

    count: int = 0
    pause_threshold: int = 10
    pause_seconds: float = 30.0

    def record_failure(self) -> bool:
        """
        Count a failure.

        Returns:
            True if the pipeline should pause before consuming more events
        """
        self.count += 1
        return self.pause_threshold > 0 and self.count % self.pause_threshold == 0

    def record_success(self) -> None:
        """Count a success; never drops below zero."""
        if self.count > 0:
            self.count -= 1

    def reset(self) -> None:
        self.count = 0
