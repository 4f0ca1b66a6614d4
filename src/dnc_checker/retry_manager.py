"""
Retry Manager for the do-not-call registry checker.

Bounded retries with a configurable (by default fixed) delay between
attempts. An attempt fails when the operation raises a retryable exception
or returns a value the caller's acceptance check rejects.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from .config import CaptchaConfig

T = TypeVar("T")


@dataclass
class RetryResult(Generic[T]):
    """Result of a retry operation."""

    success: bool
    result: Optional[T]
    attempts: int
    last_error: Optional[Exception]


class RetryManager:
    """
    Runs an async operation up to max_attempts times.

    Delay before retry n (0-indexed) is base_delay * backoff_factor**n,
    capped at max_delay. A backoff factor of 1 gives a fixed delay.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_seconds: float = 1.0,
        backoff_factor: float = 1.0,
        max_delay_seconds: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the retry manager.

        Args:
            max_attempts: Total attempts including the first one
            base_delay_seconds: Delay before the first retry
            backoff_factor: Multiplier applied per retry
            max_delay_seconds: Upper bound for any single delay
            sleep: Awaitable sleep function (injectable for tests)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._max_attempts = max_attempts
        self._base_delay = base_delay_seconds
        self._backoff_factor = backoff_factor
        self._max_delay = max_delay_seconds
        self._sleep = sleep

    @classmethod
    def for_captcha(
        cls,
        config: CaptchaConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> RetryManager:
        """Inner CAPTCHA loop policy: fixed delay, bounded attempts."""
        return cls(
            max_attempts=config.max_inner_attempts,
            base_delay_seconds=config.inner_delay_seconds,
            backoff_factor=1.0,
            sleep=sleep,
        )

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def _calculate_delay(self, attempt: int) -> float:
        """
        Calculate wait time before the retry following attempt.

        Args:
            attempt: The failed attempt number (0-indexed)

        Returns:
            The delay in seconds before the next attempt
        """
        delay = self._base_delay * (self._backoff_factor ** attempt)
        return max(0.0, min(delay, self._max_delay))

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        is_acceptable: Optional[Callable[[T], bool]] = None,
        is_retryable: Optional[Callable[[Exception], bool]] = None,
    ) -> RetryResult[T]:
        """
        Execute an operation with bounded retries.

        Args:
            operation: The async operation to execute
            is_acceptable: Optional check on the returned value; a rejected
                value counts as a failed attempt
            is_retryable: Optional function to determine if an exception is
                retryable. If not provided, all exceptions are retryable.

        Returns:
            RetryResult containing success status, result, attempts, and last error
        """
        last_error: Optional[Exception] = None
        last_result: Optional[T] = None
        attempts = 0

        while attempts < self._max_attempts:
            try:
                result = await operation()
                attempts += 1
                if is_acceptable is None or is_acceptable(result):
                    return RetryResult(
                        success=True,
                        result=result,
                        attempts=attempts,
                        last_error=None,
                    )
                last_result = result
                last_error = None
            except Exception as e:
                last_error = e
                attempts += 1

                should_retry = is_retryable(e) if is_retryable else True
                if not should_retry:
                    break

            if attempts >= self._max_attempts:
                break

            delay = self._calculate_delay(attempts - 1)
            if delay > 0:
                await self._sleep(delay)

        return RetryResult(
            success=False,
            result=last_result,
            attempts=attempts,
            last_error=last_error,
        )
