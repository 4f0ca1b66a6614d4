"""
Property-based tests for the Retry Manager module.

Uses Hypothesis to verify the attempt bound, the acceptance check and the
delay schedule of bounded retries.
"""

import asyncio

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from dnc_checker.config import CaptchaConfig
from dnc_checker.exceptions import OCREngineError, TransportError
from dnc_checker.retry_manager import RetryManager, RetryResult


class RecordingSleep:
    """Awaitable sleep that records requested delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def failing_operation(error: Exception, counter: list):
    async def operation():
        counter.append(1)
        raise error
    return operation


class TestRetryBoundProperty:
    """
    Property 8: An operation is attempted at most max_attempts times.
    """

    @given(max_attempts=st.integers(min_value=1, max_value=10))
    @settings(max_examples=100)
    def test_persistent_failure_stops_at_bound(self, max_attempts: int) -> None:
        """
        Property 8a: A retryable error is retried until the bound, with one
        delay between consecutive attempts.
        """
        sleep = RecordingSleep()
        manager = RetryManager(max_attempts=max_attempts, base_delay_seconds=1.0, sleep=sleep)
        calls: list = []

        result = asyncio.run(manager.execute_with_retry(
            failing_operation(TransportError(code="timeout", message="t"), calls)
        ))

        assert isinstance(result, RetryResult)
        assert not result.success
        assert result.attempts == max_attempts
        assert len(calls) == max_attempts
        assert isinstance(result.last_error, TransportError)
        assert sleep.delays == [1.0] * (max_attempts - 1)

    @given(
        max_attempts=st.integers(min_value=1, max_value=8),
        succeed_on=st.integers(min_value=1, max_value=8),
    )
    @settings(max_examples=100)
    def test_success_stops_retrying(self, max_attempts: int, succeed_on: int) -> None:
        """
        Property 8b: The first acceptable result ends the loop.
        """
        manager = RetryManager(max_attempts=max_attempts, base_delay_seconds=0, sleep=RecordingSleep())
        calls: list = []

        async def operation() -> int:
            calls.append(1)
            return len(calls)

        result = asyncio.run(manager.execute_with_retry(
            operation, is_acceptable=lambda value: value >= succeed_on
        ))

        if succeed_on <= max_attempts:
            assert result.success
            assert result.result == succeed_on
            assert result.attempts == succeed_on
        else:
            assert not result.success
            assert result.attempts == max_attempts
            # The last rejected value is kept for diagnostics
            assert result.result == max_attempts
            assert result.last_error is None

    def test_non_retryable_error_stops_immediately(self) -> None:
        manager = RetryManager(max_attempts=5, sleep=RecordingSleep())
        calls: list = []

        result = asyncio.run(manager.execute_with_retry(
            failing_operation(ValueError("programming error"), calls),
            is_retryable=lambda e: isinstance(e, (TransportError, OCREngineError)),
        ))

        assert not result.success
        assert result.attempts == 1
        assert isinstance(result.last_error, ValueError)


class TestDelayScheduleProperty:
    """
    Property 9: Delays follow base * factor**n, capped at max_delay.
    """

    @given(
        base=st.floats(min_value=0.0, max_value=5.0, allow_nan=False),
        factor=st.floats(min_value=1.0, max_value=3.0, allow_nan=False),
        cap=st.floats(min_value=0.0, max_value=30.0, allow_nan=False),
        attempt=st.integers(min_value=0, max_value=6),
    )
    @settings(max_examples=100)
    def test_delay_is_bounded(self, base: float, factor: float, cap: float, attempt: int) -> None:
        manager = RetryManager(
            max_attempts=3,
            base_delay_seconds=base,
            backoff_factor=factor,
            max_delay_seconds=cap,
        )

        delay = manager._calculate_delay(attempt)

        assert 0.0 <= delay <= cap
        assert delay == pytest.approx(min(base * factor ** attempt, cap))

    def test_captcha_policy_uses_fixed_delay(self) -> None:
        config = CaptchaConfig(max_inner_attempts=3, inner_delay_seconds=1.0)
        manager = RetryManager.for_captcha(config)

        assert manager.max_attempts == 3
        assert [manager._calculate_delay(n) for n in range(3)] == [1.0, 1.0, 1.0]

    def test_zero_attempts_rejected(self) -> None:
        with pytest.raises(ValueError):
            RetryManager(max_attempts=0)
