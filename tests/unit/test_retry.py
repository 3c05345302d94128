"""Tests for retry_async and RetryPolicy."""

from unittest.mock import patch

import pytest

from cinegenius.video_dispatch.exceptions import (
    GenerationFailedError,
    NetworkError,
    ProviderError,
    QuotaExceededError,
    TimeoutError,
)
from cinegenius.video_dispatch.retry import RetryPolicy, retry_async


class FlakyOperation:
    """Raises the queued errors in order, then returns ``result``."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def test_policy_delays_are_capped():
    policy = RetryPolicy(max_attempts=5, base_delay=1, multiplier=2, cap_delay=5)

    assert [policy.delay_for(n) for n in range(1, 5)] == [1, 2, 4, 5]


@pytest.mark.asyncio
async def test_first_success_does_not_sleep(timer):
    operation = FlakyOperation([])

    result = await retry_async(
        operation, RetryPolicy(), provider="runway", sleep=timer.sleep
    )

    assert result == "ok"
    assert operation.calls == 1
    assert timer.sleeps == []


@pytest.mark.asyncio
async def test_transient_errors_are_retried_with_backoff(timer):
    operation = FlakyOperation(
        [ProviderError("bad gateway", status_code=502), NetworkError("reset")],
        result={"id": "job-1"},
    )

    result = await retry_async(
        operation, RetryPolicy(max_attempts=3), provider="seedance", sleep=timer.sleep
    )

    assert result == {"id": "job-1"}
    assert operation.calls == 3
    assert timer.sleeps == [1, 2]


@pytest.mark.asyncio
async def test_backoff_respects_cap(timer):
    policy = RetryPolicy(max_attempts=5, base_delay=1, multiplier=2, cap_delay=3)
    operation = FlakyOperation([TimeoutError("slow")] * 4)

    await retry_async(operation, policy, provider="runway", sleep=timer.sleep)

    assert timer.sleeps == [1, 2, 3, 3]


@pytest.mark.asyncio
async def test_non_retryable_error_propagates_immediately(timer):
    original = ProviderError("bad request", status_code=400)
    operation = FlakyOperation([original])

    with pytest.raises(ProviderError) as exc_info:
        await retry_async(operation, RetryPolicy(), provider="runway", sleep=timer.sleep)

    assert exc_info.value is original
    assert operation.calls == 1
    assert timer.sleeps == []


@pytest.mark.asyncio
async def test_quota_errors_are_not_retried(timer):
    operation = FlakyOperation([QuotaExceededError("429", retry_after_seconds=30)])

    with pytest.raises(QuotaExceededError):
        await retry_async(operation, RetryPolicy(), provider="runway", sleep=timer.sleep)

    assert operation.calls == 1


@pytest.mark.asyncio
async def test_exhaustion_raises_generation_failed(timer):
    last = NetworkError("connection refused", provider="stable-video")
    operation = FlakyOperation([NetworkError("reset"), NetworkError("reset"), last])

    with pytest.raises(GenerationFailedError) as exc_info:
        await retry_async(
            operation, RetryPolicy(max_attempts=3), provider="stable-video", sleep=timer.sleep
        )

    error = exc_info.value
    assert error.provider == "stable-video"
    assert error.attempts == 3
    assert error.last_error is last
    assert error.__cause__ is last
    assert operation.calls == 3
    assert timer.sleeps == [1, 2]


@pytest.mark.asyncio
async def test_single_attempt_policy_never_sleeps(timer):
    operation = FlakyOperation([NetworkError("reset")])

    with pytest.raises(GenerationFailedError) as exc_info:
        await retry_async(
            operation, RetryPolicy(max_attempts=1), provider="runway", sleep=timer.sleep
        )

    assert exc_info.value.attempts == 1
    assert timer.sleeps == []


@pytest.mark.asyncio
async def test_custom_classifier(timer):
    operation = FlakyOperation([ValueError("flaky parser")])

    result = await retry_async(
        operation,
        RetryPolicy(),
        provider="runway",
        is_retryable=lambda error: isinstance(error, ValueError),
        sleep=timer.sleep,
    )

    assert result == "ok"
    assert operation.calls == 2


@pytest.mark.asyncio
async def test_retry_decisions_are_logged(timer):
    operation = FlakyOperation([NetworkError("reset")])

    with patch("cinegenius.video_dispatch.retry.log_decision") as mock_decision:
        await retry_async(operation, RetryPolicy(), provider="runway", sleep=timer.sleep)

    args = mock_decision.call_args[0]
    assert args[:4] == ("warning", "runway", "retry", "NetworkError")
    assert args[4]["attempt"] == 1
    assert args[4]["delay_seconds"] == 1
