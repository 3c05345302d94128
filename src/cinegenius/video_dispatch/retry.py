"""Bounded exponential-backoff retry for provider calls."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, ClassVar, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from cinegenius.video_dispatch.exceptions import (
    GenerationFailedError,
    is_retryable_error,
)
from cinegenius.video_dispatch.logging import log_decision

T = TypeVar("T")

_LOGGER_NAME = "cinegenius.video_dispatch.retry"


class RetryPolicy(BaseModel):
    """How many times to try a call and how long to wait in between.

    The delay before attempt ``n + 1`` is
    ``min(base_delay * multiplier ** (n - 1), cap_delay)``.
    """

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    cap_delay: float = Field(default=5.0, ge=0)

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    def delay_for(self, attempt_number: int) -> float:
        """Seconds to wait after the ``attempt_number``-th failure."""
        return min(self.base_delay * self.multiplier ** (attempt_number - 1), self.cap_delay)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    provider: str,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds, fails permanently, or runs out of attempts.

    Non-retryable failures propagate immediately with their own type. When every
    attempt failed with a retryable error, ``GenerationFailedError`` is raised
    with the last failure as ``last_error`` and ``__cause__``.

    Args:
        operation: Zero-argument coroutine factory, invoked once per attempt.
        policy: Attempt budget and backoff curve.
        provider: Provider name, used for the error and for logging.
        is_retryable: Classifier deciding whether a failure is worth retrying.
        sleep: Awaitable sleep, injectable for tests.

    Returns:
        Whatever ``operation`` returns on the first successful attempt.
    """

    def _before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        log_decision(
            "warning",
            provider,
            "retry",
            type(error).__name__ if error else "unknown",
            {
                "attempt": retry_state.attempt_number,
                "max_attempts": policy.max_attempts,
                "delay_seconds": policy.delay_for(retry_state.attempt_number),
                "error_message": str(error),
            },
            logger_name=_LOGGER_NAME,
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.base_delay,
            exp_base=policy.multiplier,
            max=policy.cap_delay,
        ),
        retry=retry_if_exception(is_retryable),
        before_sleep=_before_sleep,
        sleep=sleep,
    )

    try:
        return await retrying(operation)
    except RetryError as ex:
        last_error = ex.last_attempt.exception()
        attempts = ex.last_attempt.attempt_number
        log_decision(
            "error",
            provider,
            "exhausted",
            type(last_error).__name__,
            {"attempts": attempts, "error_message": str(last_error)},
            logger_name=_LOGGER_NAME,
        )
        raise GenerationFailedError(
            f"{provider} failed after {attempts} attempts: {last_error}",
            provider=provider,
            attempts=attempts,
            last_error=last_error if isinstance(last_error, Exception) else None,
        ) from last_error
