import functools
import traceback
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar, cast

from pydantic import ValidationError as PydanticValidationError

from cinegenius.video_dispatch.logging import log_error

if TYPE_CHECKING:
    from cinegenius.video_dispatch.providers.base import VideoProviderClient

AnyDict = dict[str, Any]

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


class DispatchException(Exception):
    """Base class for all exceptions raised by the video dispatcher.

    Carries structured context (provider, job/request ID, raw provider
    response) so callers and the orchestration manager can classify failures
    without inspecting message text.

    Attributes:
        message: Human-readable error description.
        provider: Provider identifier (``"runway"``, ``"seedance"``,
            ``"stable-video"``), if the error is tied to one.
        request_id: Provider-assigned job ID, if one exists yet.
        raw_response: Unmodified provider response payload, if available.
    """

    message: str
    provider: str | None
    request_id: str | None
    raw_response: AnyDict | None

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        request_id: str | None = None,
        raw_response: AnyDict | None = None,
    ):
        self.message = message
        self.provider = provider
        self.request_id = request_id
        self.raw_response = raw_response
        super().__init__(message)


class ValidationError(DispatchException):
    """Raised when a request or a provider payload fails schema validation.

    Covers malformed canonical requests, outbound wire payloads that violate
    the provider schema, and inbound responses that do not parse. Never
    retried.

    Attributes:
        code: Short machine-readable code (e.g. ``"INVALID_RESPONSE"``).
    """

    code: str | None

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        request_id: str | None = None,
        raw_response: AnyDict | None = None,
        code: str | None = None,
    ):
        super().__init__(message, provider, request_id, raw_response)
        self.code = code


class IncompatibleRequestError(DispatchException):
    """Raised when a provider's capability profile cannot serve a request.

    Raised before the cost guard is consulted and before any network call.

    Attributes:
        reasons: Every capability mismatch that was found.
    """

    reasons: list[str]

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        reasons: list[str] | None = None,
    ):
        super().__init__(message, provider)
        self.reasons = list(reasons or [])


class CostSafetyError(DispatchException):
    """Raised when a provider's cost guard refuses a call.

    Base of the guard family. The orchestration manager always treats this
    family as "skip to the next provider", regardless of failover settings.

    Attributes:
        retry_after_seconds: Seconds until the same call could be admitted,
            when that is knowable.
    """

    retry_after_seconds: float | None

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        request_id: str | None = None,
        raw_response: AnyDict | None = None,
        retry_after_seconds: float | None = None,
    ):
        super().__init__(message, provider, request_id, raw_response)
        self.retry_after_seconds = retry_after_seconds


class RateLimitExceededError(CostSafetyError):
    """Raised when calls to one provider are closer than its minimum interval."""

    pass


class QuotaExceededError(CostSafetyError):
    """Raised when the hourly request ceiling is hit or the provider answers 429."""

    pass


class NetworkError(DispatchException):
    """Raised on a transport failure before the provider responds.

    Covers DNS resolution failures, refused connections and dropped sockets.
    Retried by the client.
    """

    pass


class TimeoutError(DispatchException):
    """Raised when a request or a wait-for-completion deadline is exceeded.

    Attributes:
        timeout_seconds: The deadline that was exceeded, in seconds.
    """

    timeout_seconds: float | None

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        request_id: str | None = None,
        raw_response: AnyDict | None = None,
        timeout_seconds: float | None = None,
    ):
        super().__init__(message, provider, request_id, raw_response)
        self.timeout_seconds = timeout_seconds


class ProviderError(DispatchException):
    """Raised on an error HTTP response from a provider API.

    Retried by the client for 5xx codes only.

    Attributes:
        status_code: HTTP status code returned by the provider.
    """

    status_code: int | None

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        request_id: str | None = None,
        raw_response: AnyDict | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, provider, request_id, raw_response)
        self.status_code = status_code


class GenerationFailedError(DispatchException):
    """Raised when a client exhausts its retries.

    The last underlying failure is kept as ``last_error`` and chained as
    ``__cause__``.

    Attributes:
        attempts: Number of attempts made before giving up.
        last_error: The failure of the final attempt.
    """

    attempts: int
    last_error: Exception | None

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        request_id: str | None = None,
        raw_response: AnyDict | None = None,
        attempts: int = 0,
        last_error: Exception | None = None,
    ):
        super().__init__(message, provider, request_id, raw_response)
        self.attempts = attempts
        self.last_error = last_error


class AllProvidersFailedError(DispatchException):
    """Raised by the orchestration manager when no provider produced a job.

    Attributes:
        attempted_providers: Providers tried, in order.
        attempts: Per-provider attempt records with the reason each was skipped.
        last_error: The last failure observed, or ``None`` when no provider
            was eligible at all.
    """

    attempted_providers: list[str]
    attempts: list[Any]
    last_error: Exception | None

    def __init__(
        self,
        message: str,
        attempted_providers: list[str] | None = None,
        attempts: list[Any] | None = None,
        last_error: Exception | None = None,
    ):
        super().__init__(message)
        self.attempted_providers = list(attempted_providers or [])
        self.attempts = list(attempts or [])
        self.last_error = last_error


def is_retryable_error(error: Exception) -> bool:
    """Determine whether a client should retry the same call.

    Retryable:
    - NetworkError
    - TimeoutError
    - ProviderError with a 5xx status code

    Not retryable:
    - ValidationError, IncompatibleRequestError
    - the CostSafetyError family (including provider 429s)
    - ProviderError with a 4xx status code
    - anything unknown

    Args:
        error: Exception to classify

    Returns:
        True if the call should be retried, False otherwise
    """
    if isinstance(error, (NetworkError, TimeoutError)):
        return True

    if isinstance(error, ProviderError):
        return error.status_code is not None and 500 <= error.status_code < 600

    return False


def is_provider_skip_error(error: Exception) -> bool:
    """Return True for errors that always move the manager to the next provider.

    These are guard refusals and capability mismatches: they say nothing about
    the provider's health, so failover settings do not apply.
    """
    return isinstance(error, (CostSafetyError, IncompatibleRequestError))


def handle_provider_errors(func: F) -> F:
    """Decorator that wraps unhandled exceptions in ``DispatchException``.

    Apply to the async public entry points of provider clients.

    Behaviour:
    - ``DispatchException`` subclasses propagate unchanged.
    - ``PydanticValidationError`` is converted to ``ValidationError``.
    - Any other exception is wrapped in ``DispatchException`` with the
      traceback captured in ``raw_response`` and logged at ERROR level.
    """

    @functools.wraps(func)
    async def wrapper(self: "VideoProviderClient", *args: Any, **kwargs: Any) -> Any:
        try:
            return await func(self, *args, **kwargs)
        except DispatchException:
            raise
        except PydanticValidationError as ex:
            raise ValidationError(
                f"Schema validation failed: {ex}",
                provider=self.provider,
                raw_response={"errors": ex.errors(include_url=False)},
                code="SCHEMA_VALIDATION",
            ) from ex
        except Exception as ex:
            log_error(
                f"Unknown error in {func.__name__}: {ex}",
                context={"provider": self.provider, "operation": func.__name__},
                logger_name="cinegenius.video_dispatch.exceptions",
                exc_info=True,
            )
            raise DispatchException(
                f"Unknown error in {func.__name__}: {ex}",
                provider=self.provider,
                raw_response={
                    "error": str(ex),
                    "error_type": type(ex).__name__,
                    "traceback": traceback.format_exc(),
                },
            ) from ex

    return cast(F, wrapper)
