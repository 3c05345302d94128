"""Shared request pipeline for provider clients."""

import asyncio
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import Any, ClassVar, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from cinegenius.video_dispatch.config import ProviderConfig
from cinegenius.video_dispatch.exceptions import (
    DispatchException,
    IncompatibleRequestError,
    NetworkError,
    ProviderError,
    QuotaExceededError,
    TimeoutError,
    ValidationError,
    handle_provider_errors,
    is_retryable_error,
)
from cinegenius.video_dispatch.guard import CostSafetyGuard
from cinegenius.video_dispatch.logging import ProviderLogger, log_decision
from cinegenius.video_dispatch.models import (
    AnyDict,
    GenerationJob,
    GenerationRequest,
    ProviderCapability,
    ProviderName,
    UsageStats,
)
from cinegenius.video_dispatch.retry import retry_async

WireModel = TypeVar("WireModel", bound=BaseModel)

# Canonical request fields carried through the provider's opaque metadata
_ECHO_FIELDS = ("prompt", "image_url", "quality", "style", "aspect_ratio", "fps", "seed")


class VideoProviderClient(ABC):
    """Base class for the closed set of provider clients.

    Subclasses describe their wire format (``_convert_request`` /
    ``_convert_response``), cost model and endpoints. This class owns the
    pipeline every submission goes through:

    1. capability check (no guard consulted, no network)
    2. outbound schema translation and validation
    3. cost estimate and ``CostSafetyGuard.check_and_record``
    4. HTTP submission under a per-request timeout, retried with backoff
    5. inbound validation and translation to ``GenerationJob``
    6. reconciliation of the realized cost with the guard

    Terminal jobs are cached so repeated ``check_status`` calls return the
    same snapshot without touching the network. The cache and the map of
    submitted requests keep at most ``config.max_tracked_jobs`` entries each,
    evicting the least recently used.
    """

    provider: ClassVar[ProviderName]
    capability: ClassVar[ProviderCapability]
    logger_name: ClassVar[str]

    generate_path: ClassVar[str]
    status_path: ClassVar[str]
    cancel_path: ClassVar[str | None] = None
    health_path: ClassVar[str] = "/health"
    user_agent: ClassVar[str] = "cinegenius-video-dispatch/0.1"

    def __init__(
        self,
        config: ProviderConfig,
        guard: CostSafetyGuard | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if not config.api_key:
            raise ValidationError(
                f"{self.provider} API key is not configured",
                provider=self.provider,
                code="MISSING_API_KEY",
            )
        self.config = config
        self.guard = guard or CostSafetyGuard(self.provider, config.limits)
        self._http_client = http_client
        self._sleep = sleep
        self._monotonic = monotonic
        self._submitted: OrderedDict[str, GenerationRequest] = OrderedDict()
        self._terminal_jobs: OrderedDict[str, GenerationJob] = OrderedDict()
        self._logger = ProviderLogger(self.provider, config.model, self.logger_name)

    # ==================== Provider-specific hooks ====================

    @classmethod
    @abstractmethod
    def estimate_cost(cls, request: GenerationRequest) -> float:
        """Deterministic USD estimate for ``request``."""

    @abstractmethod
    def _convert_request(self, request: GenerationRequest) -> AnyDict:
        """Translate a canonical request to the provider's validated payload."""

    @abstractmethod
    def _convert_response(
        self, data: AnyDict, request: GenerationRequest | None
    ) -> GenerationJob:
        """Translate a provider job payload to a canonical ``GenerationJob``."""

    async def _finalize(self, job: GenerationJob) -> GenerationJob:
        """Hook for providers that need an extra call once a job completes."""
        return job

    # ==================== HTTP plumbing ====================

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._logger.debug("Creating new async httpx client")
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout, connect=30.0)
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _headers(self, accept: str = "application/json") -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Accept": accept,
            "User-Agent": self.user_agent,
        }

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    def _status_url(self, job_id: str) -> str:
        return self._url(f"{self.status_path}/{job_id}")

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: AnyDict | None = None,
        accept: str = "application/json",
        request_id: str | None = None,
    ) -> httpx.Response:
        try:
            response = await self._get_client().request(
                method,
                url,
                json=json,
                headers=self._headers(accept),
                timeout=self.config.timeout,
            )
            response.raise_for_status()
            return response
        except Exception as ex:
            raise self._handle_error(ex, request_id) from ex

    def _handle_error(
        self, ex: Exception, request_id: str | None = None
    ) -> DispatchException:
        """Map transport and HTTP exceptions to the dispatch taxonomy."""
        if isinstance(ex, DispatchException):
            return ex

        if isinstance(ex, httpx.TimeoutException):
            return TimeoutError(
                f"Request timed out: {ex}",
                provider=self.provider,
                request_id=request_id,
                raw_response={"error": str(ex)},
                timeout_seconds=self.config.timeout,
            )

        if isinstance(ex, (httpx.ConnectError, httpx.NetworkError)):
            return NetworkError(
                f"Connection error: {ex}",
                provider=self.provider,
                request_id=request_id,
                raw_response={"error": str(ex)},
            )

        if isinstance(ex, httpx.HTTPStatusError):
            status_code = ex.response.status_code
            try:
                body: object = ex.response.json()
            except ValueError:
                body = ex.response.text
            raw: AnyDict = {"status_code": status_code, "body": body}
            if status_code == 429:
                retry_after = ex.response.headers.get("Retry-After")
                return QuotaExceededError(
                    f"{self.provider} API quota exceeded (429)",
                    provider=self.provider,
                    request_id=request_id,
                    raw_response=raw,
                    retry_after_seconds=(
                        float(retry_after)
                        if retry_after and retry_after.isdigit()
                        else None
                    ),
                )
            return ProviderError(
                f"{self.provider} API error ({status_code}): {body}",
                provider=self.provider,
                request_id=request_id,
                raw_response=raw,
                status_code=status_code,
            )

        if isinstance(ex, httpx.HTTPError):
            return NetworkError(
                f"Transport error: {ex}",
                provider=self.provider,
                request_id=request_id,
                raw_response={"error": str(ex)},
            )

        self._logger.error(
            f"Unknown error: {ex}",
            {"error_type": type(ex).__name__, "request_id": request_id},
            exc_info=True,
        )
        return DispatchException(
            f"Unexpected error while calling {self.provider}: {ex}",
            provider=self.provider,
            request_id=request_id,
            raw_response={"error": str(ex), "error_type": type(ex).__name__},
        )

    def _parse_json(self, response: httpx.Response) -> AnyDict:
        try:
            data = response.json()
        except ValueError as ex:
            raise ValidationError(
                f"{self.provider} returned a non-JSON body",
                provider=self.provider,
                raw_response={"body": response.text},
                code="INVALID_RESPONSE",
            ) from ex
        if not isinstance(data, dict):
            raise ValidationError(
                f"{self.provider} returned an unexpected JSON payload",
                provider=self.provider,
                raw_response={"body": data},
                code="INVALID_RESPONSE",
            )
        return data

    def _validate_wire(
        self, schema: type[WireModel], data: AnyDict, code: str
    ) -> WireModel:
        """Validate a wire payload, converting failures to ``ValidationError``."""
        try:
            return schema.model_validate(data)
        except PydanticValidationError as ex:
            raise ValidationError(
                f"{self.provider} payload failed {schema.__name__} validation: "
                f"{ex.error_count()} error(s)",
                provider=self.provider,
                raw_response={"payload": data, "errors": ex.errors(include_url=False)},
                code=code,
            ) from ex

    # ==================== Canonical echo ====================

    @staticmethod
    def _echo_metadata(request: GenerationRequest) -> AnyDict:
        """Canonical fields the provider API has no slot for."""
        return request.model_dump(include=set(_ECHO_FIELDS), exclude_none=True)

    @staticmethod
    def _echo_fields(
        request: GenerationRequest | None, metadata: AnyDict | None
    ) -> AnyDict:
        """Restore echoed fields from the known request, else from wire metadata."""
        if request is not None:
            return request.model_dump(include=set(_ECHO_FIELDS))
        metadata = metadata or {}
        return {name: metadata.get(name) for name in _ECHO_FIELDS}

    def _track(self, jobs: OrderedDict[str, Any], job_id: str, value: Any) -> None:
        jobs[job_id] = value
        jobs.move_to_end(job_id)
        while len(jobs) > self.config.max_tracked_jobs:
            jobs.popitem(last=False)

    def _remember(self, job: GenerationJob) -> GenerationJob:
        if job.is_terminal:
            self._track(self._terminal_jobs, job.id, job)
            self._submitted.pop(job.id, None)
        return job

    # ==================== Operations ====================

    @handle_provider_errors
    async def generate_video(self, request: GenerationRequest) -> GenerationJob:
        """Submit ``request`` and return the job the provider created.

        Raises:
            IncompatibleRequestError: The provider cannot serve this request.
            CostSafetyError: The guard refused the call (or the API answered 429).
            ValidationError: Outbound or inbound payload failed schema validation.
            ProviderError: The provider answered with a 4xx status.
            GenerationFailedError: Retryable failures exhausted the retry budget.
        """
        reasons = self.capability.incompatibilities(request)
        if reasons:
            log_decision(
                "info",
                self.provider,
                "blocked",
                "incompatible",
                {"reasons": reasons},
                logger_name=self.logger_name,
            )
            raise IncompatibleRequestError(
                f"{self.provider} cannot serve this request: {'; '.join(reasons)}",
                provider=self.provider,
                reasons=reasons,
            )

        payload = self._convert_request(request)

        estimated_cost = self.estimate_cost(request)
        self.guard.check_and_record(estimated_cost)

        self._logger.info(
            "Mapped request to provider format",
            {"converted_request": payload, "estimated_cost": estimated_cost},
            redact=True,
        )

        async def submit() -> AnyDict:
            response = await self._request(
                "POST", self._url(self.generate_path), json=payload
            )
            return self._parse_json(response)

        data = await retry_async(
            submit, self.config.retry, provider=self.provider, sleep=self._sleep
        )
        job = self._convert_response(data, request)

        if job.cost is not None:
            self.guard.report_actual_cost(job.cost - estimated_cost)

        self._track(self._submitted, job.id, request)
        self._logger.with_request_id(job.id).info(
            "Request submitted", {"status": job.status}
        )
        return self._remember(job)

    @handle_provider_errors
    async def check_status(self, job_id: str) -> GenerationJob:
        """Fetch the current snapshot of ``job_id``.

        Once a job is terminal the cached snapshot is returned as-is.
        """
        cached = self._terminal_jobs.get(job_id)
        if cached is not None:
            self._terminal_jobs.move_to_end(job_id)
            return cached

        response = await self._request(
            "GET", self._status_url(job_id), request_id=job_id
        )
        job = self._convert_response(
            self._parse_json(response), self._submitted.get(job_id)
        )
        if job.status == "completed":
            job = await self._finalize(job)

        self._logger.with_request_id(job_id).debug(
            "Progress status update", {"status": job.status, "progress": job.progress}
        )
        return self._remember(job)

    async def wait_for_completion(
        self, job_id: str, max_wait_seconds: float | None = None
    ) -> GenerationJob:
        """Poll ``job_id`` until it reaches a terminal status.

        Failed and cancelled jobs are returned, not raised. Transient polling
        failures are logged and polling continues until the deadline. Each
        poll is cut off when the deadline passes. ``max_wait_seconds=0``
        checks the status exactly once.

        Raises:
            TimeoutError: The wall-clock deadline passed first.
        """
        max_wait = self.config.max_wait_seconds
        if max_wait_seconds is not None:
            max_wait = max_wait_seconds
        deadline = self._monotonic() + max_wait
        logger = self._logger.with_request_id(job_id)
        polls = 0

        while True:
            remaining = deadline - self._monotonic()
            if polls and remaining <= 0:
                raise self._wait_timeout(job_id, max_wait, polls)

            polls += 1
            try:
                job = await asyncio.wait_for(
                    self.check_status(job_id),
                    timeout=remaining if remaining > 0 else None,
                )
            except asyncio.TimeoutError:
                raise self._wait_timeout(job_id, max_wait, polls) from None
            except DispatchException as ex:
                if not is_retryable_error(ex):
                    raise
                logger.warning(
                    "Status poll failed, will poll again",
                    {"error_type": type(ex).__name__, "poll_attempt": polls},
                )
            else:
                if job.is_terminal:
                    return job

            remaining = deadline - self._monotonic()
            if remaining > 0:
                await self._sleep(min(self.config.poll_interval, remaining))

    def _wait_timeout(self, job_id: str, max_wait: float, polls: int) -> TimeoutError:
        return TimeoutError(
            f"{self.provider} job {job_id} did not finish within {max_wait}s",
            provider=self.provider,
            request_id=job_id,
            raw_response={"status": "timeout", "poll_attempts": polls},
            timeout_seconds=max_wait,
        )

    async def cancel_job(self, job_id: str) -> bool:
        """Ask the provider to cancel ``job_id``. Best effort, never raises."""
        logger = self._logger.with_request_id(job_id)
        if self.cancel_path is None:
            logger.warning("Provider does not support cancellation")
            return False
        try:
            await self._request(
                "POST", self._url(f"{self.cancel_path}/{job_id}"), request_id=job_id
            )
        except DispatchException as ex:
            logger.warning(
                "Cancel request failed",
                {"error_type": type(ex).__name__, "error_message": str(ex)},
            )
            return False
        logger.info("Cancel request accepted")
        return True

    async def health_check(self) -> bool:
        """Lightweight availability check. Never raises."""
        try:
            response = await self._get_client().get(
                self._url(self.health_path),
                headers=self._headers(),
                timeout=self.config.timeout,
            )
        except httpx.HTTPError as ex:
            self._logger.warning("Health check failed", {"error": str(ex)})
            return False
        return response.is_success

    def get_usage_stats(self) -> UsageStats:
        return self.guard.get_stats()

    def reset_safety_limits(self) -> None:
        self.guard.reset()
