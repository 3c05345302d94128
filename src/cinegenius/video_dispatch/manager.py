"""Provider selection and failover for video generation."""

import asyncio
import dataclasses
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Protocol

import httpx

from cinegenius.video_dispatch.config import DispatchSettings
from cinegenius.video_dispatch.exceptions import (
    AllProvidersFailedError,
    DispatchException,
    ValidationError,
    is_provider_skip_error,
)
from cinegenius.video_dispatch.logging import log_decision, log_info, log_warning
from cinegenius.video_dispatch.models import (
    PROVIDER_NAMES,
    AttemptMetadata,
    ExecutionMetadata,
    GenerationJob,
    GenerationRequest,
    GenerationResponse,
    LoadBalancingStrategy,
    ProviderHealth,
    ProviderInfo,
    ProviderName,
    ProviderPreference,
    UsageStats,
    default_preferences,
)
from cinegenius.video_dispatch.planning import STRATEGY_KEYS, order_preferences
from cinegenius.video_dispatch.providers import CLIENT_CLASSES, VideoProviderClient

_LOGGER_NAME = "cinegenius.video_dispatch.manager"


class ScoringPolicy(Protocol):
    """Adjusts a provider's weight after each attempt."""

    def on_success(self, weight: float) -> float: ...

    def on_failure(self, weight: float) -> float: ...


class WeightScoringPolicy:
    """Additive reward and penalty, clamped to ``[min_weight, max_weight]``."""

    def __init__(
        self,
        success_bonus: float = 0.1,
        failure_penalty: float = 0.5,
        min_weight: float = 1.0,
        max_weight: float = 10.0,
    ) -> None:
        self.success_bonus = success_bonus
        self.failure_penalty = failure_penalty
        self.min_weight = min_weight
        self.max_weight = max_weight

    def on_success(self, weight: float) -> float:
        return min(self.max_weight, weight + self.success_bonus)

    def on_failure(self, weight: float) -> float:
        return max(self.min_weight, weight - self.failure_penalty)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class OrchestrationManager:
    """Chooses a provider for each request and fails over on errors.

    Candidates are the enabled, configured providers whose capability
    matches the request, ordered by the active strategy (ties keep the
    preference table order). They are tried strictly one after another:

    - guard refusals and capability mismatches always skip to the next one
    - other failures skip when failover is enabled, otherwise re-raise
    - the first success is returned with ``ExecutionMetadata`` attached

    Each attempt adjusts the provider's weight through the scoring policy.

    Example:
        ```python
        manager = OrchestrationManager.from_settings()
        response = await manager.generate_video(
            GenerationRequest(prompt="Waves at dusk", image_url="https://...")
        )
        job = await manager.wait_for_completion(response.provider, response.id)
        ```
    """

    def __init__(
        self,
        clients: Mapping[ProviderName, VideoProviderClient],
        preferences: list[ProviderPreference] | None = None,
        strategy: LoadBalancingStrategy = "cost-optimized",
        enable_failover: bool = True,
        scoring: ScoringPolicy | None = None,
    ) -> None:
        self._clients: dict[ProviderName, VideoProviderClient] = dict(clients)
        self._preferences = preferences if preferences is not None else default_preferences()
        self.strategy: LoadBalancingStrategy = strategy
        self.enable_failover = enable_failover
        self.scoring: ScoringPolicy = scoring or WeightScoringPolicy()

    @classmethod
    def from_settings(
        cls,
        settings: DispatchSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> "OrchestrationManager":
        """Build clients for every provider with an API key in the environment."""
        settings = settings or DispatchSettings()
        configs = settings.provider_configs()

        clients: dict[ProviderName, VideoProviderClient] = {}
        for provider in PROVIDER_NAMES:
            config = configs.get(provider)
            if config is None:
                log_warning(
                    "Provider not configured, skipping",
                    context={"provider": provider},
                    logger_name=_LOGGER_NAME,
                )
                continue
            clients[provider] = CLIENT_CLASSES[provider](config, http_client=http_client)

        log_info(
            "Orchestration manager initialized",
            context={
                "providers": list(clients),
                "strategy": settings.video_dispatch_strategy,
                "enable_failover": settings.video_dispatch_enable_failover,
            },
            logger_name=_LOGGER_NAME,
        )
        return cls(
            clients,
            strategy=settings.video_dispatch_strategy,
            enable_failover=settings.video_dispatch_enable_failover,
        )

    # ==================== Selection ====================

    def _preference(self, provider: str) -> ProviderPreference | None:
        for preference in self._preferences:
            if preference.provider == provider:
                return preference
        return None

    def _is_available(self, preference: ProviderPreference) -> bool:
        return preference.enabled and preference.provider in self._clients

    def get_candidates(self, request: GenerationRequest) -> list[ProviderPreference]:
        """Eligible providers for ``request`` in the order they will be tried."""
        eligible = [
            p
            for p in self._preferences
            if self._is_available(p)
            and self._clients[p.provider].capability.supports(request)
        ]
        return order_preferences(eligible, self.strategy)

    # ==================== Generation ====================

    async def generate_video(self, request: GenerationRequest) -> GenerationResponse:
        """Generate a video on the best provider available, failing over as needed.

        Raises:
            AllProvidersFailedError: No provider was eligible or every one failed.
            DispatchException: A provider failed and failover is disabled.
        """
        candidates = self.get_candidates(request)
        if not candidates:
            log_decision(
                "error",
                "none",
                "exhausted",
                "no_eligible_provider",
                {
                    "strategy": self.strategy,
                    "configured": list(self._clients),
                },
                logger_name=_LOGGER_NAME,
            )
            raise AllProvidersFailedError(
                "No enabled provider supports this request",
            )

        log_info(
            "Starting provider selection",
            context={
                "strategy": self.strategy,
                "candidates": [c.provider for c in candidates],
            },
            logger_name=_LOGGER_NAME,
        )

        attempts: list[AttemptMetadata] = []
        last_error: DispatchException | None = None

        for attempt_number, preference in enumerate(candidates, start=1):
            provider = preference.provider
            attempt = AttemptMetadata(
                provider=provider,
                attempt_number=attempt_number,
                started_at=_now(),
                ended_at=None,
                status="failed",
                error_type=None,
                error_message=None,
            )
            attempts.append(attempt)
            log_decision(
                "info",
                provider,
                "selected",
                self.strategy,
                {"attempt_number": attempt_number, "weight": preference.weight},
                logger_name=_LOGGER_NAME,
            )

            try:
                job = await self._clients[provider].generate_video(request)
            except DispatchException as ex:
                attempt.ended_at = _now()
                attempt.error_type = type(ex).__name__
                attempt.error_message = str(ex)
                last_error = ex
                preference.weight = self.scoring.on_failure(preference.weight)

                if is_provider_skip_error(ex):
                    attempt.status = "skipped"
                elif not self.enable_failover:
                    attempt.decision = "abort"
                    log_decision(
                        "error",
                        provider,
                        "abort",
                        type(ex).__name__,
                        {"error_message": str(ex), "attempt_number": attempt_number},
                        logger_name=_LOGGER_NAME,
                    )
                    raise

                attempt.decision = "failover"
                log_decision(
                    "warning",
                    provider,
                    "failover",
                    type(ex).__name__,
                    {
                        "error_message": str(ex),
                        "attempt_number": attempt_number,
                        "weight": preference.weight,
                    },
                    logger_name=_LOGGER_NAME,
                )
                continue

            attempt.ended_at = _now()
            attempt.status = "success"
            attempt.request_id = job.id
            preference.weight = self.scoring.on_success(preference.weight)

            log_decision(
                "info",
                provider,
                "succeeded",
                job.status,
                {"request_id": job.id, "total_attempts": len(attempts)},
                logger_name=_LOGGER_NAME,
            )
            return self._with_metadata(
                job,
                ExecutionMetadata(
                    total_attempts=len(attempts),
                    successful_attempt=attempt_number,
                    attempts=attempts,
                    failover_triggered=attempt_number > 1,
                    candidates=len(candidates),
                ),
            )

        attempted = [a.provider for a in attempts]
        log_decision(
            "error",
            attempted[-1],
            "exhausted",
            type(last_error).__name__,
            {"attempted_providers": attempted},
            logger_name=_LOGGER_NAME,
        )
        raise AllProvidersFailedError(
            f"All providers failed: {', '.join(attempted)}",
            attempted_providers=attempted,
            attempts=attempts,
            last_error=last_error,
        ) from last_error

    async def generate_video_with_provider(
        self, provider: ProviderName, request: GenerationRequest
    ) -> GenerationResponse:
        """Generate on one named provider, with no failover."""
        preference = self._preference(provider)
        client = self._clients.get(provider)
        if client is None or preference is None or not preference.enabled:
            raise ValidationError(
                f"Provider '{provider}' is not available",
                provider=provider,
                code="PROVIDER_UNAVAILABLE",
            )

        attempt = AttemptMetadata(
            provider=provider,
            attempt_number=1,
            started_at=_now(),
            ended_at=None,
            status="failed",
            error_type=None,
            error_message=None,
        )
        try:
            job = await client.generate_video(request)
        except DispatchException:
            preference.weight = self.scoring.on_failure(preference.weight)
            raise

        preference.weight = self.scoring.on_success(preference.weight)
        attempt.ended_at = _now()
        attempt.status = "success"
        attempt.request_id = job.id
        return self._with_metadata(
            job,
            ExecutionMetadata(
                total_attempts=1,
                successful_attempt=1,
                attempts=[attempt],
                failover_triggered=False,
                candidates=1,
            ),
        )

    @staticmethod
    def _with_metadata(
        job: GenerationJob, metadata: ExecutionMetadata
    ) -> GenerationResponse:
        return GenerationResponse(**job.model_dump(), execution_metadata=metadata)

    # ==================== Jobs ====================

    def _require_client(self, provider: str) -> VideoProviderClient:
        client = self._clients.get(provider)
        if client is None:
            raise ValidationError(
                f"Provider '{provider}' is not configured",
                provider=provider,
                code="PROVIDER_UNAVAILABLE",
            )
        return client

    async def check_status(self, provider: ProviderName, job_id: str) -> GenerationJob:
        return await self._require_client(provider).check_status(job_id)

    async def wait_for_completion(
        self,
        provider: ProviderName,
        job_id: str,
        max_wait_seconds: float | None = None,
    ) -> GenerationJob:
        return await self._require_client(provider).wait_for_completion(
            job_id, max_wait_seconds
        )

    async def cancel_job(self, provider: str, job_id: str) -> bool:
        """Best-effort cancel. Unknown providers return False."""
        client = self._clients.get(provider)
        if client is None:
            return False
        return await client.cancel_job(job_id)

    # ==================== Operations ====================

    def get_client(self, provider: str) -> VideoProviderClient | None:
        return self._clients.get(provider)

    def get_preferences(self) -> list[ProviderPreference]:
        """Copies of the current preference table."""
        return [dataclasses.replace(p) for p in self._preferences]

    def set_provider_enabled(self, provider: ProviderName, enabled: bool) -> None:
        preference = self._preference(provider)
        if preference is None:
            raise ValidationError(
                f"Unknown provider '{provider}'", provider=provider, code="UNKNOWN_PROVIDER"
            )
        preference.enabled = enabled
        log_info(
            "Provider availability changed",
            context={"provider": provider, "enabled": enabled},
            logger_name=_LOGGER_NAME,
        )

    def set_strategy(self, strategy: LoadBalancingStrategy) -> None:
        if strategy not in STRATEGY_KEYS:
            raise ValidationError(
                f"Unknown load balancing strategy '{strategy}'", code="UNKNOWN_STRATEGY"
            )
        self.strategy = strategy
        log_info(
            "Load balancing strategy changed",
            context={"strategy": strategy},
            logger_name=_LOGGER_NAME,
        )

    def get_provider_info(self) -> list[ProviderInfo]:
        infos = []
        for preference in self._preferences:
            client = self._clients.get(preference.provider)
            infos.append(
                ProviderInfo(
                    provider=preference.provider,
                    enabled=preference.enabled,
                    weight=preference.weight,
                    capability=CLIENT_CLASSES[preference.provider].capability,
                    is_available=(
                        self._is_available(preference)
                        and client is not None
                        and client.guard.would_admit()
                    ),
                )
            )
        return infos

    def get_all_usage_stats(self) -> dict[ProviderName, UsageStats]:
        return {name: client.get_usage_stats() for name, client in self._clients.items()}

    async def get_provider_health(self) -> dict[ProviderName, ProviderHealth]:
        """Health-check every configured provider concurrently."""
        names = list(self._clients)
        results = await asyncio.gather(
            *(self._clients[name].health_check() for name in names)
        )
        checked_at = _now()
        return {
            name: ProviderHealth(
                provider=name,
                healthy=healthy,
                checked_at=checked_at,
                stats=self._clients[name].get_usage_stats(),
            )
            for name, healthy in zip(names, results)
        }

    def reset_all_safety_limits(self) -> None:
        for client in self._clients.values():
            client.reset_safety_limits()

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
