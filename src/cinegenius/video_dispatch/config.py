"""Per-provider limits, endpoints and environment-driven settings."""

from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from cinegenius.video_dispatch.models import LoadBalancingStrategy, ProviderName
from cinegenius.video_dispatch.retry import RetryPolicy

__all__ = [
    "CostLimits",
    "DEFAULT_COST_LIMITS",
    "DEFAULT_PROVIDER_CONFIGS",
    "DispatchSettings",
    "ProviderConfig",
    "RetryPolicy",
]


class CostLimits(BaseModel):
    """Hard ceilings enforced by one provider's ``CostSafetyGuard``."""

    min_interval_seconds: float = Field(ge=0, description="Minimum gap between calls.")
    max_requests_per_hour: int = Field(ge=1)
    max_daily_cost: float = Field(ge=0, description="USD per calendar day.")
    max_monthly_cost: float = Field(ge=0, description="USD per calendar month.")

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


DEFAULT_COST_LIMITS: dict[ProviderName, CostLimits] = {
    "runway": CostLimits(
        min_interval_seconds=15,
        max_requests_per_hour=20,
        max_daily_cost=50,
        max_monthly_cost=1000,
    ),
    "seedance": CostLimits(
        min_interval_seconds=12,
        max_requests_per_hour=25,
        max_daily_cost=30,
        max_monthly_cost=600,
    ),
    "stable-video": CostLimits(
        min_interval_seconds=10,
        max_requests_per_hour=30,
        max_daily_cost=40,
        max_monthly_cost=800,
    ),
}


class ProviderConfig(BaseModel):
    """Everything a provider client needs besides its HTTP transport."""

    provider: ProviderName
    api_key: str | None = Field(default=None, description="Provider API key.")
    base_url: str
    model: str = Field(description="Provider model identifier sent on the wire.")
    timeout: float = Field(default=60, gt=0, description="Per-request timeout in seconds.")
    poll_interval: float = Field(default=5, ge=0, description="Seconds between status polls.")
    max_wait_seconds: float = Field(
        default=600, gt=0, description="Wall-clock deadline for wait_for_completion."
    )
    max_tracked_jobs: int = Field(
        default=256,
        ge=1,
        description="Jobs whose request and terminal snapshot a client remembers.",
    )
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    limits: CostLimits

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


DEFAULT_PROVIDER_CONFIGS: dict[ProviderName, ProviderConfig] = {
    "runway": ProviderConfig(
        provider="runway",
        base_url="https://api.runwayml.com/v1",
        model="gen3a",
        timeout=45,
        poll_interval=5,
        max_wait_seconds=600,
        retry=RetryPolicy(max_attempts=3, base_delay=1, multiplier=2, cap_delay=5),
        limits=DEFAULT_COST_LIMITS["runway"],
    ),
    "seedance": ProviderConfig(
        provider="seedance",
        base_url="https://api.seedance.bytedance.com/v2",
        model="seedance-v2",
        timeout=60,
        poll_interval=3,
        max_wait_seconds=900,
        retry=RetryPolicy(max_attempts=3, base_delay=1, multiplier=2, cap_delay=5),
        limits=DEFAULT_COST_LIMITS["seedance"],
    ),
    "stable-video": ProviderConfig(
        provider="stable-video",
        base_url="https://api.stability.ai/v2alpha",
        model="stable-video-diffusion",
        timeout=120,
        poll_interval=10,
        max_wait_seconds=1800,
        retry=RetryPolicy(max_attempts=3, base_delay=1, multiplier=2, cap_delay=10),
        limits=DEFAULT_COST_LIMITS["stable-video"],
    ),
}


class DispatchSettings(BaseSettings):
    """Settings read from the environment (or a ``.env`` file).

    Example:
        ```bash
        export RUNWAY_API_KEY=rw_...
        export STABILITY_API_KEY=sk-...
        export VIDEO_DISPATCH_STRATEGY=quality-first
        ```
    """

    runway_api_key: str | None = None
    runway_api_url: str = DEFAULT_PROVIDER_CONFIGS["runway"].base_url
    runway_timeout: float = DEFAULT_PROVIDER_CONFIGS["runway"].timeout

    seedance_api_key: str | None = None
    seedance_api_url: str = DEFAULT_PROVIDER_CONFIGS["seedance"].base_url
    seedance_timeout: float = DEFAULT_PROVIDER_CONFIGS["seedance"].timeout

    stability_api_key: str | None = None
    stable_video_api_url: str = DEFAULT_PROVIDER_CONFIGS["stable-video"].base_url
    stable_video_timeout: float = DEFAULT_PROVIDER_CONFIGS["stable-video"].timeout

    video_dispatch_strategy: LoadBalancingStrategy = "cost-optimized"
    video_dispatch_enable_failover: bool = True

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def provider_configs(self) -> dict[ProviderName, ProviderConfig]:
        """Configs for every provider that has an API key set."""
        overrides: dict[ProviderName, tuple[str | None, str, float]] = {
            "runway": (self.runway_api_key, self.runway_api_url, self.runway_timeout),
            "seedance": (
                self.seedance_api_key,
                self.seedance_api_url,
                self.seedance_timeout,
            ),
            "stable-video": (
                self.stability_api_key,
                self.stable_video_api_url,
                self.stable_video_timeout,
            ),
        }
        configs: dict[ProviderName, ProviderConfig] = {}
        for provider, (api_key, base_url, timeout) in overrides.items():
            if not api_key:
                continue
            configs[provider] = DEFAULT_PROVIDER_CONFIGS[provider].model_copy(
                update={"api_key": api_key, "base_url": base_url, "timeout": timeout}
            )
        return configs
