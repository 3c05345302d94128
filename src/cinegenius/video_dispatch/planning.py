"""Offline planning helpers: cost estimates, compatibility and provider choice.

None of these touch the network or any cost guard.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from cinegenius.video_dispatch.models import (
    GenerationRequest,
    LoadBalancingStrategy,
    ProviderName,
    ProviderPreference,
    default_preferences,
)
from cinegenius.video_dispatch.providers import CLIENT_CLASSES

# Provider assigned when nothing fits a request
DEFAULT_PROVIDER: ProviderName = "seedance"

STRATEGY_KEYS: dict[LoadBalancingStrategy, Callable[[ProviderPreference], float]] = {
    "cost-optimized": lambda p: p.cost_per_second / p.avg_quality_score,
    "quality-first": lambda p: -p.avg_quality_score,
    "speed-first": lambda p: p.avg_processing_time,
    "round-robin": lambda p: -p.weight,
    "manual": lambda p: -p.weight,
}


@dataclass(frozen=True)
class ProviderAssignment:
    provider: ProviderName
    estimated_cost: float
    compatible: bool


def order_preferences(
    preferences: Iterable[ProviderPreference], strategy: LoadBalancingStrategy
) -> list[ProviderPreference]:
    """Sort preferences for ``strategy``. Ties keep their original order."""
    return sorted(preferences, key=STRATEGY_KEYS[strategy])


def estimate_generation_cost(provider: ProviderName, request: GenerationRequest) -> float:
    """USD estimate the provider's guard would record for ``request``."""
    return CLIENT_CLASSES[provider].estimate_cost(request)


def is_provider_compatible(provider: ProviderName, request: GenerationRequest) -> bool:
    return CLIENT_CLASSES[provider].capability.supports(request)


def get_recommended_provider(
    request: GenerationRequest,
    preferences: list[ProviderPreference] | None = None,
) -> ProviderName | None:
    """Best compatible provider for ``request``, or None if none fits.

    High and ultra quality requests rank by quality, everything else by
    cost per unit of quality.
    """
    strategy: LoadBalancingStrategy = (
        "quality-first" if request.quality in ("high", "ultra") else "cost-optimized"
    )
    for preference in order_preferences(preferences or default_preferences(), strategy):
        if preference.enabled and is_provider_compatible(preference.provider, request):
            return preference.provider
    return None


def get_optimal_provider_mix(
    requests: Iterable[GenerationRequest],
) -> list[ProviderAssignment]:
    """Recommend a provider for each request of a batch, in order.

    Requests no provider can serve are assigned ``DEFAULT_PROVIDER`` with
    ``compatible=False``.
    """
    mix = []
    for request in requests:
        provider = get_recommended_provider(request)
        compatible = provider is not None
        if provider is None:
            provider = DEFAULT_PROVIDER
        mix.append(
            ProviderAssignment(
                provider=provider,
                estimated_cost=estimate_generation_cost(provider, request),
                compatible=compatible,
            )
        )
    return mix
