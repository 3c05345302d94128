"""Cost-guarded dispatch of video generation requests across providers."""

import importlib.metadata

try:
    __version__ = importlib.metadata.version("cinegenius-video-dispatch")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.1.0"

from .api import (
    cancel_video_job,
    check_video_status,
    generate_video,
    generate_video_with,
    get_default_manager,
    get_video_generation_stats,
    get_video_provider_status,
    set_default_manager,
    wait_for_video,
)
from .config import CostLimits, DispatchSettings, ProviderConfig, RetryPolicy
from .exceptions import (
    AllProvidersFailedError,
    CostSafetyError,
    DispatchException,
    GenerationFailedError,
    IncompatibleRequestError,
    NetworkError,
    ProviderError,
    QuotaExceededError,
    RateLimitExceededError,
    TimeoutError,
    ValidationError,
)
from .guard import CostSafetyGuard
from .manager import OrchestrationManager, WeightScoringPolicy
from .models import (
    GenerationJob,
    GenerationRequest,
    GenerationResponse,
    JobStatus,
    ProviderCapability,
    ProviderName,
    UsageStats,
)
from .planning import (
    estimate_generation_cost,
    get_optimal_provider_mix,
    get_recommended_provider,
    is_provider_compatible,
)
from .providers import RunwayClient, SeedanceClient, StableVideoClient

__all__ = [
    # API functions
    "generate_video",
    "generate_video_with",
    "check_video_status",
    "wait_for_video",
    "cancel_video_job",
    "get_video_generation_stats",
    "get_video_provider_status",
    "get_default_manager",
    "set_default_manager",
    # Planning
    "estimate_generation_cost",
    "get_optimal_provider_mix",
    "get_recommended_provider",
    "is_provider_compatible",
    # Core components
    "CostSafetyGuard",
    "OrchestrationManager",
    "WeightScoringPolicy",
    "RunwayClient",
    "SeedanceClient",
    "StableVideoClient",
    # Config
    "CostLimits",
    "DispatchSettings",
    "ProviderConfig",
    "RetryPolicy",
    # Models
    "GenerationJob",
    "GenerationRequest",
    "GenerationResponse",
    "JobStatus",
    "ProviderCapability",
    "ProviderName",
    "UsageStats",
    # Exceptions
    "AllProvidersFailedError",
    "CostSafetyError",
    "DispatchException",
    "GenerationFailedError",
    "IncompatibleRequestError",
    "NetworkError",
    "ProviderError",
    "QuotaExceededError",
    "RateLimitExceededError",
    "TimeoutError",
    "ValidationError",
]
