"""Module-level convenience API over a default ``OrchestrationManager``.

The default manager is built from environment settings on first use.
Applications that need more than one configuration should construct
``OrchestrationManager`` instances themselves.
"""

from cinegenius.video_dispatch.logging import log_debug
from cinegenius.video_dispatch.manager import OrchestrationManager
from cinegenius.video_dispatch.models import (
    GenerationJob,
    GenerationRequest,
    GenerationResponse,
    ProviderHealth,
    ProviderName,
    UsageStats,
)

_LOGGER_NAME = "cinegenius.video_dispatch.api"

_default_manager: OrchestrationManager | None = None


def get_default_manager() -> OrchestrationManager:
    """Return the default manager, building it from the environment if needed."""
    global _default_manager
    if _default_manager is None:
        log_debug("Building default orchestration manager", logger_name=_LOGGER_NAME)
        _default_manager = OrchestrationManager.from_settings()
    return _default_manager


def set_default_manager(manager: OrchestrationManager | None) -> None:
    """Replace the default manager. ``None`` forces a rebuild on next use."""
    global _default_manager
    _default_manager = manager


async def generate_video(request: GenerationRequest) -> GenerationResponse:
    """Generate a video on the best available provider, with failover.

    Example:
        ```python
        from cinegenius.video_dispatch import GenerationRequest, generate_video

        response = await generate_video(
            GenerationRequest(
                prompt="A paper boat drifting down a rainy street",
                image_url="https://example.com/boat.png",
            )
        )
        print(response.provider, response.id, response.status)
        ```
    """
    return await get_default_manager().generate_video(request)


async def generate_video_with(
    provider: ProviderName, request: GenerationRequest
) -> GenerationResponse:
    """Generate a video on one specific provider, without failover."""
    return await get_default_manager().generate_video_with_provider(provider, request)


async def check_video_status(provider: ProviderName, job_id: str) -> GenerationJob:
    return await get_default_manager().check_status(provider, job_id)


async def wait_for_video(
    provider: ProviderName, job_id: str, max_wait_seconds: float | None = None
) -> GenerationJob:
    """Poll until the job is completed, failed or cancelled."""
    return await get_default_manager().wait_for_completion(
        provider, job_id, max_wait_seconds
    )


async def cancel_video_job(provider: str, job_id: str) -> bool:
    return await get_default_manager().cancel_job(provider, job_id)


def get_video_generation_stats() -> dict[ProviderName, UsageStats]:
    return get_default_manager().get_all_usage_stats()


async def get_video_provider_status() -> dict[ProviderName, ProviderHealth]:
    return await get_default_manager().get_provider_health()
