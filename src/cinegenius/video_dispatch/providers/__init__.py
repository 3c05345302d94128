"""Provider clients for cinegenius video dispatch."""

from cinegenius.video_dispatch.models import ProviderName
from cinegenius.video_dispatch.providers.base import VideoProviderClient
from cinegenius.video_dispatch.providers.runway import RunwayClient
from cinegenius.video_dispatch.providers.seedance import SeedanceClient
from cinegenius.video_dispatch.providers.stable_video import StableVideoClient

CLIENT_CLASSES: dict[ProviderName, type[VideoProviderClient]] = {
    "runway": RunwayClient,
    "seedance": SeedanceClient,
    "stable-video": StableVideoClient,
}

__all__ = [
    "CLIENT_CLASSES",
    "RunwayClient",
    "SeedanceClient",
    "StableVideoClient",
    "VideoProviderClient",
]
