"""Runway Gen-3 client for text-to-video and image-to-video generation."""

from datetime import datetime
from typing import ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field

from cinegenius.video_dispatch.models import (
    QUALITY_MULTIPLIERS,
    AnyDict,
    GenerationJob,
    GenerationRequest,
    JobError,
    JobStatus,
    ProviderCapability,
)
from cinegenius.video_dispatch.providers.base import VideoProviderClient

_LOGGER_NAME = "cinegenius.video_dispatch.providers.runway"

_BASE_COST = 0.05  # USD per 5 seconds at medium quality

RunwayResolution = Literal["1280x768", "768x1280", "1024x1024"]

_RESOLUTIONS: dict[str, RunwayResolution] = {
    "16:9": "1280x768",
    "9:16": "768x1280",
    "1:1": "1024x1024",
    "4:3": "1280x768",
}

_STATUS_MAP: dict[str, JobStatus] = {
    "queued": "pending",
    "processing": "processing",
    "completed": "completed",
    "failed": "failed",
    "cancelled": "cancelled",
}


class RunwayVideoRequest(BaseModel):
    """Body of ``POST /video/generate``."""

    prompt: str = Field(min_length=1)
    image: str | None = None
    duration: float = Field(default=5, ge=1, le=10)
    resolution: RunwayResolution = "1280x768"
    motion_intensity: float = Field(default=0.5, ge=0, le=1)
    seed: int | None = Field(default=None, ge=0)
    model: Literal["gen3a"] = "gen3a"
    watermark: bool = False
    metadata: AnyDict = Field(default_factory=dict)

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")


class RunwayError(BaseModel):
    code: str
    message: str
    details: AnyDict | None = None


class RunwayVideoResponse(BaseModel):
    """Job payload returned by the generate and status endpoints."""

    id: str
    status: Literal["queued", "processing", "completed", "failed", "cancelled"]
    video_url: str | None = None
    thumbnail_url: str | None = None
    duration: float | None = None
    progress: float = Field(default=0, ge=0, le=100)
    error: RunwayError | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    estimated_time_remaining: float | None = None
    queue_position: int | None = None
    metadata: AnyDict | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore")


class RunwayClient(VideoProviderClient):
    """Client for the Runway Gen-3 Alpha API."""

    provider = "runway"
    logger_name = _LOGGER_NAME
    capability = ProviderCapability(
        image_to_video=True,
        text_to_video=True,
        max_duration=10,
        supported_qualities=frozenset({"medium", "high"}),
        supported_styles=frozenset({"realistic", "cinematic"}),
        supported_aspect_ratios=frozenset({"16:9", "9:16", "1:1"}),
    )

    generate_path = "/video/generate"
    status_path = "/video/status"
    cancel_path = "/video/cancel"

    @classmethod
    def estimate_cost(cls, request: GenerationRequest) -> float:
        return _BASE_COST * (request.duration_seconds / 5) * QUALITY_MULTIPLIERS[request.quality]

    def _convert_request(self, request: GenerationRequest) -> AnyDict:
        payload = {
            "prompt": request.prompt,
            "image": request.image_url,
            "duration": min(request.duration_seconds, 10),
            "resolution": _RESOLUTIONS.get(request.aspect_ratio, "1280x768"),
            "motion_intensity": request.motion_level,
            "seed": request.seed,
            "metadata": self._echo_metadata(request),
        }
        validated = self._validate_wire(RunwayVideoRequest, payload, "INVALID_REQUEST")
        return validated.model_dump(exclude_none=True)

    def _convert_response(
        self, data: AnyDict, request: GenerationRequest | None
    ) -> GenerationJob:
        wire = self._validate_wire(RunwayVideoResponse, data, "INVALID_RESPONSE")
        return GenerationJob(
            id=wire.id,
            provider=self.provider,
            status=_STATUS_MAP[wire.status],
            progress=wire.progress,
            video_url=wire.video_url,
            thumbnail_url=wire.thumbnail_url,
            duration=wire.duration,
            error=(
                JobError(code=wire.error.code, message=wire.error.message)
                if wire.error
                else None
            ),
            created_at=wire.created_at,
            updated_at=wire.updated_at,
            completed_at=wire.completed_at,
            external_job_id=wire.id,
            estimated_completion_seconds=wire.estimated_time_remaining,
            raw_response=data,
            **self._echo_fields(request, wire.metadata),
        )
