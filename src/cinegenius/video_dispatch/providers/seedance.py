"""ByteDance Seedance client for image-to-video generation."""

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

_LOGGER_NAME = "cinegenius.video_dispatch.providers.seedance"

_BASE_COST = 0.03  # USD per 5 seconds at medium quality

CameraMotion = Literal[
    "static", "pan_left", "pan_right", "zoom_in", "zoom_out", "dolly_in", "dolly_out"
]
SeedanceStyle = Literal["realistic", "cinematic", "artistic", "animated"]
SeedanceResolution = Literal["1024x576", "576x1024", "768x768"]

_RESOLUTIONS: dict[str, SeedanceResolution] = {
    "16:9": "1024x576",
    "9:16": "576x1024",
    "1:1": "768x768",
}

_STYLES: dict[str, SeedanceStyle] = {
    "realistic": "realistic",
    "cinematic": "cinematic",
    "artistic": "artistic",
    "animation": "animated",
    "sketch": "animated",
}

_STATUS_MAP: dict[str, JobStatus] = {
    "queued": "pending",
    "processing": "processing",
    "completed": "completed",
    "failed": "failed",
    "cancelled": "cancelled",
}


def camera_motion_for(motion_level: float) -> CameraMotion:
    """Pick a camera move matching the requested amount of motion."""
    if motion_level < 0.2:
        return "static"
    if motion_level < 0.4:
        return "zoom_in"
    if motion_level < 0.6:
        return "pan_right"
    if motion_level < 0.8:
        return "dolly_in"
    return "zoom_out"


class SeedanceVideoRequest(BaseModel):
    """Body of ``POST /video/i2v/generate``."""

    image_url: str = Field(min_length=1)
    prompt: str = Field(min_length=1)
    duration: float = Field(default=5, ge=1, le=30)
    motion_strength: float = Field(default=0.5, ge=0, le=1)
    camera_motion: CameraMotion = "static"
    style: SeedanceStyle = "realistic"
    resolution: SeedanceResolution = "1024x576"
    fps: int = Field(default=24, ge=12, le=30)
    seed: int | None = Field(default=None, ge=0)
    negative_prompt: str | None = None
    model: Literal["seedance-v2"] = "seedance-v2"
    metadata: AnyDict = Field(default_factory=dict)

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")


class SeedanceError(BaseModel):
    code: str
    message: str
    details: AnyDict | None = None


class SeedanceVideoResponse(BaseModel):
    job_id: str
    status: Literal["queued", "processing", "completed", "failed", "cancelled"]
    video_url: str | None = None
    thumbnail_url: str | None = None
    preview_url: str | None = None
    duration: float | None = None
    progress: float = Field(default=0, ge=0, le=100)
    queue_position: int | None = None
    estimated_time: float | None = None
    error: SeedanceError | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    input_image_url: str | None = None
    input_prompt: str | None = None
    cost: float | None = Field(default=None, ge=0)
    metadata: AnyDict | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore")


class SeedanceClient(VideoProviderClient):
    """Client for the Seedance v2 image-to-video API.

    Seedance reports the realized cost of a job, which is fed back to the
    cost guard after submission.
    """

    provider = "seedance"
    logger_name = _LOGGER_NAME
    capability = ProviderCapability(
        image_to_video=True,
        text_to_video=False,
        max_duration=30,
        supported_qualities=frozenset({"medium", "high"}),
        supported_styles=frozenset({"realistic", "cinematic", "artistic"}),
        supported_aspect_ratios=frozenset({"16:9", "9:16", "1:1"}),
    )

    generate_path = "/video/i2v/generate"
    status_path = "/video/status"
    cancel_path = "/video/cancel"

    @classmethod
    def estimate_cost(cls, request: GenerationRequest) -> float:
        return (
            _BASE_COST
            * (request.duration_seconds / 5)
            * QUALITY_MULTIPLIERS[request.quality]
            * (1 + request.motion_level * 0.5)
        )

    def _convert_request(self, request: GenerationRequest) -> AnyDict:
        payload = {
            "image_url": request.image_url,
            "prompt": request.prompt,
            "duration": request.duration_seconds,
            "motion_strength": request.motion_level,
            "camera_motion": camera_motion_for(request.motion_level),
            "style": _STYLES.get(request.style, "realistic"),
            "resolution": _RESOLUTIONS.get(request.aspect_ratio, "1024x576"),
            "fps": min(request.fps, 30),
            "seed": request.seed,
            "negative_prompt": request.negative_prompt,
            "metadata": self._echo_metadata(request),
        }
        validated = self._validate_wire(SeedanceVideoRequest, payload, "INVALID_REQUEST")
        return validated.model_dump(exclude_none=True)

    def _convert_response(
        self, data: AnyDict, request: GenerationRequest | None
    ) -> GenerationJob:
        wire = self._validate_wire(SeedanceVideoResponse, data, "INVALID_RESPONSE")

        echoed = self._echo_fields(request, wire.metadata)
        if request is None:
            echoed["prompt"] = echoed["prompt"] or wire.input_prompt
            echoed["image_url"] = echoed["image_url"] or wire.input_image_url

        return GenerationJob(
            id=wire.job_id,
            provider=self.provider,
            status=_STATUS_MAP[wire.status],
            progress=wire.progress,
            video_url=wire.video_url,
            thumbnail_url=wire.thumbnail_url or wire.preview_url,
            duration=wire.duration,
            error=(
                JobError(code=wire.error.code, message=wire.error.message)
                if wire.error
                else None
            ),
            created_at=wire.created_at,
            updated_at=wire.updated_at,
            completed_at=wire.completed_at,
            external_job_id=wire.job_id,
            cost=wire.cost,
            estimated_completion_seconds=wire.estimated_time,
            raw_response=data,
            **echoed,
        )
