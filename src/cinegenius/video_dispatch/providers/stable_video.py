"""Stability AI Stable Video Diffusion client."""

import base64
from datetime import datetime
from typing import ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field

from cinegenius.video_dispatch.models import (
    AnyDict,
    GenerationJob,
    GenerationRequest,
    JobError,
    JobStatus,
    ProviderCapability,
)
from cinegenius.video_dispatch.providers.base import VideoProviderClient

_LOGGER_NAME = "cinegenius.video_dispatch.providers.stable_video"

_FLAT_COST = 0.04  # USD per generation
_FRAMES = 25
_CLIP_SECONDS = 4.0

_CFG_SCALES: dict[str, float] = {
    "low": 1.8,
    "medium": 2.5,
    "high": 3.5,
    "ultra": 4.5,
}

_STATUS_MAP: dict[str, JobStatus] = {
    "in-progress": "processing",
    "complete": "completed",
    "failed": "failed",
}

_PROGRESS: dict[str, float] = {
    "in-progress": 50,
    "complete": 100,
    "failed": 0,
}


class StableVideoRequest(BaseModel):
    """Body of ``POST /generation/image-to-video``."""

    image: str = Field(min_length=1)
    cfg_scale: float = Field(default=2.5, ge=0, le=10)
    motion_bucket_id: int = Field(default=40, ge=1, le=255)
    seed: int | None = Field(default=None, ge=0, le=4294967294)
    steps: int = Field(default=25, ge=10, le=50)
    fps: int = Field(default=24, ge=6, le=30)
    duration: int = Field(default=_FRAMES, ge=1, le=_FRAMES, description="Frames.")
    metadata: AnyDict = Field(default_factory=dict)

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")


class StableVideoResponse(BaseModel):
    id: str
    status: Literal["in-progress", "complete", "failed"]
    video: str | None = None
    image: str | None = None
    seed: int | None = None
    finish_reason: str | None = None
    errors: list[str] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    metadata: AnyDict | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore")


class StableVideoClient(VideoProviderClient):
    """Client for Stable Video Diffusion.

    The API has no cancel endpoint, so ``cancel_job`` always returns False.
    When a job completes without a hosted URL the clip is downloaded and
    exposed as a ``data:`` URL.
    """

    provider = "stable-video"
    logger_name = _LOGGER_NAME
    capability = ProviderCapability(
        image_to_video=True,
        text_to_video=False,
        max_duration=_CLIP_SECONDS,
        supported_qualities=frozenset({"medium", "high"}),
        supported_styles=frozenset({"realistic"}),
        supported_aspect_ratios=frozenset({"16:9", "9:16", "1:1"}),
    )

    generate_path = "/generation/image-to-video"
    status_path = "/generation"
    health_path = "/user/balance"

    @classmethod
    def estimate_cost(cls, request: GenerationRequest) -> float:
        return _FLAT_COST

    def _convert_request(self, request: GenerationRequest) -> AnyDict:
        payload = {
            "image": request.image_url,
            "cfg_scale": _CFG_SCALES.get(request.quality, 2.5),
            "motion_bucket_id": round(request.motion_level * 200 + 40),
            "seed": request.seed,
            "steps": 40 if request.quality == "high" else 25,
            "fps": min(request.fps, 30),
            "duration": _FRAMES,
            "metadata": self._echo_metadata(request),
        }
        validated = self._validate_wire(StableVideoRequest, payload, "INVALID_REQUEST")
        return validated.model_dump(exclude_none=True)

    def _convert_response(
        self, data: AnyDict, request: GenerationRequest | None
    ) -> GenerationJob:
        wire = self._validate_wire(StableVideoResponse, data, "INVALID_RESPONSE")

        echoed = self._echo_fields(request, wire.metadata)
        if wire.seed is not None:
            echoed["seed"] = wire.seed

        error = None
        if wire.status == "failed":
            error = JobError(
                code="GENERATION_FAILED",
                message=", ".join(wire.errors or []) or wire.finish_reason or "unknown error",
            )

        return GenerationJob(
            id=wire.id,
            provider=self.provider,
            status=_STATUS_MAP[wire.status],
            progress=_PROGRESS[wire.status],
            video_url=wire.video,
            thumbnail_url=wire.image,
            duration=_CLIP_SECONDS,
            error=error,
            created_at=wire.created_at,
            updated_at=wire.updated_at,
            completed_at=wire.updated_at if wire.status == "complete" else None,
            external_job_id=wire.id,
            raw_response=data,
            **echoed,
        )

    async def _finalize(self, job: GenerationJob) -> GenerationJob:
        """Fetch the rendered clip for a completed job that has no URL yet."""
        if job.video_url:
            return job

        response = await self._request(
            "GET", self._status_url(job.id), accept="video/*", request_id=job.id
        )
        content_type = response.headers.get("content-type", "video/mp4").split(";")[0]
        if content_type == "application/json":
            video_url = self._parse_json(response).get("video")
        else:
            encoded = base64.b64encode(response.content).decode("ascii")
            video_url = f"data:{content_type};base64,{encoded}"

        self._logger.with_request_id(job.id).info(
            "Fetched completed result", {"content_type": content_type}
        )
        return job.model_copy(update={"video_url": video_url})
