"""Core data models for video generation dispatch."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

# ==================== Type Aliases ====================
AnyDict: TypeAlias = dict[str, Any]

ProviderName = Literal["runway", "seedance", "stable-video"]
QualityTier = Literal["low", "medium", "high", "ultra"]
Style = Literal["realistic", "cinematic", "artistic", "animation", "sketch"]
AspectRatio = Literal["16:9", "9:16", "1:1", "4:3", "21:9"]
JobStatus = Literal["pending", "processing", "completed", "failed", "cancelled"]
LoadBalancingStrategy = Literal[
    "round-robin", "cost-optimized", "quality-first", "speed-first", "manual"
]

PROVIDER_NAMES: tuple[ProviderName, ...] = ("runway", "seedance", "stable-video")

# Jobs in these states never change again
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})

QUALITY_MULTIPLIERS: dict[str, float] = {
    "low": 0.8,
    "medium": 1.0,
    "high": 1.3,
    "ultra": 1.6,
}


# ==================== Request ====================


class GenerationRequest(BaseModel):
    """Provider-neutral description of a video to generate.

    Field bounds here are the generic schema check. Whether a particular
    provider can serve the request is decided separately by its
    ``ProviderCapability``.

    Example:
        ```python
        request = GenerationRequest(
            prompt="A lighthouse at dusk, waves crashing",
            image_url="https://example.com/lighthouse.png",
            duration_seconds=4,
            quality="high",
        )
        ```
    """

    prompt: str = Field(min_length=1, description="Text description of the video.")
    image_url: str | None = Field(
        default=None,
        description="Source image reference for image-to-video generation.",
    )
    duration_seconds: float = Field(
        default=5, gt=0, le=60, description="Requested video length in seconds."
    )
    quality: QualityTier = Field(default="medium", description="Quality tier.")
    style: Style = Field(
        default="realistic",
        description="Visual style hint. Descriptive only, never used for filtering.",
    )
    aspect_ratio: AspectRatio = Field(default="16:9", description="Output aspect ratio.")
    fps: int = Field(default=24, ge=12, le=60, description="Frames per second.")
    seed: int | None = Field(
        default=None, ge=0, description="Seed for reproducible generation."
    )
    negative_prompt: str | None = Field(
        default=None, description="What the video should avoid."
    )
    motion_level: float = Field(
        default=0.5, ge=0.0, le=1.0, description="Amount of motion, 0 still to 1 wild."
    )

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    @property
    def is_image_to_video(self) -> bool:
        return self.image_url is not None


# ==================== Capability ====================


class ProviderCapability(BaseModel):
    """Static description of what one provider can generate."""

    image_to_video: bool
    text_to_video: bool
    max_duration: float
    supported_qualities: frozenset[QualityTier]
    supported_styles: frozenset[Style]
    supported_aspect_ratios: frozenset[AspectRatio]

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    def incompatibilities(self, request: GenerationRequest) -> list[str]:
        """Return every reason this provider cannot serve ``request``.

        An empty list means the request is supported.
        """
        reasons: list[str] = []
        if request.is_image_to_video and not self.image_to_video:
            reasons.append("image-to-video not supported")
        if not request.is_image_to_video and not self.text_to_video:
            reasons.append("text-to-video not supported")
        if request.duration_seconds > self.max_duration:
            reasons.append(
                f"duration {request.duration_seconds}s exceeds maximum {self.max_duration}s"
            )
        if request.quality not in self.supported_qualities:
            reasons.append(f"quality '{request.quality}' not supported")
        if request.aspect_ratio not in self.supported_aspect_ratios:
            reasons.append(f"aspect ratio '{request.aspect_ratio}' not supported")
        return reasons

    def supports(self, request: GenerationRequest) -> bool:
        return not self.incompatibilities(request)


# ==================== Job ====================


class JobError(BaseModel):
    """Failure detail reported by a provider for a failed job."""

    code: str
    message: str

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


class GenerationJob(BaseModel):
    """Canonical snapshot of one provider job.

    Created when a provider accepts a submission and refreshed only by status
    polls against that same provider. Once ``status`` is terminal the snapshot
    never changes.
    """

    id: str = Field(description="Provider-assigned job ID.")
    provider: ProviderName
    status: JobStatus
    progress: float = Field(default=0, ge=0, le=100)
    video_url: str | None = None
    thumbnail_url: str | None = None
    duration: float | None = None

    prompt: str | None = None
    image_url: str | None = None
    quality: QualityTier | None = None
    style: Style | None = None
    aspect_ratio: AspectRatio | None = None
    fps: int | None = None
    seed: int | None = None

    error: JobError | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    external_job_id: str | None = Field(
        default=None, description="Secondary provider identifier, if any."
    )
    cost: float | None = Field(
        default=None, description="Realized cost in USD when the provider reports it."
    )
    estimated_completion_seconds: float | None = None
    raw_response: AnyDict | None = Field(
        default=None, description="Unmodified provider payload for debugging."
    )

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# ==================== Execution Metadata ====================


@dataclass
class AttemptMetadata:
    """One provider attempt inside ``OrchestrationManager.generate_video``."""

    provider: str
    """Provider identifier."""
    attempt_number: int
    """1-based position in the ordered candidate list."""
    started_at: datetime
    ended_at: datetime | None
    status: Literal["success", "failed", "skipped"]
    """``skipped`` means the guard or capability check refused the call."""
    error_type: str | None
    error_message: str | None
    decision: Literal["failover", "abort"] | None = None
    """What the manager did after this attempt failed."""
    request_id: str | None = None

    @property
    def elapsed_seconds(self) -> float | None:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()


@dataclass
class ExecutionMetadata:
    """Timing and failover details attached to a ``GenerationResponse``."""

    total_attempts: int
    successful_attempt: int | None
    attempts: list[AttemptMetadata]
    failover_triggered: bool
    candidates: int
    """How many providers were eligible for the request."""

    @property
    def total_elapsed_seconds(self) -> float:
        if not self.attempts:
            return 0.0
        first = self.attempts[0].started_at
        last = self.attempts[-1].ended_at or self.attempts[-1].started_at
        return (last - first).total_seconds()


class GenerationResponse(GenerationJob):
    """A ``GenerationJob`` returned by the manager, with execution metadata."""

    execution_metadata: ExecutionMetadata | None = Field(
        default=None,
        description="Provider attempts made by the orchestration manager.",
    )


# ==================== Usage & Preferences ====================


class UsageStats(BaseModel):
    """Point-in-time snapshot of one provider's cost guard ledger."""

    provider: str
    total_calls: int
    last_call_time: datetime | None
    hourly_recent_calls: int
    next_available_time: datetime | None
    time_until_next_call: float = Field(description="Seconds, 0 when admissible.")
    daily_cost: float
    monthly_cost: float
    total_cost: float
    last_reset_date: datetime
    max_daily_cost: float
    max_monthly_cost: float
    max_requests_per_hour: int
    min_interval_seconds: float

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


@dataclass
class ProviderPreference:
    """Mutable selection preference for one provider. Not persisted."""

    provider: ProviderName
    weight: float
    """Adaptive score, kept within [1, 10]."""
    cost_per_second: float
    avg_quality_score: float
    avg_processing_time: float
    """Typical seconds from submission to completion."""
    enabled: bool = True


def default_preferences() -> list[ProviderPreference]:
    """Initial preference table, in tie-break order."""
    return [
        ProviderPreference("seedance", 8.0, 0.006, 7.5, 180.0),
        ProviderPreference("runway", 9.0, 0.010, 9.0, 120.0),
        ProviderPreference("stable-video", 6.0, 0.040, 8.0, 300.0),
    ]


class ProviderInfo(BaseModel):
    """Operator view of one provider as seen by the manager."""

    provider: ProviderName
    enabled: bool
    weight: float
    capability: ProviderCapability
    is_available: bool = Field(
        description="Enabled, configured, and currently admissible by its guard."
    )

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


@dataclass
class ProviderHealth:
    """Result of one health check."""

    provider: ProviderName
    healthy: bool
    checked_at: datetime
    stats: UsageStats | None = None
