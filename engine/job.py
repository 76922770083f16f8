"""Job request, state and result types."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, field_validator, model_validator

from config.settings import MAX_CLIP_SECONDS, SCRATCH_DIR, SOURCE_URL_TEMPLATE
from engine.manifest import ArtifactManifest
from engine.progress import ProgressChannel

QUALITY_ARCHIVAL = "archival"
QUALITY_MOBILE = "mobile"


class JobState(Enum):
    CREATED = "created"
    ACQUIRING = "acquiring"
    MERGING = "merging"
    EXTRACTING = "extracting"
    TRANSFORMING = "transforming"
    OVERLAYING = "overlaying"
    OPTIMIZING = "optimizing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class ClipRequest(BaseModel):
    source: str
    start: float
    end: float
    portrait: bool = False
    overlay: bool = False
    quality: Literal["archival", "mobile"] = QUALITY_MOBILE
    title: Optional[str] = None
    burn_captions: bool = False

    @field_validator("source")
    @classmethod
    def _source_required(cls, value: str) -> str:
        cleaned = (value or "").strip()
        if not cleaned:
            raise ValueError("Video ID or URL is required")
        return cleaned

    @field_validator("start")
    @classmethod
    def _start_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("Start time must be non-negative")
        return value

    @model_validator(mode="after")
    def _window_bounds(self) -> "ClipRequest":
        if self.end <= self.start:
            raise ValueError("End time must be greater than start time")
        if self.end - self.start > MAX_CLIP_SECONDS:
            raise ValueError(f"Clip duration cannot exceed {MAX_CLIP_SECONDS:g} seconds")
        return self

    @property
    def duration(self) -> float:
        return self.end - self.start

    def source_url(self) -> str:
        if "://" in self.source:
            return self.source
        return SOURCE_URL_TEMPLATE.format(id=self.source)


@dataclass
class ClipMetadata:
    duration: float
    width: Optional[int]
    height: Optional[int]
    size_bytes: int
    video_codec: Optional[str]
    audio_codec: Optional[str]
    profile: str
    processing_time_ms: int
    synthetic: bool = False
    audio_present: bool = True
    source_tier: str = ""
    format_expression: Optional[str] = None
    downscaled: bool = False
    container: str = "mp4"

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ClipResult:
    data: bytes
    metadata: ClipMetadata


@dataclass
class JobFailure:
    code: str
    message: str
    stage: str

    def to_dict(self) -> dict:
        return asdict(self)


def new_job_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Job:
    """One in-flight clip request and everything the controller tracks for it."""

    request: ClipRequest
    id: str = field(default_factory=new_job_id)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state: JobState = JobState.CREATED
    stage_index: int = 0
    finished_at: Optional[datetime] = None
    result: Optional[ClipResult] = None
    failure: Optional[JobFailure] = None
    progress: ProgressChannel = field(init=False)
    manifest: ArtifactManifest = field(init=False)
    scratch_dir: str = str(SCRATCH_DIR)

    def __post_init__(self) -> None:
        self.progress = ProgressChannel(self.id)
        self.manifest = ArtifactManifest(self.id, self.scratch_dir)

    @property
    def outcome(self):
        return self.result if self.result is not None else self.failure

    def advance(self, state: JobState) -> None:
        self.state = state
        self.stage_index += 1
        self.progress.set_state(state.value)
