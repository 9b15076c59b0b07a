import time
import uuid
from enum import Enum
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    return int(time.time() * 1000)


class JobStage(str, Enum):
    QUEUED = "queued"
    ENCODING = "encoding"
    VALIDATING = "validating"
    SIZE_GATING = "size_gating"
    REPLACING = "replacing"
    COMPLETE = "complete"

STAGE_ORDER = [
    JobStage.QUEUED,
    JobStage.ENCODING,
    JobStage.VALIDATING,
    JobStage.SIZE_GATING,
    JobStage.REPLACING,
    JobStage.COMPLETE,
]

class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"

class SourceType(str, Enum):
    WEB_LIKE = "web_like"
    DISC_LIKE = "disc_like"
    UNKNOWN = "unknown"


class InvalidTransitionError(Exception):
    """Raised when a job is asked to move backwards or leave a terminal state."""


class Candidate(BaseModel):
    path: Path
    size_bytes: int
    modified_time: float

class VideoStream(BaseModel):
    model_config = ConfigDict(frozen=True)

    codec_name: str
    width: int = 0
    height: int = 0
    bitrate_kbps: Optional[float] = None

class AudioStream(BaseModel):
    model_config = ConfigDict(frozen=True)

    codec_name: str
    channels: int = 0

class FormatInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    duration_secs: float = 0.0
    size_bytes: int = 0

class ProbeResult(BaseModel):
    """Container and stream metadata captured by ffprobe. Immutable."""
    model_config = ConfigDict(frozen=True)

    video_streams: List[VideoStream] = Field(default_factory=list)
    audio_streams: List[AudioStream] = Field(default_factory=list)
    format: FormatInfo

    @property
    def first_video(self) -> Optional[VideoStream]:
        return self.video_streams[0] if self.video_streams else None


class Job(BaseModel):
    """Durable record of one admitted file's trip through the pipeline.

    Stage only moves forward. A job ends as COMPLETE/SUCCESS, FAILED (from
    encoding, validating or replacing) or SKIPPED (from size gating only);
    the stage keeps the step at which the job stopped.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    input_path: Path
    output_path: Path
    stage: JobStage = JobStage.QUEUED
    status: JobStatus = JobStatus.PENDING
    source_type: SourceType = SourceType.UNKNOWN
    probe_result: ProbeResult
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
    error_reason: Optional[str] = None
    original_size_bytes: int = 0
    output_size_bytes: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.status in (JobStatus.PENDING, JobStatus.RUNNING)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.SUCCESS, JobStatus.FAILED, JobStatus.SKIPPED)

    def _ensure_live(self) -> None:
        if self.is_terminal:
            raise InvalidTransitionError(
                f"job {self.id} is already {self.status.value} at {self.stage.value}"
            )

    def advance(self, stage: JobStage) -> None:
        """Moves to the next stage. Only single forward steps are allowed."""
        self._ensure_live()
        current = STAGE_ORDER.index(self.stage)
        target = STAGE_ORDER.index(stage)
        if target != current + 1:
            raise InvalidTransitionError(
                f"job {self.id}: cannot move from {self.stage.value} to {stage.value}"
            )
        self.stage = stage
        if stage == JobStage.COMPLETE:
            self.status = JobStatus.SUCCESS
        else:
            self.status = JobStatus.RUNNING

    def begin_encoding(self) -> None:
        """Enters ENCODING from QUEUED, or resumes a suspended encode."""
        if self.stage == JobStage.ENCODING and self.status == JobStatus.PENDING:
            self.status = JobStatus.RUNNING
            return
        self.advance(JobStage.ENCODING)

    def suspend(self) -> None:
        """Returns an interrupted encode to PENDING so it is picked up again on restart."""
        if self.stage != JobStage.ENCODING or self.status != JobStatus.RUNNING:
            raise InvalidTransitionError(
                f"job {self.id}: cannot suspend at {self.stage.value}/{self.status.value}"
            )
        self.status = JobStatus.PENDING

    def fail(self, reason: str) -> None:
        self._ensure_live()
        if self.stage not in (JobStage.ENCODING, JobStage.VALIDATING, JobStage.REPLACING):
            raise InvalidTransitionError(
                f"job {self.id}: cannot fail from {self.stage.value}"
            )
        self.status = JobStatus.FAILED
        self.error_reason = reason

    def skip(self, reason: str) -> None:
        self._ensure_live()
        if self.stage != JobStage.SIZE_GATING:
            raise InvalidTransitionError(
                f"job {self.id}: cannot skip from {self.stage.value}"
            )
        self.status = JobStatus.SKIPPED
        self.error_reason = reason

    def abort(self, reason: str) -> None:
        """Marks the job failed whatever its stage (crash recovery, unexpected errors)."""
        self._ensure_live()
        self.status = JobStatus.FAILED
        self.error_reason = reason


class ConcurrencyPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_cores: int
    target_threads: int
    av1an_workers: int
    max_concurrent_jobs: int


class SystemMetrics(BaseModel):
    cpu_usage_percent: float = 0.0
    mem_usage_percent: float = 0.0
    load_avg_1: float = 0.0
    load_avg_5: float = 0.0
    load_avg_15: float = 0.0

class JobMetrics(BaseModel):
    id: str
    input_path: str
    stage: JobStage
    status: JobStatus
    source_type: SourceType
    progress: float = 0.0
    fps: float = 0.0
    bitrate_kbps: float = 0.0
    crf: int = 8
    encoder: str = "svt-av1"
    workers: int = 0
    est_remaining_secs: float = 0.0
    frames_encoded: int = 0
    total_frames: int = 0
    size_in_bytes_before: int = 0
    size_in_bytes_after: int = 0
    vmaf: Optional[float] = None
    psnr: Optional[float] = None
    ssim: Optional[float] = None
    error_reason: Optional[str] = None

class MetricsSnapshot(BaseModel):
    timestamp_unix_ms: int = Field(default_factory=now_ms)
    jobs: List[JobMetrics] = Field(default_factory=list)
    system: SystemMetrics = Field(default_factory=SystemMetrics)
    queue_len: int = 0
    running_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    skipped_jobs: int = 0
    total_bytes_encoded: int = 0
