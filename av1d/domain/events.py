"""Domain events for the transcoding pipeline.

Events represent state changes and notifications that flow through the EventBus,
decoupling the executor and scan loop from the metrics aggregator and logging.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel
from .models import Job, JobStage


class Event(BaseModel):
    """Base class for all domain events.

    Events are validated Pydantic models. They are not frozen by default.
    """

    pass

class JobEvent(Event):
    """Base class for events related to a specific job."""

    job: Job


class JobCreated(JobEvent):
    """Emitted when a candidate passes the gates and a job record is written."""

    pass


class JobStageChanged(JobEvent):
    """Emitted after a stage transition has been persisted."""

    previous_stage: JobStage


class JobProgressUpdated(Event):
    """Emitted as av1an reports encoded frames.

    Carries the job id only; the record itself is not touched by progress.
    """

    job_id: str
    frames_encoded: int
    total_frames: int
    fps: float = 0.0
    est_remaining_secs: float = 0.0
    bitrate_kbps: float = 0.0


class JobCompleted(JobEvent):
    """Emitted when the encoded file has replaced the original."""

    pass


class JobFailed(JobEvent):
    """Emitted when a job ends as failed; reason is on the record."""

    error_message: str


class JobSkipped(JobEvent):
    """Emitted when the size gate rejects the output; a skip marker is written."""

    reason: str


class CandidateSkipped(Event):
    """Emitted when a candidate is rejected at admission (probe failure or gate)."""

    path: Path
    reason: str


class ScanCycleFinished(Event):
    """Emitted at the end of every scan cycle."""

    admitted: int = 0
    skipped: int = 0
    unstable: int = 0
    duplicates: int = 0
    probe_failed: int = 0
    error: Optional[str] = None
