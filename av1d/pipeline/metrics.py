import logging
import threading
from typing import Dict, Optional
from av1d.domain.events import JobCompleted, JobFailed, JobProgressUpdated, JobSkipped
from av1d.domain.models import (
    ConcurrencyPlan, Job, JobMetrics, JobStage, JobStatus, MetricsSnapshot, now_ms,
)
from av1d.infrastructure.av1an import CRF, ENCODER_NAME
from av1d.infrastructure.event_bus import EventBus
from av1d.infrastructure.job_store import JobStore
from av1d.infrastructure.system_monitor import SystemMonitor

logger = logging.getLogger(__name__)


class MetricsAggregator:
    """Folds job records, encoder progress and host telemetry into snapshots.

    Progress is kept in memory per job id and dropped when the job ends; the
    job store stays the source of truth for stage, status and sizes.
    """

    def __init__(self, store: JobStore, plan: ConcurrencyPlan, event_bus: EventBus,
                 system_monitor: Optional[SystemMonitor] = None):
        self.store = store
        self.plan = plan
        self.system_monitor = system_monitor
        self._lock = threading.Lock()
        self._progress: Dict[str, JobProgressUpdated] = {}
        self._latest = MetricsSnapshot()

        event_bus.subscribe(JobProgressUpdated, self._on_progress)
        event_bus.subscribe(JobCompleted, self._on_finished)
        event_bus.subscribe(JobFailed, self._on_finished)
        event_bus.subscribe(JobSkipped, self._on_finished)

    def _on_progress(self, event: JobProgressUpdated) -> None:
        with self._lock:
            self._progress[event.job_id] = event

    def _on_finished(self, event) -> None:
        with self._lock:
            self._progress.pop(event.job.id, None)

    def _job_metrics(self, job: Job, progress: Optional[JobProgressUpdated]) -> JobMetrics:
        metrics = JobMetrics(
            id=job.id,
            input_path=str(job.input_path),
            stage=job.stage,
            status=job.status,
            source_type=job.source_type,
            crf=CRF,
            encoder=ENCODER_NAME,
            workers=self.plan.av1an_workers if job.status == JobStatus.RUNNING else 0,
            size_in_bytes_before=job.original_size_bytes,
            size_in_bytes_after=job.output_size_bytes or 0,
            error_reason=job.error_reason,
        )
        if job.stage == JobStage.COMPLETE:
            metrics.progress = 1.0
        elif progress is not None:
            if progress.total_frames > 0:
                metrics.progress = min(1.0, progress.frames_encoded / progress.total_frames)
            metrics.fps = progress.fps
            metrics.bitrate_kbps = progress.bitrate_kbps
            metrics.est_remaining_secs = progress.est_remaining_secs
            metrics.frames_encoded = progress.frames_encoded
            metrics.total_frames = progress.total_frames
        return metrics

    def snapshot(self) -> MetricsSnapshot:
        jobs = self.store.list_jobs()
        with self._lock:
            progress = dict(self._progress)

        system = self.system_monitor.collect() if self.system_monitor else None
        snapshot = MetricsSnapshot(
            timestamp_unix_ms=now_ms(),
            jobs=[self._job_metrics(job, progress.get(job.id)) for job in jobs],
            queue_len=sum(1 for j in jobs if j.status == JobStatus.PENDING),
            running_jobs=sum(1 for j in jobs if j.status == JobStatus.RUNNING),
            completed_jobs=sum(1 for j in jobs if j.status == JobStatus.SUCCESS),
            failed_jobs=sum(1 for j in jobs if j.status == JobStatus.FAILED),
            skipped_jobs=sum(1 for j in jobs if j.status == JobStatus.SKIPPED),
            total_bytes_encoded=sum(
                j.output_size_bytes or 0 for j in jobs if j.status == JobStatus.SUCCESS
            ),
        )
        if system is not None:
            snapshot.system = system
        return snapshot

    def refresh(self) -> MetricsSnapshot:
        snapshot = self.snapshot()
        with self._lock:
            self._latest = snapshot
        return snapshot

    def latest(self) -> MetricsSnapshot:
        with self._lock:
            return self._latest


class MetricsTicker:
    """Background thread that refreshes the aggregator at a fixed interval."""

    def __init__(self, aggregator: MetricsAggregator, interval_secs: float):
        self.aggregator = aggregator
        self.interval_secs = interval_secs
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.aggregator.refresh()
            except Exception as e:
                logger.warning(f"METRICS_REFRESH_FAILED: {e}")
            self._stop.wait(self.interval_secs)

    def start(self) -> None:
        self._thread = threading.Thread(target=self._loop, name="av1d-metrics", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None
