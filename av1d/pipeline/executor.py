import concurrent.futures
import logging
import shutil
import threading
from pathlib import Path
from typing import Callable, Dict, Optional
from av1d.config.models import AppConfig
from av1d.domain.events import JobCompleted, JobFailed, JobSkipped, JobStageChanged
from av1d.domain.models import ConcurrencyPlan, Job, JobStage, JobStatus
from av1d.infrastructure.av1an import Av1anAdapter
from av1d.infrastructure.event_bus import EventBus
from av1d.infrastructure.job_store import JobStore
from av1d.infrastructure.replacer import AtomicReplacer, ReplaceError
from av1d.infrastructure.skip_marker import SkipMarkerStore
from av1d.pipeline.size_gate import check_size_gate
from av1d.pipeline.validator import OutputValidator


class JobExecutor:
    """Runs admitted jobs through encode, validate, size gate and replace.

    At most ``plan.max_concurrent_jobs`` jobs hold a slot at once. A slot is
    taken before a job enters ENCODING and given back when the job reaches a
    terminal state (or is suspended by shutdown). Every transition is written
    to the job store before the next step starts.
    """

    def __init__(
        self,
        store: JobStore,
        plan: ConcurrencyPlan,
        encoder: Av1anAdapter,
        validator: OutputValidator,
        replacer: AtomicReplacer,
        skip_markers: SkipMarkerStore,
        config: AppConfig,
        event_bus: EventBus,
        shutdown_event: Optional[threading.Event] = None,
    ):
        self.store = store
        self.plan = plan
        self.encoder = encoder
        self.validator = validator
        self.replacer = replacer
        self.skip_markers = skip_markers
        self.config = config
        self.event_bus = event_bus
        self.temp_output_dir = Path(config.paths.temp_output_dir)
        self.logger = logging.getLogger(__name__)

        self._shutdown_event = shutdown_event or threading.Event()
        self._slots = threading.BoundedSemaphore(plan.max_concurrent_jobs)
        self._slot_lock = threading.Lock()
        self._slots_in_use = 0
        self._pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=plan.max_concurrent_jobs, thread_name_prefix="av1d-job"
        )
        self._futures: Dict[str, concurrent.futures.Future] = {}
        self._futures_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Slots
    # ------------------------------------------------------------------

    def available_slots(self) -> int:
        with self._slot_lock:
            return self.plan.max_concurrent_jobs - self._slots_in_use

    def _acquire_slot(self) -> bool:
        while not self._shutdown_event.is_set():
            if self._slots.acquire(timeout=0.25):
                with self._slot_lock:
                    self._slots_in_use += 1
                return True
        return False

    def _release_slot(self) -> None:
        with self._slot_lock:
            self._slots_in_use -= 1
        self._slots.release()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, job_id: str) -> concurrent.futures.Future:
        """Schedules a job on the pool. Submitting a job already in flight returns its future."""
        with self._futures_lock:
            existing = self._futures.get(job_id)
            if existing is not None and not existing.done():
                return existing
            future = self._pool.submit(self.execute, job_id)
            self._futures[job_id] = future
        future.add_done_callback(lambda _f, jid=job_id: self._forget(jid))
        return future

    def _forget(self, job_id: str) -> None:
        with self._futures_lock:
            future = self._futures.get(job_id)
            if future is not None and future.done():
                del self._futures[job_id]

    def wait_all(self, timeout: Optional[float] = None) -> None:
        with self._futures_lock:
            futures = list(self._futures.values())
        concurrent.futures.wait(futures, timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._shutdown_event.set()
        self._pool.shutdown(wait=wait, cancel_futures=True)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def execute(self, job_id: str) -> Optional[Job]:
        """Runs one job to a terminal state on the calling thread."""
        job = self.store.get(job_id)
        if job is None:
            self.logger.error(f"JOB_UNKNOWN: {job_id}")
            return None
        if not self._is_runnable(job):
            self.logger.warning(f"JOB_NOT_RUNNABLE: {job_id} at {job.stage.value}/{job.status.value}")
            return job

        if not self._acquire_slot():
            self.logger.info(f"JOB_DEFERRED: {job_id} (shutdown before start)")
            return job

        try:
            return self._run(job_id)
        except Exception as e:
            self.logger.error(f"Exception processing job {job_id}: {e}", exc_info=True)
            return self._abort_unexpected(job_id, e)
        finally:
            self._release_slot()

    @staticmethod
    def _is_runnable(job: Job) -> bool:
        if job.status != JobStatus.PENDING:
            return False
        return job.stage in (JobStage.QUEUED, JobStage.ENCODING)

    def _update(self, job_id: str, mutate: Callable[[Job], None]) -> Job:
        return self.store.update(job_id, mutate)

    def _transition(self, job_id: str, stage: JobStage, extra: Optional[Callable[[Job], None]] = None) -> Job:
        previous = {}

        def mutate(job: Job) -> None:
            previous["stage"] = job.stage
            if stage == JobStage.ENCODING:
                job.begin_encoding()
            else:
                job.advance(stage)
            if extra:
                extra(job)

        job = self._update(job_id, mutate)
        self.logger.info(f"JOB_STAGE: {job_id} {previous['stage'].value} -> {stage.value} ({job.input_path.name})")
        self.event_bus.publish(JobStageChanged(job=job, previous_stage=previous["stage"]))
        return job

    def _fail(self, job_id: str, reason: str) -> Job:
        job = self._update(job_id, lambda j: j.fail(reason))
        self.logger.error(f"JOB_FAILED: {job_id} at {job.stage.value} ({job.input_path.name}): {reason}")
        self.event_bus.publish(JobFailed(job=job, error_message=reason))
        return job

    def _abort_unexpected(self, job_id: str, error: Exception) -> Optional[Job]:
        job = self.store.get(job_id)
        if job is None or job.is_terminal:
            return job
        reason = f"unexpected error at {job.stage.value}: {error}"
        if job.stage != JobStage.REPLACING:
            self._delete_temp(job.output_path)
        job = self._update(job_id, lambda j: j.abort(reason))
        self.event_bus.publish(JobFailed(job=job, error_message=reason))
        return job

    def _delete_temp(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Failed to cleanup temp file {path}: {e}")

    def _run(self, job_id: str) -> Job:
        job = self._transition(job_id, JobStage.ENCODING)
        chunk_dir = self.temp_output_dir / f"chunks_{job_id}"
        try:
            return self._run_stages(job, chunk_dir)
        finally:
            shutil.rmtree(chunk_dir, ignore_errors=True)

    def _run_stages(self, job: Job, chunk_dir: Path) -> Job:
        job_id = job.id
        job.output_path.parent.mkdir(parents=True, exist_ok=True)
        chunk_dir.mkdir(parents=True, exist_ok=True)

        result = self.encoder.encode(
            job_id,
            job.input_path,
            job.output_path,
            chunk_dir,
            self.plan.av1an_workers,
            shutdown_event=self._shutdown_event,
        )
        if result.interrupted:
            self._delete_temp(job.output_path)
            job = self._update(job_id, lambda j: j.suspend())
            self.logger.info(f"JOB_SUSPENDED: {job_id} ({job.input_path.name}) will resume on restart")
            return job
        if not result.success:
            self._delete_temp(job.output_path)
            return self._fail(job_id, f"av1an failed: {result.diagnostics}")

        try:
            output_size = job.output_path.stat().st_size
        except OSError as e:
            return self._fail(job_id, f"encoded output missing after av1an exit: {e}")

        job = self._transition(
            job_id, JobStage.VALIDATING, extra=lambda j: setattr(j, "output_size_bytes", output_size)
        )
        validation = self.validator.validate(job.output_path, job.probe_result)
        if not validation.ok:
            self._delete_temp(job.output_path)
            return self._fail(job_id, f"validation failed: {validation.reason}")

        job = self._transition(job_id, JobStage.SIZE_GATING)
        max_ratio = self.config.gates.max_size_ratio
        gate = check_size_gate(job.original_size_bytes, output_size, max_ratio)
        if not gate.accepted:
            reason = gate.describe(max_ratio)
            self._delete_temp(job.output_path)
            self.skip_markers.mark(job.input_path, reason)
            job = self._update(job_id, lambda j: j.skip(reason))
            self.logger.info(f"JOB_SKIPPED: {job_id} ({job.input_path.name}): {reason}")
            self.event_bus.publish(JobSkipped(job=job, reason=reason))
            return job

        job = self._transition(job_id, JobStage.REPLACING)
        try:
            outcome = self.replacer.replace(
                job.input_path, job.output_path, keep_original=self.config.gates.keep_original
            )
        except ReplaceError as e:
            return self._fail(job_id, f"replace failed at {e.stage}: {e}")

        job = self._transition(job_id, JobStage.COMPLETE)
        saved = job.original_size_bytes - output_size
        self.logger.info(
            f"JOB_COMPLETE: {job_id} ({job.input_path.name}) "
            f"{job.original_size_bytes} -> {output_size} bytes (saved {saved}), "
            f"backup_kept={outcome.backup_kept}"
        )
        self.event_bus.publish(JobCompleted(job=job))
        return job
