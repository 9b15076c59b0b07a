import concurrent.futures
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
from av1d.config.models import AppConfig
from av1d.domain.events import CandidateSkipped, JobCreated, ScanCycleFinished
from av1d.domain.models import Candidate, JobStage, JobStatus
from av1d.infrastructure.event_bus import EventBus
from av1d.infrastructure.ffprobe import FFprobeAdapter, ProbeError
from av1d.infrastructure.file_scanner import LibraryScanner
from av1d.infrastructure.housekeeping import HousekeepingService
from av1d.infrastructure.job_store import JobStore
from av1d.infrastructure.replacer import AtomicReplacer
from av1d.infrastructure.skip_marker import SkipMarkerStore
from av1d.infrastructure.stability import StabilityDetector
from av1d.pipeline.classifier import classify_source
from av1d.pipeline.executor import JobExecutor
from av1d.pipeline.gates import GateSkip, check_gates

ADMITTED = "admitted"
SKIPPED = "skipped"
UNSTABLE = "unstable"
DUPLICATE = "duplicate"
PROBE_FAILED = "probe_failed"
GONE = "gone"

STABILITY_WORKERS = 8


@dataclass
class ScanCycleResult:
    admitted: int = 0
    skipped: int = 0
    unstable: int = 0
    duplicates: int = 0
    probe_failed: int = 0

    def count(self, outcome: str) -> None:
        if outcome == ADMITTED:
            self.admitted += 1
        elif outcome == SKIPPED:
            self.skipped += 1
        elif outcome in (UNSTABLE, GONE):
            self.unstable += 1
        elif outcome == DUPLICATE:
            self.duplicates += 1
        elif outcome == PROBE_FAILED:
            self.probe_failed += 1


class Daemon:
    """Scan loop: discovers candidates, admits them as jobs and hands them to the executor."""

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        scanner: LibraryScanner,
        stability: StabilityDetector,
        prober: FFprobeAdapter,
        store: JobStore,
        executor: JobExecutor,
        skip_markers: SkipMarkerStore,
        housekeeping: Optional[HousekeepingService] = None,
        shutdown_event: Optional[threading.Event] = None,
        replacer: Optional[AtomicReplacer] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.scanner = scanner
        self.stability = stability
        self.prober = prober
        self.store = store
        self.executor = executor
        self.skip_markers = skip_markers
        self.housekeeping = housekeeping
        self.replacer = replacer or AtomicReplacer()
        self.temp_output_dir = Path(config.paths.temp_output_dir)
        self.logger = logging.getLogger(__name__)
        self._shutdown_event = shutdown_event or threading.Event()

    @property
    def library_roots(self) -> List[Path]:
        return [Path(root) for root in self.config.scan.library_roots]

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def recover(self) -> List[str]:
        """Reconciles records left by a previous run. Returns the ids resubmitted."""
        resumed: List[str] = []
        preserved: List[str] = []
        for job in self.store.list_jobs():
            if job.status == JobStatus.PENDING:
                resumed.append(job.id)
            elif job.status == JobStatus.RUNNING and job.stage == JobStage.ENCODING:
                self._delete_temp(job.output_path)
                self.store.update(job.id, lambda j: j.suspend())
                self.logger.info(f"RECOVER: {job.id} encode restarts from scratch ({job.input_path.name})")
                resumed.append(job.id)
            elif job.status == JobStatus.RUNNING and job.stage == JobStage.REPLACING:
                reason = (
                    "interrupted by daemon restart during replacing; "
                    f"check {job.input_path}.orig.* backups and temp output {job.output_path}"
                )
                restored = self._restore_original(job.input_path)
                if restored is not None:
                    reason += f"; original restored from {restored.name}"
                self.store.update(job.id, lambda j, r=reason: j.abort(r))
                preserved.append(job.id)
                self.logger.error(f"RECOVER: {job.id} {reason}")
            elif job.status == JobStatus.RUNNING:
                reason = f"interrupted by daemon restart during {job.stage.value}"
                self._delete_temp(job.output_path)
                self.store.update(job.id, lambda j, r=reason: j.abort(r))
                self.logger.warning(f"RECOVER: {job.id} {reason}")
            elif job.status == JobStatus.FAILED and job.stage == JobStage.REPLACING:
                self._restore_original(job.input_path)
                preserved.append(job.id)

        if self.housekeeping:
            self.housekeeping.cleanup_stale_temp(self.temp_output_dir, resumed + preserved)

        for job_id in resumed:
            self.executor.submit(job_id)
        if resumed:
            self.logger.info(f"RECOVER: resubmitted {len(resumed)} jobs")
        return resumed

    def _restore_original(self, input_path: Path) -> Optional[Path]:
        try:
            return self.replacer.restore_backup(input_path)
        except OSError as e:
            self.logger.error(f"RECOVER: could not restore backup of {input_path}: {e}")
            return None

    def _delete_temp(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Failed to cleanup temp file {path}: {e}")

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def _skip_candidate(self, candidate: Candidate, reason: str) -> None:
        self.skip_markers.mark(candidate.path, reason)
        self.event_bus.publish(CandidateSkipped(path=candidate.path, reason=reason))

    def consider(self, candidate: Candidate) -> str:
        """Takes one candidate through stability, probe, gates and job creation."""
        if self.store.has_live_job(candidate.path):
            return DUPLICATE

        try:
            stability = self.stability.check(candidate.path, candidate.size_bytes)
        except OSError as e:
            self.logger.debug(f"Candidate vanished during stability check: {candidate.path} - {e}")
            return GONE
        if not stability.stable:
            self.logger.info(
                f"UNSTABLE: {candidate.path.name} "
                f"({stability.initial_size} -> {stability.current_size} bytes), retry next cycle"
            )
            return UNSTABLE
        if self._shutdown_event.is_set():
            return UNSTABLE

        try:
            probe = self.prober.probe(candidate.path)
        except ProbeError as e:
            self.logger.error(f"Probe failed: {candidate.path.name} - {e}")
            self._skip_candidate(candidate, f"ffprobe failed: {e}")
            return PROBE_FAILED

        gate = check_gates(probe, stability.current_size, self.config.gates.min_bytes)
        if isinstance(gate, GateSkip):
            self.logger.info(f"GATE_SKIP: {candidate.path.name} reason={gate.reason}")
            self._skip_candidate(candidate, gate.reason)
            return SKIPPED

        source_type = classify_source(candidate.path, probe)
        admitted = candidate.model_copy(update={"size_bytes": stability.current_size})
        job = self.store.create_job(admitted, probe, source_type, self.temp_output_dir)
        if job is None:
            return DUPLICATE

        self.event_bus.publish(JobCreated(job=job))
        self.executor.submit(job.id)
        return ADMITTED

    def run_scan_cycle(self) -> ScanCycleResult:
        """One pass over all library roots. Stability waits run concurrently."""
        start = time.monotonic()
        result = ScanCycleResult()
        live_paths = {job.input_path for job in self.store.live_jobs()}
        candidates = [c for c in self.scanner.scan_all(self.library_roots) if c.path not in live_paths]

        if candidates:
            workers = min(STABILITY_WORKERS, len(candidates))
            with concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="av1d-scan") as pool:
                futures = {pool.submit(self.consider, c): c for c in candidates}
                for future in concurrent.futures.as_completed(futures):
                    candidate = futures[future]
                    try:
                        result.count(future.result())
                    except Exception as e:
                        self.logger.error(f"Exception considering {candidate.path}: {e}")

        elapsed = time.monotonic() - start
        self.logger.info(
            f"SCAN_CYCLE: admitted={result.admitted} skipped={result.skipped} "
            f"unstable={result.unstable} duplicates={result.duplicates} "
            f"probe_failed={result.probe_failed} elapsed={elapsed:.2f}s"
        )
        self.event_bus.publish(ScanCycleFinished(
            admitted=result.admitted,
            skipped=result.skipped,
            unstable=result.unstable,
            duplicates=result.duplicates,
            probe_failed=result.probe_failed,
        ))
        return result

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(self, once: bool = False) -> None:
        """Recovers, then scans every scan_interval_secs until shutdown."""
        self.logger.info(f"DAEMON_START: roots={self.config.scan.library_roots}")
        self.recover()
        while not self._shutdown_event.is_set():
            try:
                self.run_scan_cycle()
            except Exception as e:
                self.logger.error(f"SCAN_CYCLE_FAILED: {e}", exc_info=True)
                self.event_bus.publish(ScanCycleFinished(error=str(e)))
            if once:
                break
            self._shutdown_event.wait(self.config.scan.scan_interval_secs)

        if once and not self._shutdown_event.is_set():
            self.executor.wait_all()
        self.logger.info("DAEMON_STOP")

    def shutdown(self) -> None:
        self.logger.info("DAEMON_SHUTDOWN: stopping scan loop and in-flight encodes")
        self._shutdown_event.set()
        self.executor.shutdown(wait=True)
