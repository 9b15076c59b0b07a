"""Durable job records, one JSON file per job.

Each job lives in ``<state_dir>/<job_id>.json``. Records are written to a
temporary file and renamed into place, so a reader outside the daemon (the
``av1d jobs`` command, a TUI) always sees either the previous or the new
version of a record, never a partial one.

The store owns the in-memory index. A store-wide lock guards the index and the
one-live-job-per-path check; a per-job lock serializes mutations of a single
job so that the scan loop and job threads never interleave on the same record.
"""

import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Callable, Dict, List, Optional
from av1d.domain.models import Candidate, Job, JobStatus, ProbeResult, SourceType, now_ms

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".json"


def record_path(state_dir: Path, job_id: str) -> Path:
    return state_dir / f"{job_id}{RECORD_SUFFIX}"


def save_job(state_dir: Path, job: Job) -> Path:
    """Atomically writes one job record."""
    state_dir.mkdir(parents=True, exist_ok=True)
    path = record_path(state_dir, job.id)
    tmp_path = path.with_name(f".{path.name}.tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        f.write(job.model_dump_json(indent=2))
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)
    return path


def load_jobs(state_dir: Path) -> List[Job]:
    """Reads every job record in the directory, oldest first. Unreadable records are skipped."""
    if not state_dir.is_dir():
        return []
    jobs = []
    for path in sorted(state_dir.glob(f"*{RECORD_SUFFIX}")):
        if path.name.startswith("."):
            continue
        try:
            jobs.append(Job.model_validate_json(path.read_text(encoding="utf-8")))
        except (OSError, ValueError) as e:
            logger.warning(f"JOB_RECORD_UNREADABLE: {path.name} - {e}")
    jobs.sort(key=lambda j: (j.created_at, j.id))
    return jobs


def job_exists_for_path(state_dir: Path, input_path: Path) -> bool:
    """True if a pending or running job exists on disk for the given input."""
    return any(job.is_active and job.input_path == input_path for job in load_jobs(state_dir))


class JobStore:
    """Lock-guarded owner of all job records."""

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)
        self._lock = threading.Lock()
        self._jobs: Dict[str, Job] = {}
        self._job_locks: Dict[str, threading.Lock] = {}

    def load(self) -> int:
        """Loads existing records from disk into the index. Returns the count."""
        jobs = load_jobs(self.state_dir)
        with self._lock:
            for job in jobs:
                self._jobs[job.id] = job
                self._job_locks.setdefault(job.id, threading.Lock())
        logger.info(f"JOB_STORE_LOADED: {len(jobs)} records from {self.state_dir}")
        return len(jobs)

    def _live_job_for(self, input_path: Path) -> Optional[Job]:
        for job in self._jobs.values():
            if job.is_active and job.input_path == input_path:
                return job
        return None

    def has_live_job(self, input_path: Path) -> bool:
        with self._lock:
            return self._live_job_for(input_path) is not None

    def create_job(
        self,
        candidate: Candidate,
        probe: ProbeResult,
        source_type: SourceType,
        temp_output_dir: Path,
    ) -> Optional[Job]:
        """Creates and persists a queued job, or returns None if the path already has a live job."""
        with self._lock:
            existing = self._live_job_for(candidate.path)
            if existing is not None:
                logger.debug(f"JOB_DUPLICATE: {candidate.path} already has job {existing.id}")
                return None
            job_id = str(uuid.uuid4())
            job = Job(
                id=job_id,
                input_path=candidate.path,
                output_path=Path(temp_output_dir) / f"{job_id}.mkv",
                source_type=source_type,
                probe_result=probe,
                original_size_bytes=candidate.size_bytes,
            )
            save_job(self.state_dir, job)
            self._jobs[job.id] = job
            self._job_locks[job.id] = threading.Lock()
        logger.info(f"JOB_CREATED: {job.id} {candidate.path} source={source_type.value}")
        return job.model_copy(deep=True)

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def list_jobs(self) -> List[Job]:
        with self._lock:
            jobs = [job.model_copy(deep=True) for job in self._jobs.values()]
        jobs.sort(key=lambda j: (j.created_at, j.id))
        return jobs

    def live_jobs(self) -> List[Job]:
        return [job for job in self.list_jobs() if job.is_active]

    def count_by_status(self) -> Dict[JobStatus, int]:
        counts = {status: 0 for status in JobStatus}
        with self._lock:
            for job in self._jobs.values():
                counts[job.status] += 1
        return counts

    def update(self, job_id: str, mutate: Callable[[Job], None]) -> Job:
        """Applies `mutate` to a working copy of the job, persists it and publishes it to the index.

        The index is only updated once the record is on disk; if `mutate` or the
        write raises, the stored job is unchanged.
        """
        with self._lock:
            job_lock = self._job_locks.get(job_id)
        if job_lock is None:
            raise KeyError(f"unknown job {job_id}")

        with job_lock:
            with self._lock:
                working = self._jobs[job_id].model_copy(deep=True)
            mutate(working)
            working.updated_at = now_ms()
            save_job(self.state_dir, working)
            with self._lock:
                self._jobs[job_id] = working
        return working.model_copy(deep=True)
