"""End-to-end daemon scenarios with av1an and ffprobe replaced by fakes."""
import threading
import time
import pytest
from pathlib import Path
from av1d.domain.events import CandidateSkipped, ScanCycleFinished
from av1d.domain.models import ConcurrencyPlan, JobStage, JobStatus, SourceType
from av1d.infrastructure.av1an import EncodeResult
from av1d.infrastructure.ffprobe import ProbeError
from av1d.infrastructure.file_scanner import LibraryScanner
from av1d.infrastructure.housekeeping import HousekeepingService
from av1d.infrastructure.job_store import JobStore
from av1d.infrastructure.replacer import AtomicReplacer
from av1d.infrastructure.skip_marker import SkipMarkerStore
from av1d.infrastructure.stability import StabilityDetector
from av1d.pipeline.executor import JobExecutor
from av1d.pipeline.orchestrator import Daemon
from av1d.pipeline.validator import OutputValidator

pytestmark = pytest.mark.integration

GIB = 1024 ** 3


class FakeProber:
    """Source files probe as H.264; anything inside the temp dir probes as AV1."""

    def __init__(self, temp_dir: Path, make_probe):
        self.temp_dir = temp_dir
        self.make_probe = make_probe
        self.broken = set()
        self.calls = []

    def probe(self, path: Path):
        self.calls.append(path)
        if path in self.broken:
            raise ProbeError(f"invalid data found when processing input: {path.name}")
        if path.parent == self.temp_dir:
            return self.make_probe(codec="av1", bitrate_kbps=None)
        return self.make_probe()


class FakeEncoder:
    """Writes a small AV1 output, optionally scaled to the input size."""

    def __init__(self, output_bytes=1024 * 1024, ratio=None, hold=None):
        self.output_bytes = output_bytes
        self.ratio = ratio
        self.hold = hold
        self.started = threading.Event()
        self._lock = threading.Lock()
        self.active = 0
        self.peak = 0
        self.calls = 0

    def encode(self, job_id, input_path, output_path, temp_dir, workers, shutdown_event=None):
        with self._lock:
            self.calls += 1
            self.active += 1
            self.peak = max(self.peak, self.active)
        self.started.set()
        try:
            if self.hold is not None:
                while not self.hold.is_set():
                    if shutdown_event is not None and shutdown_event.is_set():
                        return EncodeResult(False, -15, "interrupted by shutdown", interrupted=True)
                    time.sleep(0.01)
            size = self.output_bytes
            if self.ratio is not None:
                size = int(input_path.stat().st_size * self.ratio)
            with open(output_path, "wb") as f:
                f.truncate(size)
            return EncodeResult(True, 0, "")
        finally:
            with self._lock:
                self.active -= 1


def _sparse(path: Path, size: int) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.truncate(size)
    return path


@pytest.fixture
def harness(sample_config, event_bus, make_probe):
    temp_dir = Path(sample_config.paths.temp_output_dir)
    markers = SkipMarkerStore(write_why_sidecars=True)
    prober = FakeProber(temp_dir, make_probe)
    built = []

    def build(encoder=None, max_jobs=2, store=None):
        plan = ConcurrencyPlan(total_cores=16, target_threads=14, av1an_workers=4, max_concurrent_jobs=max_jobs)
        store = store or JobStore(Path(sample_config.paths.job_state_dir))
        store.load()
        executor = JobExecutor(
            store=store,
            plan=plan,
            encoder=encoder or FakeEncoder(),
            validator=OutputValidator(prober),
            replacer=AtomicReplacer(),
            skip_markers=markers,
            config=sample_config,
            event_bus=event_bus,
        )
        daemon = Daemon(
            config=sample_config,
            event_bus=event_bus,
            scanner=LibraryScanner(markers),
            stability=StabilityDetector(sample_config.scan.stability_wait_secs),
            prober=prober,
            store=store,
            executor=executor,
            skip_markers=markers,
            housekeeping=HousekeepingService(),
        )
        built.append(daemon)
        return daemon

    yield {"build": build, "prober": prober, "config": sample_config}
    for daemon in built:
        daemon.shutdown()


def test_disc_like_movie_is_encoded_and_replaced(harness, library_dir):
    source = _sparse(library_dir / "Movie.2010.1080p.BluRay.x264.mkv", 2 * GIB)
    daemon = harness["build"]()

    daemon.run(once=True)

    jobs = daemon.store.list_jobs()
    assert len(jobs) == 1
    job = jobs[0]
    assert job.stage == JobStage.COMPLETE
    assert job.status == JobStatus.SUCCESS
    assert job.source_type == SourceType.DISC_LIKE
    assert job.original_size_bytes == 2 * GIB
    assert source.stat().st_size == 1024 * 1024
    assert list(library_dir.glob("*.orig.*")) == []
    assert not job.output_path.exists()


def test_small_file_skipped_and_never_readmitted(harness, library_dir):
    harness["config"].gates.min_bytes = 1024 * 1024
    source = _sparse(library_dir / "clip.mkv", 500 * 1024)
    daemon = harness["build"]()
    skipped = []
    daemon.event_bus.subscribe(CandidateSkipped, skipped.append)

    first = daemon.run_scan_cycle()
    second = daemon.run_scan_cycle()

    assert first.skipped == 1
    assert second.skipped == 0 and second.admitted == 0
    assert daemon.store.list_jobs() == []
    assert SkipMarkerStore.marker_path(source).exists()
    assert SkipMarkerStore.why_path(source).read_text().strip() == "below minimum size"
    assert [e.reason for e in skipped] == ["below minimum size"]
    assert harness["prober"].calls == [source]


def test_insufficient_savings_skips_and_keeps_original(harness, library_dir):
    source = _sparse(library_dir / "Show.S01E01.WEB-DL.mkv", 10 * 1024 * 1024)
    daemon = harness["build"](encoder=FakeEncoder(ratio=0.97))

    daemon.run(once=True)

    job = daemon.store.list_jobs()[0]
    assert job.status == JobStatus.SKIPPED
    assert job.stage == JobStage.SIZE_GATING
    assert source.stat().st_size == 10 * 1024 * 1024
    assert not job.output_path.exists()
    assert SkipMarkerStore.marker_path(source).exists()

    assert daemon.run_scan_cycle().admitted == 0


def test_probe_failure_writes_marker(harness, library_dir):
    source = _sparse(library_dir / "broken.mkv", 4096)
    harness["prober"].broken.add(source)
    daemon = harness["build"]()

    result = daemon.run_scan_cycle()

    assert result.probe_failed == 1
    assert daemon.store.list_jobs() == []
    assert "ffprobe failed" in SkipMarkerStore.why_path(source).read_text()


def test_live_job_not_admitted_twice(harness, library_dir):
    _sparse(library_dir / "a.mkv", 4096)
    hold = threading.Event()
    encoder = FakeEncoder(output_bytes=100, hold=hold)
    daemon = harness["build"](encoder=encoder)

    first = daemon.run_scan_cycle()
    assert encoder.started.wait(5)
    second = daemon.run_scan_cycle()
    hold.set()
    daemon.executor.wait_all(timeout=10)

    assert first.admitted == 1
    assert second.admitted == 0
    assert len(daemon.store.list_jobs()) == 1
    assert encoder.calls == 1


def test_concurrent_jobs_never_exceed_limit(harness, library_dir):
    for i in range(5):
        _sparse(library_dir / f"film{i}.mkv", 8192)

    class SlowEncoder(FakeEncoder):
        def encode(self, *args, **kwargs):
            time.sleep(0.05)
            return super().encode(*args, **kwargs)

    encoder = SlowEncoder(output_bytes=100)
    daemon = harness["build"](encoder=encoder, max_jobs=2)
    finished = []
    daemon.event_bus.subscribe(ScanCycleFinished, finished.append)

    daemon.run(once=True)

    assert encoder.peak <= 2
    assert encoder.calls == 5
    assert finished[0].admitted == 5
    assert all(j.status == JobStatus.SUCCESS for j in daemon.store.list_jobs())


def test_shutdown_leaves_encode_pending_and_restart_resumes(harness, library_dir):
    source = _sparse(library_dir / "long.mkv", 8192)
    hold = threading.Event()
    encoder = FakeEncoder(output_bytes=100, hold=hold)
    daemon = harness["build"](encoder=encoder)

    daemon.run_scan_cycle()
    assert encoder.started.wait(5)
    daemon.shutdown()

    job = daemon.store.list_jobs()[0]
    assert job.stage == JobStage.ENCODING
    assert job.status == JobStatus.PENDING
    assert source.stat().st_size == 8192

    restarted = harness["build"](encoder=FakeEncoder(output_bytes=100))
    assert restarted.recover() == [job.id]
    restarted.executor.wait_all(timeout=10)

    resumed = restarted.store.get(job.id)
    assert resumed.status == JobStatus.SUCCESS
    assert source.stat().st_size == 100
