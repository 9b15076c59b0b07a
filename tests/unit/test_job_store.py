import json
import threading
import pytest
from pathlib import Path
from av1d.domain.models import InvalidTransitionError, Job, JobStage, JobStatus, SourceType
from av1d.infrastructure.job_store import JobStore, job_exists_for_path, load_jobs, record_path


@pytest.fixture
def store(tmp_path):
    return JobStore(tmp_path / "jobs")


def _create(store, make_probe, make_candidate, path=Path("/lib/movie.mkv"), tmp=Path("/tmp/av1d")):
    return store.create_job(make_candidate(path, size_bytes=2_000_000_000), make_probe(), SourceType.DISC_LIKE, tmp)


def test_create_job_persists_record(store, make_probe, make_candidate):
    job = _create(store, make_probe, make_candidate)

    assert job is not None
    assert job.stage == JobStage.QUEUED
    assert job.status == JobStatus.PENDING
    assert job.output_path == Path("/tmp/av1d") / f"{job.id}.mkv"
    assert job.original_size_bytes == 2_000_000_000

    path = record_path(store.state_dir, job.id)
    data = json.loads(path.read_text())
    assert data["id"] == job.id
    assert data["stage"] == "queued"
    assert data["input_path"] == "/lib/movie.mkv"


def test_duplicate_admission_rejected(store, make_probe, make_candidate):
    first = _create(store, make_probe, make_candidate)
    second = _create(store, make_probe, make_candidate)

    assert first is not None
    assert second is None
    assert len(store.list_jobs()) == 1
    assert store.has_live_job(Path("/lib/movie.mkv"))


def test_terminal_job_allows_new_admission(store, make_probe, make_candidate):
    first = _create(store, make_probe, make_candidate)
    store.update(first.id, lambda j: j.begin_encoding())
    store.update(first.id, lambda j: j.fail("boom"))

    assert not store.has_live_job(Path("/lib/movie.mkv"))
    assert _create(store, make_probe, make_candidate) is not None


def test_concurrent_admission_creates_one_job(store, make_probe, make_candidate):
    results = []
    barrier = threading.Barrier(8)

    def admit():
        barrier.wait()
        results.append(_create(store, make_probe, make_candidate))

    threads = [threading.Thread(target=admit) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sum(1 for r in results if r is not None) == 1
    assert len(list(store.state_dir.glob("*.json"))) == 1


def test_update_persists_each_transition(store, make_probe, make_candidate):
    job = _create(store, make_probe, make_candidate)
    store.update(job.id, lambda j: j.begin_encoding())

    on_disk = load_jobs(store.state_dir)[0]
    assert on_disk.stage == JobStage.ENCODING
    assert on_disk.status == JobStatus.RUNNING
    assert on_disk.updated_at >= job.updated_at


def test_failed_mutation_leaves_record_unchanged(store, make_probe, make_candidate):
    job = _create(store, make_probe, make_candidate)

    with pytest.raises(InvalidTransitionError):
        store.update(job.id, lambda j: j.advance(JobStage.COMPLETE))

    assert store.get(job.id).stage == JobStage.QUEUED
    assert load_jobs(store.state_dir)[0].stage == JobStage.QUEUED


def test_update_unknown_job(store):
    with pytest.raises(KeyError):
        store.update("missing", lambda j: None)


def test_returned_jobs_are_copies(store, make_probe, make_candidate):
    job = _create(store, make_probe, make_candidate)
    copy = store.get(job.id)
    copy.error_reason = "mutated outside"
    assert store.get(job.id).error_reason is None


def test_load_restores_index(tmp_path, make_probe, make_candidate):
    state = tmp_path / "jobs"
    first = JobStore(state)
    job = _create(first, make_probe, make_candidate)
    first.update(job.id, lambda j: j.begin_encoding())

    second = JobStore(state)
    assert second.load() == 1
    restored = second.get(job.id)
    assert restored == first.get(job.id)
    assert second.has_live_job(Path("/lib/movie.mkv"))


def test_load_skips_unreadable_records(tmp_path, make_probe, make_candidate):
    state = tmp_path / "jobs"
    store = JobStore(state)
    _create(store, make_probe, make_candidate)
    (state / "garbage.json").write_text("{not json")

    assert len(load_jobs(state)) == 1


def test_no_temp_files_left_behind(store, make_probe, make_candidate):
    job = _create(store, make_probe, make_candidate)
    store.update(job.id, lambda j: j.begin_encoding())
    assert sorted(p.name for p in store.state_dir.iterdir()) == [f"{job.id}.json"]


def test_job_exists_for_path_reads_disk(store, make_probe, make_candidate):
    _create(store, make_probe, make_candidate)
    assert job_exists_for_path(store.state_dir, Path("/lib/movie.mkv"))
    assert not job_exists_for_path(store.state_dir, Path("/lib/other.mkv"))


def test_count_by_status(store, make_probe, make_candidate):
    a = _create(store, make_probe, make_candidate, path=Path("/lib/a.mkv"))
    _create(store, make_probe, make_candidate, path=Path("/lib/b.mkv"))
    store.update(a.id, lambda j: j.begin_encoding())

    counts = store.count_by_status()
    assert counts[JobStatus.RUNNING] == 1
    assert counts[JobStatus.PENDING] == 1
    assert counts[JobStatus.SUCCESS] == 0


def test_live_jobs_excludes_terminal(store, make_probe, make_candidate):
    done = _create(store, make_probe, make_candidate, path=Path("/lib/a.mkv"))
    running = _create(store, make_probe, make_candidate, path=Path("/lib/b.mkv"))
    queued = _create(store, make_probe, make_candidate, path=Path("/lib/c.mkv"))
    store.update(done.id, lambda j: j.begin_encoding())
    store.update(done.id, lambda j: j.fail("boom"))
    store.update(running.id, lambda j: j.begin_encoding())

    assert sorted(j.id for j in store.live_jobs()) == sorted([running.id, queued.id])


def test_record_is_plain_job_json(store, make_probe, make_candidate):
    job = _create(store, make_probe, make_candidate)
    raw = record_path(store.state_dir, job.id).read_text()
    assert Job.model_validate_json(raw) == store.get(job.id)
