import json
import pytest
import yaml
from pathlib import Path
from typing import List, Optional
from av1d.config.models import AppConfig
from av1d.domain.models import AudioStream, Candidate, FormatInfo, ProbeResult, VideoStream
from av1d.infrastructure.event_bus import EventBus

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def library_dir(tmp_path):
    """Creates a library root."""
    root = tmp_path / "library"
    root.mkdir()
    return root


@pytest.fixture
def sample_config(tmp_path, library_dir):
    """Returns a sample AppConfig pointing at temporary directories."""
    return AppConfig(
        cpu={"logical_cores": 16, "target_cpu_utilization": 0.85},
        av1an={"workers_per_job": 0, "max_concurrent_jobs": 0},
        paths={
            "job_state_dir": str(tmp_path / "state" / "jobs"),
            "temp_output_dir": str(tmp_path / "state" / "tmp"),
        },
        scan={
            "library_roots": [str(library_dir)],
            "scan_interval_secs": 1,
            "stability_wait_secs": 0,
            "write_why_sidecars": True,
        },
        gates={"min_bytes": 1024, "max_size_ratio": 0.95, "keep_original": False},
        metrics={"enabled": False},
    )


@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "av1d.yaml"

    content = {
        'cpu': {'logical_cores': 32, 'target_cpu_utilization': 0.9},
        'av1an': {'workers_per_job': 0, 'max_concurrent_jobs': 0},
        'encoder_safety': {'disallow_hardware_encoding': True},
        'paths': {
            'job_state_dir': str(tmp_path / "jobs"),
            'temp_output_dir': str(tmp_path / "tmp"),
        },
        'scan': {
            'library_roots': ['/media/movies', '/media/tv'],
            'scan_interval_secs': 30,
            'stability_wait_secs': 5,
            'write_why_sidecars': False,
        },
        'gates': {'min_bytes': 2048, 'max_size_ratio': 0.9, 'keep_original': True},
        'metrics': {'port': 9000},
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

# ============================================================================
# Probe Fixtures
# ============================================================================

def make_probe(
    codec: str = "h264",
    width: int = 1920,
    height: int = 1080,
    bitrate_kbps: Optional[float] = 20000.0,
    duration: float = 5400.0,
    size_bytes: int = 2_000_000_000,
    video_streams: Optional[List[VideoStream]] = None,
) -> ProbeResult:
    if video_streams is None:
        video_streams = [VideoStream(codec_name=codec, width=width, height=height, bitrate_kbps=bitrate_kbps)]
    return ProbeResult(
        video_streams=video_streams,
        audio_streams=[AudioStream(codec_name="ac3", channels=6)],
        format=FormatInfo(duration_secs=duration, size_bytes=size_bytes),
    )


def make_candidate(path: Path, size_bytes: Optional[int] = None) -> Candidate:
    stat = path.stat() if path.exists() else None
    return Candidate(
        path=path,
        size_bytes=size_bytes if size_bytes is not None else (stat.st_size if stat else 0),
        modified_time=stat.st_mtime if stat else 0.0,
    )


def ffprobe_json(codec: str = "h264", duration: float = 5400.0, video_count: int = 1) -> str:
    streams = [
        {"index": i, "codec_type": "video", "codec_name": codec, "width": 1920, "height": 1080,
         "bit_rate": "20000000"}
        for i in range(video_count)
    ]
    streams.append({"index": video_count, "codec_type": "audio", "codec_name": "ac3", "channels": 6})
    return json.dumps({"streams": streams, "format": {"duration": str(duration), "size": "2000000000"}})


@pytest.fixture(name="make_probe")
def make_probe_fixture():
    """Factory for ProbeResult objects (defaults: 1080p H.264 disc rip)."""
    return make_probe


@pytest.fixture(name="make_candidate")
def make_candidate_fixture():
    return make_candidate


@pytest.fixture(name="ffprobe_json")
def ffprobe_json_fixture():
    """Factory for raw ffprobe JSON output."""
    return ffprobe_json


@pytest.fixture
def disc_probe():
    return make_probe()

# ============================================================================
# Marker registration
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
