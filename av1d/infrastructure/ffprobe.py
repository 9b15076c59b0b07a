import subprocess
import json
from pathlib import Path
from typing import Any, Dict
from av1d.domain.models import AudioStream, FormatInfo, ProbeResult, VideoStream


class ProbeError(Exception):
    """ffprobe could not run or its output could not be understood."""


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _parse_duration_tag(value: Any) -> float:
    if value is None:
        return 0.0
    text = str(value).strip()
    if not text:
        return 0.0
    try:
        return float(text)
    except ValueError:
        pass
    parts = text.split(":")
    if len(parts) not in (2, 3):
        return 0.0
    try:
        parts_f = [float(p) for p in parts]
    except ValueError:
        return 0.0
    if len(parts_f) == 2:
        minutes, seconds = parts_f
        return minutes * 60 + seconds
    hours, minutes, seconds = parts_f
    return hours * 3600 + minutes * 60 + seconds


def _duration(fmt: Dict[str, Any], streams: list) -> float:
    # Fallback order: format.duration, format tags, first stream duration, first stream tags
    duration = _to_float(fmt.get("duration"))
    if duration <= 0:
        tags = fmt.get("tags", {}) or {}
        duration = _parse_duration_tag(tags.get("DURATION") or tags.get("duration"))
    for stream in streams:
        if duration > 0:
            break
        duration = _to_float(stream.get("duration"))
        if duration <= 0:
            tags = stream.get("tags", {}) or {}
            duration = _parse_duration_tag(tags.get("DURATION") or tags.get("duration"))
    return duration


def parse_probe_output(text: str) -> ProbeResult:
    """Parses `ffprobe -print_format json -show_streams -show_format` output."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ProbeError(f"invalid ffprobe JSON: {e}") from e
    if not isinstance(data, dict):
        raise ProbeError("invalid ffprobe JSON: expected an object")

    fmt = data.get("format")
    if not isinstance(fmt, dict):
        raise ProbeError("ffprobe output has no format section")

    streams = data.get("streams") or []
    video_streams = []
    audio_streams = []
    for stream in streams:
        codec_type = stream.get("codec_type")
        if codec_type == "video":
            bit_rate = _to_float(stream.get("bit_rate"))
            video_streams.append(VideoStream(
                codec_name=stream.get("codec_name") or "unknown",
                width=_to_int(stream.get("width")),
                height=_to_int(stream.get("height")),
                bitrate_kbps=bit_rate / 1000.0 if bit_rate > 0 else None,
            ))
        elif codec_type == "audio":
            audio_streams.append(AudioStream(
                codec_name=stream.get("codec_name") or "unknown",
                channels=_to_int(stream.get("channels")),
            ))

    video_raw = [s for s in streams if s.get("codec_type") == "video"]
    return ProbeResult(
        video_streams=video_streams,
        audio_streams=audio_streams,
        format=FormatInfo(
            duration_secs=_duration(fmt, video_raw),
            size_bytes=_to_int(fmt.get("size")),
        ),
    )


class FFprobeAdapter:
    """Wrapper around ffprobe to extract stream information."""

    def __init__(self, binary: str = "ffprobe"):
        self.binary = binary

    def probe(self, file_path: Path) -> ProbeResult:
        """Executes ffprobe and parses JSON output."""
        cmd = [
            self.binary,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(file_path)
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise ProbeError(f"cannot run {self.binary}: {e}") from e
        if result.returncode != 0:
            raise ProbeError(f"ffprobe failed for {file_path}: {result.stderr.strip()}")

        return parse_probe_output(result.stdout)
