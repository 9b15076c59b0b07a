import logging
from pathlib import Path
from typing import NamedTuple, Optional
from av1d.domain.models import ProbeResult
from av1d.infrastructure.ffprobe import FFprobeAdapter, ProbeError

logger = logging.getLogger(__name__)


class ValidationResult(NamedTuple):
    ok: bool
    reason: str = ""
    output_probe: Optional[ProbeResult] = None


class OutputValidator:
    """Re-probes encoder output and checks it against the source."""

    def __init__(self, prober: FFprobeAdapter, expected_codec: str = "av1",
                 duration_tolerance_secs: float = 2.0):
        self.prober = prober
        self.expected_codec = expected_codec
        self.duration_tolerance_secs = duration_tolerance_secs

    def validate(self, output_path: Path, original: ProbeResult) -> ValidationResult:
        if not output_path.exists():
            return ValidationResult(False, f"encoded output missing: {output_path}")
        try:
            probe = self.prober.probe(output_path)
        except ProbeError as e:
            return ValidationResult(False, f"validation probe failed: {e}")

        if len(probe.video_streams) != 1:
            return ValidationResult(
                False, f"expected exactly 1 video stream, found {len(probe.video_streams)}", probe
            )

        codec = probe.video_streams[0].codec_name
        if self.expected_codec not in codec.lower():
            return ValidationResult(False, f"unexpected output codec {codec!r}", probe)

        delta = abs(probe.format.duration_secs - original.format.duration_secs)
        if delta > self.duration_tolerance_secs:
            return ValidationResult(
                False,
                f"duration mismatch: output {probe.format.duration_secs:.2f}s vs "
                f"original {original.format.duration_secs:.2f}s",
                probe,
            )

        logger.debug(f"VALIDATE_OK: {output_path.name} codec={codec} delta={delta:.2f}s")
        return ValidationResult(True, "", probe)
