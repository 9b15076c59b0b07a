from typing import NamedTuple, Optional, Union
from av1d.domain.models import ProbeResult

REASON_NO_VIDEO = "no video streams"
REASON_TOO_SMALL = "below minimum size"
REASON_ALREADY_AV1 = "already AV1"


class GatePass(NamedTuple):
    probe: ProbeResult


class GateSkip(NamedTuple):
    reason: str


GateResult = Union[GatePass, GateSkip]


def _first_failing_gate(probe: ProbeResult, file_size: int, min_bytes: int) -> Optional[str]:
    if not probe.video_streams:
        return REASON_NO_VIDEO
    if file_size < min_bytes:
        return REASON_TOO_SMALL
    if "av1" in probe.video_streams[0].codec_name.lower():
        return REASON_ALREADY_AV1
    return None


def check_gates(probe: ProbeResult, file_size: int, min_bytes: int) -> GateResult:
    """Applies admission rules in priority order."""
    reason = _first_failing_gate(probe, file_size, min_bytes)
    if reason is not None:
        return GateSkip(reason)
    return GatePass(probe)
