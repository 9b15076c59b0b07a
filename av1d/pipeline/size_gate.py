from typing import NamedTuple


class SizeGateResult(NamedTuple):
    accepted: bool
    ratio: float
    original_bytes: int
    output_bytes: int

    def describe(self, max_ratio: float) -> str:
        return (
            f"size gate rejected: output is {self.ratio * 100:.1f}% of original "
            f"(max {max_ratio * 100:.1f}%)"
        )


def check_size_gate(original_bytes: int, output_bytes: int, max_ratio: float) -> SizeGateResult:
    """Rejects iff output_bytes >= original_bytes * max_ratio. Equality rejects."""
    if original_bytes <= 0:
        return SizeGateResult(False, float("inf"), original_bytes, output_bytes)
    ratio = output_bytes / original_bytes
    accepted = output_bytes < original_bytes * max_ratio
    return SizeGateResult(accepted, ratio, original_bytes, output_bytes)
