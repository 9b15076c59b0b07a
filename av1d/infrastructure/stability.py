from pathlib import Path
from typing import Callable, NamedTuple
import time


class StabilityResult(NamedTuple):
    stable: bool
    initial_size: int
    current_size: int


def compare_sizes(initial_size: int, current_size: int) -> StabilityResult:
    return StabilityResult(initial_size == current_size, initial_size, current_size)


class StabilityDetector:
    """Confirms a file is no longer being written by re-checking its size after a wait."""

    def __init__(self, wait_secs: float, sleep: Callable[[float], None] = time.sleep):
        self.wait_secs = wait_secs
        self._sleep = sleep

    def check(self, path: Path, initial_size: int) -> StabilityResult:
        """Waits, re-stats and compares. Raises OSError if the file disappeared."""
        if self.wait_secs > 0:
            self._sleep(self.wait_secs)
        return compare_sizes(initial_size, path.stat().st_size)
