import collections
import logging
import queue
import re
import subprocess
import threading
import time
from pathlib import Path
from typing import Deque, List, NamedTuple, Optional
from av1d.domain.events import JobProgressUpdated
from av1d.infrastructure.event_bus import EventBus

ENCODER_NAME = "svt-av1"
CRF = 8
PIX_FORMAT = "yuv420p10le"
VIDEO_PARAMS = (
    "--crf 8 --preset 3 --film-grain 20 --enable-qm 1 "
    "--qm-min 1 --qm-max 15 --keyint 240 --lookahead 40"
)
AUDIO_PARAMS = "-c:a copy"
DIAGNOSTIC_LINES = 40
# How long a signal-killed encoder waits for the daemon shutdown that usually follows
SIGNAL_GRACE_SECS = 1.0

# av1an progress bar: "... 1234/5678 (12.34 fps, eta 3m 12s)"
_PROGRESS_RE = re.compile(r"(\d+)/(\d+)\s*\(\s*(\d+(?:\.\d+)?)\s*fps")


class EncodeResult(NamedTuple):
    success: bool
    returncode: Optional[int]
    diagnostics: str
    interrupted: bool = False


def parse_progress_line(line: str) -> Optional[tuple]:
    """Returns (frames_encoded, total_frames, fps) for an av1an progress line, else None."""
    match = _PROGRESS_RE.search(line)
    if not match:
        return None
    done, total, fps = match.groups()
    return int(done), int(total), float(fps)


class Av1anAdapter:
    """Runs av1an with the fixed SVT-AV1 film-grain profile."""

    def __init__(self, event_bus: EventBus, binary: str = "av1an", debug: bool = False):
        self.event_bus = event_bus
        self.binary = binary
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def build_command(self, input_path: Path, output_path: Path, temp_dir: Path, workers: int) -> List[str]:
        """Constructs the av1an command line arguments. Only paths and workers vary."""
        return [
            self.binary,
            "-i", str(input_path),
            "-o", str(output_path),
            "--encoder", ENCODER_NAME,
            "--pix-format", PIX_FORMAT,
            "--video-params", VIDEO_PARAMS,
            "--audio-params", AUDIO_PARAMS,
            "--workers", str(workers),
            "--temp", str(temp_dir),
        ]

    def _terminate(self, process: subprocess.Popen) -> None:
        process.terminate()
        try:
            process.wait(timeout=3)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    @staticmethod
    def _stopped_for_shutdown(returncode: int, shutdown_event: Optional[threading.Event]) -> bool:
        """A signal death counts as an interruption when shutdown is already underway or follows shortly."""
        if shutdown_event is None:
            return False
        if shutdown_event.is_set():
            return True
        return returncode < 0 and shutdown_event.wait(SIGNAL_GRACE_SECS)

    def encode(
        self,
        job_id: str,
        input_path: Path,
        output_path: Path,
        temp_dir: Path,
        workers: int,
        shutdown_event: Optional[threading.Event] = None,
    ) -> EncodeResult:
        """Executes av1an and blocks until it exits.

        Output is merged and read on a helper thread; the last lines are kept
        as the diagnostic text of a failed run.
        """
        filename = input_path.name
        start_time = time.monotonic()
        cmd = self.build_command(input_path, output_path, temp_dir, workers)

        self.logger.info(f"AV1AN_START: {filename} (job={job_id}, workers={workers})")
        if self.debug:
            self.logger.debug(f"AV1AN_CMD: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                universal_newlines=True,
                bufsize=1,
                start_new_session=True,
            )
        except OSError as e:
            self.logger.error(f"AV1AN_SPAWN_FAILED: {filename} - {e}")
            return EncodeResult(False, None, f"failed to start {self.binary}: {e}")

        tail: Deque[str] = collections.deque(maxlen=DIAGNOSTIC_LINES)
        output_queue: "queue.Queue[Optional[str]]" = queue.Queue()

        def _reader():
            if not process.stdout:
                output_queue.put(None)
                return
            # av1an redraws its progress bar with carriage returns
            for line in process.stdout:
                for part in line.split("\r"):
                    output_queue.put(part)
            output_queue.put(None)

        reader_thread = threading.Thread(target=_reader, daemon=True)
        reader_thread.start()

        while True:
            if shutdown_event and shutdown_event.is_set():
                self.logger.info(f"AV1AN_INTERRUPTED: {filename} (shutdown signal)")
                self._terminate(process)
                return EncodeResult(False, process.returncode, "interrupted by shutdown", interrupted=True)

            try:
                line = output_queue.get(timeout=0.1)
            except queue.Empty:
                if process.poll() is not None and not reader_thread.is_alive():
                    break
                continue

            if line is None:
                break

            text = line.strip()
            if not text:
                continue
            tail.append(text)

            progress = parse_progress_line(text)
            if progress:
                done, total, fps = progress
                remaining = (total - done) / fps if fps > 0 and total > done else 0.0
                self.event_bus.publish(JobProgressUpdated(
                    job_id=job_id,
                    frames_encoded=done,
                    total_frames=total,
                    fps=fps,
                    est_remaining_secs=remaining,
                ))

        process.wait()
        elapsed = time.monotonic() - start_time
        diagnostics = "\n".join(tail)

        if process.returncode != 0 and self._stopped_for_shutdown(process.returncode, shutdown_event):
            self.logger.info(f"AV1AN_INTERRUPTED: {filename} (code={process.returncode} during shutdown)")
            return EncodeResult(False, process.returncode, "interrupted by shutdown", interrupted=True)

        if process.returncode != 0:
            self.logger.error(f"AV1AN_END: {filename} status=failed code={process.returncode} elapsed={elapsed:.2f}s")
            if not diagnostics:
                diagnostics = f"av1an exited with code {process.returncode}"
            return EncodeResult(False, process.returncode, diagnostics)

        self.logger.info(f"AV1AN_END: {filename} status=completed elapsed={elapsed:.2f}s")
        return EncodeResult(True, 0, diagnostics)

    def version_check(self) -> subprocess.CompletedProcess:
        return subprocess.run([self.binary, "--version"], capture_output=True, text=True)
