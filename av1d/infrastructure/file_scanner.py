import logging
import os
from pathlib import Path
from typing import Generator, Iterable, Optional
from av1d.domain.models import Candidate
from av1d.infrastructure.skip_marker import SkipMarkerStore

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = (".mkv", ".mp4", ".avi", ".mov", ".m4v", ".ts", ".m2ts")


class LibraryScanner:
    """Recursively scans library roots for video files."""

    def __init__(self, skip_markers: SkipMarkerStore, extensions: Optional[Iterable[str]] = None):
        self.skip_markers = skip_markers
        self.extensions = [
            (ext if ext.startswith(".") else f".{ext}").lower()
            for ext in (extensions or VIDEO_EXTENSIONS)
        ]

    def scan(self, root_dir: Path) -> Generator[Candidate, None, None]:
        """Scans one root and yields Candidate objects.

        Hidden directories below the root are pruned; the root itself is
        always walked even if its own name is hidden.
        """
        if not root_dir.is_dir():
            logger.warning(f"SCAN_ROOT_MISSING: {root_dir}")
            return

        for root, dirs, files in os.walk(str(root_dir)):
            root_path = Path(root)

            # Ensure deterministic traversal: sort directories and files
            dirs[:] = sorted(d for d in dirs if not d.startswith("."))
            files.sort()

            for file_name in files:
                file_path = root_path / file_name

                if file_path.suffix.lower() not in self.extensions:
                    continue
                if self.skip_markers.has_marker(file_path):
                    continue

                try:
                    stat = file_path.stat()
                except OSError:
                    # Skip files we can't access
                    continue
                yield Candidate(path=file_path, size_bytes=stat.st_size, modified_time=stat.st_mtime)

    def scan_all(self, roots: Iterable[Path]) -> Generator[Candidate, None, None]:
        for root in roots:
            yield from self.scan(Path(root))
