import logging
from pathlib import Path

logger = logging.getLogger(__name__)

MARKER_SUFFIX = ".av1skip"
WHY_SUFFIX = ".why.txt"


class SkipMarkerStore:
    """Sidecar files that keep rejected inputs out of future scans."""

    def __init__(self, write_why_sidecars: bool = True):
        self.write_why_sidecars = write_why_sidecars

    @staticmethod
    def marker_path(path: Path) -> Path:
        return path.with_name(path.name + MARKER_SUFFIX)

    @staticmethod
    def why_path(path: Path) -> Path:
        return path.with_name(path.name + WHY_SUFFIX)

    def has_marker(self, path: Path) -> bool:
        return self.marker_path(path).exists()

    def mark(self, path: Path, reason: str) -> Path:
        """Writes the marker (and the reason sidecar when enabled). Returns the marker path."""
        marker = self.marker_path(path)
        marker.write_text("")
        if self.write_why_sidecars:
            self.why_path(path).write_text(reason + "\n")
        logger.info(f"SKIP_MARKER: {path.name} reason={reason}")
        return marker
