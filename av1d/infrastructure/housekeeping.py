import logging
import shutil
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

class HousekeepingService:
    """Service for cleaning up encoder leftovers in the temp directory."""

    def cleanup_stale_temp(self, temp_dir: Path, live_job_ids: Iterable[str]) -> int:
        """Removes chunk directories and temp outputs that belong to no live job."""
        if not temp_dir.is_dir():
            return 0
        live = set(live_job_ids)
        removed = 0
        for entry in sorted(temp_dir.iterdir()):
            if entry.is_dir() and entry.name.startswith("chunks_"):
                job_id = entry.name[len("chunks_"):]
                if job_id in live:
                    continue
                shutil.rmtree(entry, ignore_errors=True)
                removed += 1
            elif entry.is_file() and entry.suffix == ".mkv":
                if entry.stem in live:
                    continue
                try:
                    entry.unlink()
                    removed += 1
                except OSError as e:
                    logger.warning(f"HOUSEKEEPING: cannot remove {entry}: {e}")
        if removed:
            logger.info(f"HOUSEKEEPING: removed {removed} stale temp entries from {temp_dir}")
        return removed
