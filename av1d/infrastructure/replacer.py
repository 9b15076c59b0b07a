"""Backup-then-swap replacement of an original file by its encoded version.

Protocol:
    1. Move the original to ``<original>.orig.<unix-seconds>`` (rename, or
       copy + delete when rename is not possible). If no backup can be made,
       nothing is touched.
    2. Copy the encoded file over the original path. If the copy fails the
       backup is moved back.
    3. Remove the temp encoded file, and the backup unless keep_original.

The original path always holds either the old or the new file.
"""

import logging
import os
import shutil
import time
from pathlib import Path
from typing import Callable, NamedTuple, Optional

logger = logging.getLogger(__name__)


class ReplaceError(Exception):
    """Replacement failed. Files listed on the exception are left on disk."""

    def __init__(self, message: str, stage: str, backup_path: Optional[Path] = None,
                 encoded_path: Optional[Path] = None):
        super().__init__(message)
        self.stage = stage
        self.backup_path = backup_path
        self.encoded_path = encoded_path


class ReplaceOutcome(NamedTuple):
    original_path: Path
    backup_path: Path
    backup_kept: bool
    cleanup_errors: tuple = ()


class AtomicReplacer:

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock

    def backup_path(self, original: Path) -> Path:
        return original.with_name(f"{original.name}.orig.{int(self._clock())}")

    @staticmethod
    def latest_backup(original: Path) -> Optional[Path]:
        """Newest <original>.orig.<unix-seconds> next to the original, if any."""
        prefix = f"{original.name}.orig."
        try:
            entries = list(original.parent.iterdir())
        except OSError:
            return None
        backups = [
            (int(p.name[len(prefix):]), p) for p in entries
            if p.name.startswith(prefix) and p.name[len(prefix):].isdigit()
        ]
        return max(backups)[1] if backups else None

    def restore_backup(self, original: Path) -> Optional[Path]:
        """Moves the newest backup back into place when the original path is empty.

        Returns the backup that was restored, or None when there was nothing to do.
        Raises OSError if the move fails.
        """
        if original.exists():
            return None
        backup = self.latest_backup(original)
        if backup is None:
            return None
        os.replace(backup, original)
        logger.warning(f"REPLACE_RESTORED: {original.name} <- {backup.name}")
        return backup

    def _make_backup(self, original: Path, backup: Path) -> None:
        try:
            os.rename(original, backup)
            return
        except OSError as e:
            logger.debug(f"REPLACE_RENAME_FALLBACK: {original.name} - {e}")

        try:
            shutil.copy2(original, backup)
            original.unlink()
        except OSError as e:
            # Original still in place; remove the partial copy
            if original.exists() and backup.exists():
                try:
                    backup.unlink()
                except OSError:
                    logger.warning(f"REPLACE_PARTIAL_BACKUP_LEFT: {backup}")
            raise ReplaceError(f"cannot back up {original}: {e}", stage="backup") from e

    def replace(self, original: Path, encoded: Path, keep_original: bool = False) -> ReplaceOutcome:
        original = Path(original)
        encoded = Path(encoded)
        if not encoded.exists():
            raise ReplaceError(f"encoded file missing: {encoded}", stage="precheck")

        backup = self.backup_path(original)
        self._make_backup(original, backup)

        try:
            shutil.copyfile(encoded, original)
        except OSError as e:
            logger.error(f"REPLACE_COPY_FAILED: {original.name} - {e}")
            try:
                os.replace(backup, original)
            except OSError as restore_error:
                raise ReplaceError(
                    f"copy failed ({e}) and restore failed ({restore_error}); "
                    f"backup kept at {backup}, encoded kept at {encoded}",
                    stage="restore", backup_path=backup, encoded_path=encoded,
                ) from e
            raise ReplaceError(
                f"copy of encoded file failed: {e}; original restored, encoded kept at {encoded}",
                stage="copy", encoded_path=encoded,
            ) from e

        cleanup_errors = []
        try:
            encoded.unlink()
        except OSError as e:
            cleanup_errors.append(f"temp {encoded}: {e}")

        backup_kept = keep_original
        if not keep_original:
            try:
                backup.unlink()
            except OSError as e:
                backup_kept = True
                cleanup_errors.append(f"backup {backup}: {e}")

        for err in cleanup_errors:
            logger.warning(f"REPLACE_CLEANUP_FAILED: {err}")
        logger.info(f"REPLACE_DONE: {original.name} (backup_kept={backup_kept})")
        return ReplaceOutcome(original, backup, backup_kept, tuple(cleanup_errors))
