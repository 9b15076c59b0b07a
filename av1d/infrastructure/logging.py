import logging
import logging.handlers
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(threadName)s] %(message)s"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5


def setup_logging(log_dir: Path, debug: bool = False, log_path: Optional[Path] = None) -> logging.Logger:
    """
    Configures root logging for the daemon.

    Writes to ``log_dir/daemon.log`` (or ``log_path``), rotated at
    LOG_MAX_BYTES with LOG_BACKUP_COUNT old files kept. Each line carries the
    thread name so scan workers (av1d-scan_N) and job slots (av1d-job_N) can
    be told apart.
    """
    log_file = Path(log_path) if log_path else (log_dir / "daemon.log")
    log_file.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT
    )
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=[handler],
        force=True,
    )

    logger = logging.getLogger(__name__)
    logger.info(f"LOGGING_START: {log_file} debug={'on' if debug else 'off'}")
    return logger
