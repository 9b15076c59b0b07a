import logging
import re
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence
from av1d.config.models import AppConfig
from av1d.infrastructure.av1an import Av1anAdapter

logger = logging.getLogger(__name__)

HARDWARE_ENCODER_FLAGS = ("nvenc", "qsv", "vaapi", "cuda", "amf", "vce", "qsvenc")
MIN_FFMPEG_MAJOR = 8


class StartupError(Exception):
    """A fatal condition found before the scan loop starts."""


def check_config_invariants(config: AppConfig) -> None:
    if not config.scan.library_roots:
        raise StartupError("no library roots configured (scan.library_roots is empty)")
    if not config.paths.job_state_dir:
        raise StartupError("paths.job_state_dir is not set")
    if not config.paths.temp_output_dir:
        raise StartupError("paths.temp_output_dir is not set")
    if not 0.0 < config.gates.max_size_ratio <= 1.0:
        raise StartupError(f"gates.max_size_ratio must be in (0, 1], got {config.gates.max_size_ratio}")


def find_hardware_flags(args: Sequence[str]) -> List[str]:
    """Returns the hardware encoder flags mentioned anywhere in the argument list."""
    found = []
    for arg in args:
        lowered = arg.lower()
        for flag in HARDWARE_ENCODER_FLAGS:
            if flag in lowered and flag not in found:
                found.append(flag)
    return found


def assert_software_only(args: Sequence[str]) -> None:
    found = find_hardware_flags(args)
    if found:
        raise StartupError(
            f"hardware encoding is disallowed but the encoder command contains: {', '.join(found)}"
        )


def parse_ffmpeg_major(version_output: str) -> Optional[int]:
    """Extracts the major version from `ffmpeg -version` output.

    Handles release strings ("ffmpeg version 8.0.1") and git builds with an
    "n" prefix ("ffmpeg version n8.0-12-gabc").
    """
    match = re.search(r"ffmpeg version\s+(\S+)", version_output)
    if not match:
        return None
    token = match.group(1).lstrip("nN")
    head = re.split(r"[.\-]", token, maxsplit=1)[0]
    if not head.isdigit():
        return None
    return int(head)


def check_av1an(encoder: Av1anAdapter) -> None:
    try:
        result = encoder.version_check()
    except OSError as e:
        raise StartupError(f"av1an is not available: {e}") from e
    if result.returncode != 0:
        raise StartupError(f"av1an --version failed: {result.stderr.strip()}")
    lines = result.stdout.strip().splitlines()
    logger.info(f"STARTUP: av1an {lines[0] if lines else 'found'}")


def check_ffmpeg(binary: str = "ffmpeg") -> int:
    try:
        result = subprocess.run([binary, "-version"], capture_output=True, text=True)
    except OSError as e:
        raise StartupError(f"ffmpeg is not available: {e}") from e
    if result.returncode != 0:
        raise StartupError(f"ffmpeg -version failed: {result.stderr.strip()}")
    major = parse_ffmpeg_major(result.stdout)
    if major is None:
        raise StartupError("could not determine ffmpeg version")
    if major < MIN_FFMPEG_MAJOR:
        raise StartupError(f"ffmpeg {major}.x found, version {MIN_FFMPEG_MAJOR} or newer is required")
    logger.info(f"STARTUP: ffmpeg major version {major}")
    return major


def run_startup_checks(config: AppConfig, encoder: Av1anAdapter, skip_tool_checks: bool = False) -> None:
    """Runs all fatal pre-flight checks in order. Raises StartupError on the first failure."""
    check_config_invariants(config)
    if skip_tool_checks:
        logger.warning("STARTUP: tool checks skipped")
        return

    if config.encoder_safety.disallow_hardware_encoding:
        sample = encoder.build_command(Path("input.mkv"), Path("output.mkv"), Path("temp"), 1)
        assert_software_only(sample)
    check_av1an(encoder)
    check_ffmpeg()
