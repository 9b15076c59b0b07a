import logging
import os
import yaml
from pathlib import Path
from typing import Mapping, Optional
from .models import AppConfig

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"true", "1", "yes"}
_FALSE_VALUES = {"false", "0", "no"}


def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    return AppConfig(**data)


def _parse_bool(value: str) -> Optional[bool]:
    text = value.strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return None


def apply_env_overrides(config: AppConfig, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Applies environment variable overrides and returns a new, validated config.

    Recognized variables: CPU_LOGICAL_CORES, CPU_TARGET_UTILIZATION,
    AV1AN_WORKERS_PER_JOB, AV1AN_MAX_CONCURRENT_JOBS and
    ENCODER_DISALLOW_HARDWARE_ENCODING. Values that do not parse are ignored.
    """
    env = os.environ if environ is None else environ
    data = config.model_dump()

    raw = env.get("CPU_LOGICAL_CORES")
    if raw is not None:
        try:
            data["cpu"]["logical_cores"] = int(raw)
        except ValueError:
            logger.warning(f"Ignoring CPU_LOGICAL_CORES={raw!r}: not an integer")

    raw = env.get("CPU_TARGET_UTILIZATION")
    if raw is not None:
        try:
            data["cpu"]["target_cpu_utilization"] = float(raw)
        except ValueError:
            logger.warning(f"Ignoring CPU_TARGET_UTILIZATION={raw!r}: not a number")

    for var, key in (("AV1AN_WORKERS_PER_JOB", "workers_per_job"),
                     ("AV1AN_MAX_CONCURRENT_JOBS", "max_concurrent_jobs")):
        raw = env.get(var)
        if raw is None:
            continue
        try:
            data["av1an"][key] = int(raw)
        except ValueError:
            logger.warning(f"Ignoring {var}={raw!r}: not an integer")

    raw = env.get("ENCODER_DISALLOW_HARDWARE_ENCODING")
    if raw is not None:
        parsed = _parse_bool(raw)
        if parsed is None:
            logger.warning(f"Ignoring ENCODER_DISALLOW_HARDWARE_ENCODING={raw!r}: not a boolean")
        else:
            data["encoder_safety"]["disallow_hardware_encoding"] = parsed

    return AppConfig(**data)
