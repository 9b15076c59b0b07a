import math
import os
from typing import Optional
from av1d.config.models import AppConfig
from av1d.domain.models import ConcurrencyPlan

MIN_UTILIZATION = 0.5
MAX_UTILIZATION = 1.0


def clamp_utilization(value: float) -> float:
    return max(MIN_UTILIZATION, min(MAX_UTILIZATION, value))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def default_workers(total_cores: int) -> int:
    return 8 if total_cores >= 32 else 4


def default_max_jobs(total_cores: int) -> int:
    return 1 if total_cores >= 24 else 2


def derive_plan(config: AppConfig, detected_cores: Optional[int] = None) -> ConcurrencyPlan:
    """Derives worker and job-slot counts from core count and policy.

    Explicit nonzero overrides win verbatim; zero means derive from cores.
    """
    total_cores = config.cpu.logical_cores or detected_cores or os.cpu_count() or 1
    utilization = clamp_utilization(config.cpu.target_cpu_utilization)

    workers = config.av1an.workers_per_job or default_workers(total_cores)
    max_jobs = config.av1an.max_concurrent_jobs or default_max_jobs(total_cores)

    return ConcurrencyPlan(
        total_cores=total_cores,
        target_threads=_round_half_up(total_cores * utilization),
        av1an_workers=workers,
        max_concurrent_jobs=max_jobs,
    )
