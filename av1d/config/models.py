from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

class CpuConfig(BaseModel):
    """CPU topology policy used to derive the concurrency plan."""
    logical_cores: Optional[int] = Field(default=None, gt=0)  # None = auto-detect
    target_cpu_utilization: float = Field(default=0.85, gt=0.0)

class Av1anConfig(BaseModel):
    workers_per_job: int = Field(default=0, ge=0)  # 0 = derive from cores
    max_concurrent_jobs: int = Field(default=0, ge=0)  # 0 = derive from cores

class EncoderSafetyConfig(BaseModel):
    disallow_hardware_encoding: bool = True

class PathsConfig(BaseModel):
    job_state_dir: str = "/var/lib/av1d/jobs"
    temp_output_dir: str = "/var/lib/av1d/tmp"
    log_path: Optional[str] = None

class ScanConfig(BaseModel):
    library_roots: List[str] = Field(default_factory=list)
    scan_interval_secs: float = Field(default=60.0, gt=0)
    stability_wait_secs: float = Field(default=10.0, ge=0)
    write_why_sidecars: bool = True

class GatesConfig(BaseModel):
    min_bytes: int = Field(default=1048576, ge=0)
    max_size_ratio: float = Field(default=0.95, gt=0.0, le=1.0)
    keep_original: bool = False

class MetricsConfig(BaseModel):
    """Metrics HTTP endpoint configuration."""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = Field(default=7878, ge=1, le=65535)
    refresh_interval_secs: float = Field(default=0.5, ge=0.1)

class GeneralConfig(BaseModel):
    debug: bool = False

class AppConfig(BaseModel):
    cpu: CpuConfig = Field(default_factory=CpuConfig)
    av1an: Av1anConfig = Field(default_factory=Av1anConfig)
    encoder_safety: EncoderSafetyConfig = Field(default_factory=EncoderSafetyConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    gates: GatesConfig = Field(default_factory=GatesConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    general: GeneralConfig = Field(default_factory=GeneralConfig)

    @field_validator("scan")
    @classmethod
    def normalize_roots(cls, v: ScanConfig) -> ScanConfig:
        seen = set()
        roots: List[str] = []
        for root in v.library_roots:
            entry = str(root).strip()
            if entry and entry not in seen:
                seen.add(entry)
                roots.append(entry)
        v.library_roots = roots
        return v
