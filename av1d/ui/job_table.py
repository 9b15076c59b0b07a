from datetime import datetime
from typing import Iterable, Optional
from rich.box import ROUNDED
from rich.table import Table
from av1d.domain.models import ConcurrencyPlan, Job, JobStatus

STATUS_STYLES = {
    JobStatus.PENDING: "dim",
    JobStatus.RUNNING: "cyan",
    JobStatus.SUCCESS: "green",
    JobStatus.FAILED: "red",
    JobStatus.SKIPPED: "yellow",
}


def format_size(size_bytes: Optional[int]) -> str:
    """Format bytes to human-readable string: 0B, 1.2KB, 45.1MB, 3.2GB."""
    if not size_bytes:
        return "0B"
    units = ["B", "KB", "MB", "GB", "TB"]
    val = float(size_bytes)
    idx = 0
    while val >= 1024.0 and idx < len(units) - 1:
        val /= 1024.0
        idx += 1
    if idx == 0:
        return f"{int(val)}B"
    return f"{val:.1f}{units[idx]}"


def format_timestamp(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def render_jobs_table(jobs: Iterable[Job], include_finished: bool = True) -> Table:
    table = Table(title="av1d jobs", box=ROUNDED, expand=True)
    table.add_column("ID", no_wrap=True, style="dim")
    table.add_column("File", ratio=1, overflow="fold")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Source")
    table.add_column("Before", justify="right")
    table.add_column("After", justify="right")
    table.add_column("Updated", no_wrap=True)
    table.add_column("Reason", overflow="fold")

    for job in jobs:
        if not include_finished and job.is_terminal:
            continue
        style = STATUS_STYLES.get(job.status, "")
        table.add_row(
            job.id[:8],
            job.input_path.name,
            job.stage.value,
            f"[{style}]{job.status.value}[/]" if style else job.status.value,
            job.source_type.value,
            format_size(job.original_size_bytes),
            format_size(job.output_size_bytes),
            format_timestamp(job.updated_at),
            job.error_reason or "",
        )
    return table


def render_plan_table(plan: ConcurrencyPlan) -> Table:
    table = Table(title="Concurrency plan", box=ROUNDED, show_header=False)
    table.add_column("Setting")
    table.add_column("Value", justify="right")
    table.add_row("Logical cores", str(plan.total_cores))
    table.add_row("Target threads", str(plan.target_threads))
    table.add_row("av1an workers per job", str(plan.av1an_workers))
    table.add_row("Max concurrent jobs", str(plan.max_concurrent_jobs))
    return table
