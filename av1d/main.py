import signal
import threading
import typer
from pathlib import Path
from typing import Optional
from rich.console import Console

from av1d.config.loader import load_config, apply_env_overrides
from av1d.config.models import AppConfig
from av1d.infrastructure.logging import setup_logging
from av1d.infrastructure.event_bus import EventBus
from av1d.infrastructure.av1an import Av1anAdapter
from av1d.infrastructure.ffprobe import FFprobeAdapter
from av1d.infrastructure.file_scanner import LibraryScanner
from av1d.infrastructure.housekeeping import HousekeepingService
from av1d.infrastructure.job_store import JobStore, load_jobs
from av1d.infrastructure.metrics_server import MetricsServer
from av1d.infrastructure.replacer import AtomicReplacer
from av1d.infrastructure.skip_marker import SkipMarkerStore
from av1d.infrastructure.stability import StabilityDetector
from av1d.infrastructure.system_monitor import SystemMonitor
from av1d.pipeline.concurrency import derive_plan
from av1d.pipeline.executor import JobExecutor
from av1d.pipeline.metrics import MetricsAggregator, MetricsTicker
from av1d.pipeline.orchestrator import Daemon
from av1d.pipeline.startup import StartupError, run_startup_checks
from av1d.pipeline.validator import OutputValidator
from av1d.ui.job_table import render_jobs_table, render_plan_table

app = typer.Typer(help="av1d - library AV1 transcoding daemon")

DEFAULT_CONFIG = Path("conf/av1d.yaml")


def _load(config_path: Path) -> AppConfig:
    return apply_env_overrides(load_config(config_path))


@app.command()
def run(
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    skip_checks: bool = typer.Option(False, "--skip-checks", help="Skip av1an/ffmpeg/hardware pre-flight checks"),
    once: bool = typer.Option(False, "--once", help="Run a single scan cycle, wait for its jobs and exit"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Run the transcoding daemon."""
    try:
        config = _load(config_path)
        if log_path is not None:
            config.paths.log_path = str(log_path)
        if debug:
            config.general.debug = True

        state_dir = Path(config.paths.job_state_dir)
        temp_dir = Path(config.paths.temp_output_dir)
        logger = setup_logging(
            state_dir.parent,
            debug=config.general.debug,
            log_path=Path(config.paths.log_path) if config.paths.log_path else None,
        )

        event_bus = EventBus()
        shutdown_event = threading.Event()
        encoder = Av1anAdapter(event_bus, debug=config.general.debug)

        try:
            run_startup_checks(config, encoder, skip_tool_checks=skip_checks)
        except StartupError as e:
            logger.error(f"STARTUP_FAILED: {e}")
            typer.secho(f"Startup check failed: {e}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        plan = derive_plan(config)
        logger.info(
            f"Config: cores={plan.total_cores}, target_threads={plan.target_threads}, "
            f"workers={plan.av1an_workers}, max_jobs={plan.max_concurrent_jobs}, "
            f"min_bytes={config.gates.min_bytes}, max_ratio={config.gates.max_size_ratio}, "
            f"keep_original={config.gates.keep_original}"
        )

        temp_dir.mkdir(parents=True, exist_ok=True)
        store = JobStore(state_dir)
        store.load()

        prober = FFprobeAdapter()
        skip_markers = SkipMarkerStore(write_why_sidecars=config.scan.write_why_sidecars)
        replacer = AtomicReplacer()
        executor = JobExecutor(
            store=store,
            plan=plan,
            encoder=encoder,
            validator=OutputValidator(prober),
            replacer=replacer,
            skip_markers=skip_markers,
            config=config,
            event_bus=event_bus,
            shutdown_event=shutdown_event,
        )
        daemon = Daemon(
            config=config,
            event_bus=event_bus,
            scanner=LibraryScanner(skip_markers),
            stability=StabilityDetector(
                config.scan.stability_wait_secs,
                sleep=lambda secs: shutdown_event.wait(secs),
            ),
            prober=prober,
            store=store,
            executor=executor,
            skip_markers=skip_markers,
            housekeeping=HousekeepingService(),
            shutdown_event=shutdown_event,
            replacer=replacer,
        )

        aggregator = MetricsAggregator(store, plan, event_bus, SystemMonitor())
        ticker = None
        server = None
        if config.metrics.enabled:
            aggregator.refresh()
            ticker = MetricsTicker(aggregator, config.metrics.refresh_interval_secs)
            ticker.start()
            server = MetricsServer(aggregator, port=config.metrics.port, host=config.metrics.host)
            server.start()

        def _on_signal(signum, frame):
            logger.info(f"Received signal {signum}, shutting down")
            shutdown_event.set()

        signal.signal(signal.SIGTERM, _on_signal)
        typer.secho(
            f"av1d running: {len(config.scan.library_roots)} roots, "
            f"{plan.max_concurrent_jobs} job slots x {plan.av1an_workers} workers",
            fg=typer.colors.GREEN,
        )

        try:
            daemon.run(once=once)
        finally:
            daemon.shutdown()
            if server:
                server.stop()
            if ticker:
                ticker.stop()

    except KeyboardInterrupt:
        typer.secho("\nStopped by user (Ctrl+C); unfinished jobs resume on next start", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)

    except typer.Exit:
        raise

    except Exception as e:
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


@app.command()
def plan(
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
):
    """Print the concurrency plan derived from the config and this host."""
    try:
        config = _load(config_path)
    except Exception as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    Console().print(render_plan_table(derive_plan(config)))


@app.command()
def jobs(
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    show_all: bool = typer.Option(False, "--all", "-a", help="Include finished jobs"),
):
    """List job records from the job state directory."""
    try:
        config = _load(config_path)
    except Exception as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    records = load_jobs(Path(config.paths.job_state_dir))
    Console().print(render_jobs_table(records, include_finished=show_all))


if __name__ == "__main__":
    app()
