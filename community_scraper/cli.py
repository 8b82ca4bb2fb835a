"""Command-line interface for the community scraper."""

import asyncio
import json
import logging
import logging.config
import os
import signal
import sys
from enum import Enum
from pathlib import Path
from typing import List, Optional

import typer
import uvicorn
from typing_extensions import Annotated

from community_scraper.analysis.sentiment import SentimentAnalyzer
from community_scraper.api.main import create_app
from community_scraper.collector.orchestrator import RunMode, RunResult
from community_scraper.collector.proxy_manager import ProxyManager
from community_scraper.collector.scheduler import read_status_file
from community_scraper.config import Config
from community_scraper.engine import ScraperEngine
from community_scraper.exceptions import ConfigError, ScraperError
from community_scraper.monitoring.metrics import PrometheusExporter

app = typer.Typer(help="Community Scraper - Collect and analyze AI community discussions")
schedule_app = typer.Typer(help="Run and control the recurring scrape jobs")
app.add_typer(schedule_app, name="schedule")

logger = logging.getLogger(__name__)

ConfigOption = Annotated[str, typer.Option("--config", "-c", help="Path to configuration file")]
LogLevelOption = Annotated[Optional[str], typer.Option("--loglevel", "-l", help="Logging level (overrides config)")]


class ScrapeLoop(str, Enum):
    ONCE = "once"
    CONTINUOUS = "continuous"


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = "logs/scraper.log") -> None:
    """
    Set up logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Rotating log file, or None for console only
    """
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": "standard",
            "stream": "ext://sys.stderr",
        },
    }
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": "standard",
            "filename": log_file,
            "maxBytes": 10485760,  # 10 MB
            "backupCount": 5,
            "encoding": "utf8",
        }

    log_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
            },
        },
        "handlers": handlers,
        "loggers": {
            "": {
                "handlers": list(handlers),
                "level": log_level,
                "propagate": True,
            },
            "asyncio": {"level": "WARNING"},
            "aiohttp": {"level": "WARNING"},
        },
    }

    logging.config.dictConfig(log_config)


def load_config(config_path: str, loglevel: Optional[str] = None, verbose: bool = False) -> Config:
    """Load and validate configuration, set up logging, exit 1 if invalid."""
    try:
        config = Config.from_files(config_path)
    except ConfigError as e:
        setup_logging("ERROR", None)
        logger.critical(f"Invalid configuration: {e}")
        sys.exit(1)

    level = "DEBUG" if verbose else (loglevel or config.logging.level).upper()
    setup_logging(level, config.logging.file)

    validation_errors = config.validate()
    if validation_errors:
        for error in validation_errors:
            logger.error(f"Configuration error: {error}")
        logger.critical("Invalid configuration, aborting")
        sys.exit(1)
    return config


def build_exporter(config: Config) -> Optional[PrometheusExporter]:
    if not config.monitoring.enable_prometheus:
        return None
    exporter = PrometheusExporter(port=config.monitoring.prometheus_port)
    exporter.start_server()
    return exporter


def install_shutdown_handlers(shutdown_event: asyncio.Event) -> None:
    """Set ``shutdown_event`` on SIGINT or SIGTERM."""
    loop = asyncio.get_running_loop()

    def handle_shutdown_signal(signum: int) -> None:
        logger.info(f"Received {signal.Signals(signum).name} signal, initiating graceful shutdown")
        shutdown_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, handle_shutdown_signal, signum)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform or outside the main thread
            logger.debug(f"Cannot install handler for {signal.Signals(signum).name}")


def _interval_for(config: Config, mode: RunMode) -> float:
    return getattr(config.schedule, f"{mode.value}_interval_min") * 60


def _print_result(result: RunResult) -> None:
    typer.echo(json.dumps(result.to_dict(), indent=2, default=str))


async def run_scrape(
    config: Config,
    loop_mode: ScrapeLoop,
    sources: Optional[List[str]],
    mode: RunMode,
    interval_sec: Optional[float] = None,
) -> bool:
    """
    Run one sweep, or sweeps on an interval until interrupted.

    Returns:
        False if a run failed fatally, True otherwise
    """
    engine = ScraperEngine(config, prometheus_exporter=build_exporter(config))
    shutdown_event = asyncio.Event()
    install_shutdown_handlers(shutdown_event)
    interval = interval_sec if interval_sec is not None else _interval_for(config, mode)

    async with engine:
        while True:
            run_task = asyncio.create_task(engine.run_once(sources, mode))
            stop_task = asyncio.create_task(shutdown_event.wait())
            await asyncio.wait({run_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            if not run_task.done():
                engine.stop_run()
            result = await run_task
            stop_task.cancel()

            _print_result(result)
            if result.fatal:
                return False
            if loop_mode is ScrapeLoop.ONCE or shutdown_event.is_set():
                return True

            logger.info(f"Next {mode.value} run in {interval / 60:g} minutes")
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
                return True
            except asyncio.TimeoutError:
                continue


@app.command()
def scrape(
    loop_mode: Annotated[ScrapeLoop, typer.Argument(help="Run a single sweep or keep sweeping on an interval")] = ScrapeLoop.ONCE,
    source: Annotated[Optional[List[str]], typer.Option("--source", "-s", help="Source to scrape (repeatable, default: configured sources)")] = None,
    mode: Annotated[RunMode, typer.Option("--mode", "-m", help="Sweep mode")] = RunMode.BROAD,
    interval: Annotated[Optional[float], typer.Option("--interval", "-i", help="Minutes between continuous runs (default: the mode's schedule)")] = None,
    config: ConfigOption = "config.yaml",
    loglevel: LogLevelOption = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose output")] = False,
) -> None:
    """
    Scrape the configured communities.

    Run once and print the run summary, or keep running on an interval until interrupted.
    """
    config_obj = load_config(config, loglevel, verbose)
    logger.info(f"Starting community scraper (loop={loop_mode.value}, mode={mode.value})")

    ok = asyncio.run(run_scrape(
        config_obj,
        loop_mode,
        source or None,
        mode,
        interval_sec=interval * 60 if interval is not None else None,
    ))
    if not ok:
        sys.exit(1)


async def run_scheduler(config: Config, run_now: bool = False) -> None:
    """Run the scheduler in the foreground until SIGINT or SIGTERM."""
    engine = ScraperEngine(config, prometheus_exporter=build_exporter(config))
    shutdown_event = asyncio.Event()
    install_shutdown_handlers(shutdown_event)

    async with engine:
        await engine.start_scheduled()
        if run_now:
            engine.scheduler.trigger("broad")
        await shutdown_event.wait()
        await engine.stop_scheduled()


def _read_pid(pid_file: str) -> Optional[int]:
    try:
        return int(Path(pid_file).read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


@schedule_app.command("start")
def schedule_start(
    config: ConfigOption = "config.yaml",
    run_now: Annotated[bool, typer.Option("--run-now", help="Queue a broad run immediately")] = False,
    loglevel: LogLevelOption = None,
) -> None:
    """Run the recurring jobs in the foreground until stopped."""
    config_obj = load_config(config, loglevel)
    pid_file = Path(config_obj.schedule.pid_file)

    existing = _read_pid(str(pid_file))
    if existing and existing != os.getpid() and _pid_alive(existing):
        typer.echo(f"Scheduler already running (pid {existing})")
        return

    pid_file.parent.mkdir(parents=True, exist_ok=True)
    pid_file.write_text(str(os.getpid()), encoding="utf-8")
    try:
        asyncio.run(run_scheduler(config_obj, run_now))
    finally:
        pid_file.unlink(missing_ok=True)
    logger.info("Scheduler exited")


@schedule_app.command("stop")
def schedule_stop(config: ConfigOption = "config.yaml") -> None:
    """Ask a running scheduler to shut down gracefully."""
    config_obj = load_config(config, "WARNING")
    pid = _read_pid(config_obj.schedule.pid_file)
    if pid is None or not _pid_alive(pid):
        typer.echo("Scheduler is not running")
        return

    os.kill(pid, signal.SIGTERM)
    typer.echo(f"Sent SIGTERM to scheduler (pid {pid})")


@schedule_app.command("status")
def schedule_status(config: ConfigOption = "config.yaml") -> None:
    """Print the status written by the scheduler process."""
    config_obj = load_config(config, "WARNING")
    pid = _read_pid(config_obj.schedule.pid_file)
    status = read_status_file(config_obj.schedule.status_file)

    if status is None:
        typer.echo("No scheduler status available")
        return
    status["process_alive"] = bool(pid and _pid_alive(pid))
    typer.echo(json.dumps(status, indent=2))


@app.command()
def dashboard(
    config: ConfigOption = "config.yaml",
    host: Annotated[Optional[str], typer.Option("--host", help="Bind address (overrides config)")] = None,
    port: Annotated[Optional[int], typer.Option("--port", "-p", help="Port (overrides config)")] = None,
    loglevel: LogLevelOption = None,
) -> None:
    """Serve the read-only dashboard API."""
    config_obj = load_config(config, loglevel)
    bind_host = host or config_obj.dashboard.host
    bind_port = port if port is not None else config_obj.dashboard.port
    logger.info(f"Starting dashboard API on {bind_host}:{bind_port}")
    uvicorn.run(create_app(config=config_obj), host=bind_host, port=bind_port, log_config=None)


async def run_checks(config: Config, check_proxies: bool = False) -> List[str]:
    """
    Self-test the analyzer, the store and optionally the proxy pool.

    Returns:
        Human readable failure messages, empty if everything passed
    """
    failures = []

    analyzer = SentimentAnalyzer()
    positive = analyzer.analyze("This new model is amazing and revolutionary")
    negative = analyzer.analyze("This update is broken, buggy and useless")
    if positive.score <= 0 or negative.score >= 0:
        failures.append(f"Analyzer sanity check failed (positive={positive.score}, negative={negative.score})")
    else:
        typer.echo(f"analyzer: ok (positive={positive.score}, negative={negative.score})")

    engine = ScraperEngine(config, status_file="")
    try:
        await engine.initialize()
        stats = await engine.get_stats()
        typer.echo(f"store: ok ({stats.total_posts} posts, {stats.total_comments} comments)")
    except ScraperError as e:
        failures.append(f"Store check failed: {e}")
    finally:
        await engine.close()

    if check_proxies:
        manager = ProxyManager(config.proxy)
        size = await manager.initialize()
        if size == 0:
            failures.append("Proxy pool is empty")
        else:
            proxy_stats = await manager.check_all()
            typer.echo(f"proxies: {proxy_stats.working}/{proxy_stats.total} working")

    return failures


@app.command()
def check(
    config: ConfigOption = "config.yaml",
    proxies: Annotated[bool, typer.Option("--proxies", help="Also fetch and probe the proxy pool")] = False,
) -> None:
    """
    Validate the configuration and self-test the components.

    Only an invalid configuration sets a non-zero exit status; other failures are reported.
    """
    config_obj = load_config(config, "WARNING")
    typer.echo(f"config: ok ({len(config_obj.sources)} sources, backend={config_obj.navigator.backend})")

    failures = asyncio.run(run_checks(config_obj, proxies))
    for failure in failures:
        typer.echo(f"FAIL: {failure}")
    typer.echo("All checks passed" if not failures else f"{len(failures)} check(s) failed")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
