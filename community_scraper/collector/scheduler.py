"""
Recurring scrape jobs.

Each job is a periodic task that posts its name onto one queue. A single
consumer drains the queue and calls the orchestrator, so jobs never run
concurrently; a job already waiting in the queue is not queued twice.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from community_scraper.collector.orchestrator import RunMode, ScrapeOrchestrator
from community_scraper.config import ScheduleConfig

logger = logging.getLogger(__name__)


@dataclass
class JobState:
    """Schedule and bookkeeping for one recurring job."""

    name: str
    mode: RunMode
    interval_sec: float
    enabled: bool = True
    pending: bool = False
    running: bool = False
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    last_status: Optional[str] = None
    runs: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "running": self.running,
            "pending": self.pending,
            "interval_sec": self.interval_sec,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_status": self.last_status,
            "runs": self.runs,
        }


class ScrapeScheduler:
    """Runs the broad, comments, trends and hot jobs on their own cadences."""

    def __init__(
        self,
        orchestrator: ScrapeOrchestrator,
        config: Optional[ScheduleConfig] = None,
        status_file: Optional[str] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            orchestrator: Orchestrator that executes the runs
            config: Job cadences and switches
            status_file: Optional JSON file rewritten on every state change
        """
        self.orchestrator = orchestrator
        self.config = config or ScheduleConfig()
        self.status_file = status_file
        self.jobs: Dict[str, JobState] = {
            name: JobState(
                name=name,
                mode=RunMode(name),
                interval_sec=getattr(self.config, f"{name}_interval_min") * 60,
                enabled=getattr(self.config, f"{name}_enabled"),
            )
            for name in ("broad", "comments", "trends", "hot")
        }
        self.is_running = False
        self.started_at: Optional[datetime] = None
        self._queue: Optional[asyncio.Queue] = None
        self._periodic_tasks: List[asyncio.Task] = []
        self._consumer: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the periodic tasks and the consumer."""
        if self.is_running:
            logger.warning("Scheduler already running")
            return

        self.is_running = True
        self.started_at = datetime.now(timezone.utc)
        self._queue = asyncio.Queue()
        self._consumer = asyncio.create_task(self._consume(), name="scheduler-consumer")
        for job in self.jobs.values():
            if job.enabled:
                self._periodic_tasks.append(asyncio.create_task(self._periodic(job), name=f"scheduler-{job.name}"))
            else:
                logger.info(f"Job {job.name} disabled")

        enabled = [f"{j.name}/{j.interval_sec / 60:g}m" for j in self.jobs.values() if j.enabled]
        logger.info(f"Scheduler started: {', '.join(enabled) or 'no jobs enabled'}")

        if self.config.run_on_start and self.jobs["broad"].enabled:
            self.trigger("broad")
        self._write_status()

    async def _periodic(self, job: JobState) -> None:
        while True:
            job.next_run = datetime.now(timezone.utc) + timedelta(seconds=job.interval_sec)
            self._write_status()
            await asyncio.sleep(job.interval_sec)
            self.trigger(job.name)

    def trigger(self, name: str) -> bool:
        """
        Request a run of ``name``.

        Returns:
            True if queued, False if the job is already pending or running
        """
        job = self.jobs.get(name)
        if job is None:
            raise ValueError(f"Unknown job '{name}', expected one of {sorted(self.jobs)}")
        if not self.is_running or self._queue is None:
            logger.warning(f"Scheduler not running, ignoring trigger for {name}")
            return False
        if job.pending or job.running:
            logger.info(f"Job {name} already {'running' if job.running else 'queued'}, coalescing trigger")
            return False

        job.pending = True
        self._queue.put_nowait(name)
        logger.debug(f"Queued job {name}")
        return True

    async def _consume(self) -> None:
        while True:
            name = await self._queue.get()
            if name is None:
                self._queue.task_done()
                return
            job = self.jobs[name]
            job.pending = False
            job.running = True
            self._write_status()
            try:
                result = await self.orchestrator.run(mode=job.mode)
                job.last_status = result.status.value
            except Exception as e:
                job.last_status = "error"
                logger.error(f"Job {name} raised: {e}", exc_info=True)
            finally:
                job.running = False
                job.runs += 1
                job.last_run = datetime.now(timezone.utc)
                self._queue.task_done()
                self._write_status()

    async def stop(self) -> None:
        """Cancel all triggers, stop the active run and wait for it to finish."""
        if not self.is_running:
            return

        logger.info("Stopping scheduler")
        self.is_running = False
        for task in self._periodic_tasks:
            task.cancel()
        await asyncio.gather(*self._periodic_tasks, return_exceptions=True)
        self._periodic_tasks = []

        while not self._queue.empty():
            self.jobs[self._queue.get_nowait()].pending = False
            self._queue.task_done()

        if any(job.running for job in self.jobs.values()):
            self.orchestrator.stop()

        if self._consumer is not None:
            # Sentinel lets the consumer finish the in-flight run and exit
            self._queue.put_nowait(None)
            await self._consumer
            self._consumer = None

        for job in self.jobs.values():
            job.pending = False
            job.running = False
            job.next_run = None
        self._queue = None
        self._write_status()
        logger.info("Scheduler stopped")

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "pid": os.getpid(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "jobs": {name: job.to_dict() for name, job in self.jobs.items()},
            "orchestrator": self.orchestrator.status(),
        }

    def _write_status(self) -> None:
        if not self.status_file:
            return
        path = Path(self.status_file)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(path.suffix + ".tmp")
            tmp.write_text(json.dumps(self.status(), indent=2), encoding="utf-8")
            tmp.replace(path)
        except OSError as e:
            logger.warning(f"Failed to write scheduler status to {path}: {e}")


def read_status_file(path: str) -> Optional[Dict[str, Any]]:
    """Load a status file written by a running scheduler, or None if absent."""
    status_path = Path(path)
    if not status_path.exists():
        return None
    try:
        return json.loads(status_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Unreadable scheduler status file {path}: {e}")
        return None
