"""Tests for the recurring job scheduler."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from community_scraper.collector.orchestrator import RunMode, RunResult, RunStatus
from community_scraper.collector.scheduler import ScrapeScheduler, read_status_file
from community_scraper.config import ScheduleConfig

QUIET = ScheduleConfig(
    broad_interval_min=600,
    comments_interval_min=600,
    trends_interval_min=600,
    hot_interval_min=600,
)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def make_orchestrator(block: asyncio.Event = None) -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.status.return_value = {"state": "idle"}

    async def run(sources=None, mode=RunMode.BROAD):
        if block is not None:
            await block.wait()
        return RunResult(mode=mode, status=RunStatus.COMPLETED)

    orchestrator.run = AsyncMock(side_effect=run)
    return orchestrator


@pytest.fixture
def status_path(tmp_path):
    return str(tmp_path / "status" / "scheduler.json")


async def test_trigger_coalesces_pending_and_running_jobs():
    release = asyncio.Event()
    orchestrator = make_orchestrator(release)
    scheduler = ScrapeScheduler(orchestrator, QUIET)
    await scheduler.start()
    try:
        assert scheduler.trigger("broad") is True
        await wait_until(lambda: scheduler.jobs["broad"].running)

        assert scheduler.trigger("broad") is False
        assert scheduler.trigger("hot") is True
        assert scheduler.trigger("hot") is False
        assert scheduler.jobs["hot"].pending is True

        release.set()
        await wait_until(lambda: scheduler.jobs["hot"].runs == 1)
    finally:
        await scheduler.stop()

    modes = [c.kwargs["mode"] for c in orchestrator.run.await_args_list]
    assert modes == [RunMode.BROAD, RunMode.HOT]
    assert scheduler.jobs["broad"].last_status == "completed"


async def test_unknown_job_raises():
    scheduler = ScrapeScheduler(make_orchestrator(), QUIET)
    with pytest.raises(ValueError):
        scheduler.trigger("weekly")


async def test_trigger_before_start_is_ignored():
    orchestrator = make_orchestrator()
    scheduler = ScrapeScheduler(orchestrator, QUIET)
    assert scheduler.trigger("broad") is False
    orchestrator.run.assert_not_called()


async def test_periodic_job_fires():
    config = ScheduleConfig(
        hot_interval_min=0.001,
        broad_enabled=False,
        comments_enabled=False,
        trends_enabled=False,
    )
    orchestrator = make_orchestrator()
    scheduler = ScrapeScheduler(orchestrator, config)
    await scheduler.start()
    try:
        assert len(scheduler._periodic_tasks) == 1
        await wait_until(lambda: scheduler.jobs["hot"].runs >= 2)
    finally:
        await scheduler.stop()

    assert all(c.kwargs["mode"] is RunMode.HOT for c in orchestrator.run.await_args_list)


async def test_run_on_start_queues_broad():
    orchestrator = make_orchestrator()
    scheduler = ScrapeScheduler(orchestrator, ScheduleConfig(run_on_start=True))
    await scheduler.start()
    try:
        await wait_until(lambda: scheduler.jobs["broad"].runs == 1)
    finally:
        await scheduler.stop()
    orchestrator.run.assert_awaited_once_with(mode=RunMode.BROAD)


async def test_failing_job_does_not_stop_the_consumer():
    orchestrator = make_orchestrator()
    orchestrator.run.side_effect = [RuntimeError("boom"), RunResult(mode=RunMode.HOT)]
    scheduler = ScrapeScheduler(orchestrator, QUIET)
    await scheduler.start()
    try:
        scheduler.trigger("broad")
        await wait_until(lambda: scheduler.jobs["broad"].runs == 1)
        scheduler.trigger("hot")
        await wait_until(lambda: scheduler.jobs["hot"].runs == 1)
    finally:
        await scheduler.stop()

    assert scheduler.jobs["broad"].last_status == "error"
    assert scheduler.jobs["hot"].last_status == "completed"


async def test_stop_interrupts_active_run_and_drops_queue():
    release = asyncio.Event()
    orchestrator = make_orchestrator(release)
    orchestrator.stop.side_effect = release.set
    scheduler = ScrapeScheduler(orchestrator, QUIET)
    await scheduler.start()

    scheduler.trigger("broad")
    await wait_until(lambda: scheduler.jobs["broad"].running)
    scheduler.trigger("comments")

    await scheduler.stop()

    orchestrator.stop.assert_called_once()
    assert orchestrator.run.await_count == 1
    assert scheduler.is_running is False
    assert not any(job.pending or job.running for job in scheduler.jobs.values())


async def test_status_file_tracks_lifecycle(status_path):
    scheduler = ScrapeScheduler(make_orchestrator(), QUIET, status_file=status_path)

    await scheduler.start()
    running = read_status_file(status_path)
    await scheduler.stop()
    stopped = read_status_file(status_path)

    assert running["running"] is True
    assert set(running["jobs"]) == {"broad", "comments", "trends", "hot"}
    assert running["jobs"]["hot"]["interval_sec"] == 36000
    assert running["orchestrator"] == {"state": "idle"}
    assert stopped["running"] is False
    assert stopped["jobs"]["broad"]["next_run"] is None


def test_read_status_file_missing_or_corrupt(tmp_path):
    assert read_status_file(str(tmp_path / "absent.json")) is None

    corrupt = tmp_path / "corrupt.json"
    corrupt.write_text("{not json")
    assert read_status_file(str(corrupt)) is None

    valid = tmp_path / "valid.json"
    valid.write_text(json.dumps({"running": False}))
    assert read_status_file(str(valid)) == {"running": False}
