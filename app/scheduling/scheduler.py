"""
Scheduler

Small asyncio job runner: each job has a trigger and an async callable.
run_pending() starts every due job as a task; a job still running from
its previous fire is skipped rather than stacked.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from app.scheduling.clock import Clock, SystemClock
from app.core.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TICK_SECONDS = 0.25


class Trigger(Protocol):
    def next_fire(self, after: datetime) -> datetime:
        ...


@dataclass
class ScheduledJob:
    """A registered job and its run bookkeeping."""
    name: str
    trigger: Trigger
    func: Callable[[], Awaitable[Any]]
    next_run: datetime
    task: Optional[asyncio.Task] = None
    runs: int = 0
    failures: int = 0
    skipped: int = 0

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()


class Scheduler:
    """
    Async job scheduler driven by a Clock.

    Usage:
        scheduler = Scheduler(clock)
        scheduler.add_job("position-monitor", IntervalTrigger(2), monitor.run_cycle)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(self, clock: Optional[Clock] = None, tick_seconds: float = DEFAULT_TICK_SECONDS):
        self.clock = clock or SystemClock()
        self.tick_seconds = tick_seconds
        self.jobs: Dict[str, ScheduledJob] = {}
        self._loop_task: Optional[asyncio.Task] = None
        self._running = False

    def add_job(self, name: str, trigger: Trigger, func: Callable[[], Awaitable[Any]]) -> ScheduledJob:
        """Register a job; its first run is the trigger's next fire after now."""
        if name in self.jobs:
            raise ValueError(f"Job {name} already registered")
        job = ScheduledJob(name=name, trigger=trigger, func=func, next_run=trigger.next_fire(self.clock.now()))
        self.jobs[name] = job
        logger.info(f"Scheduled job {name}: {trigger!r}, first run {job.next_run.isoformat()}")
        return job

    async def run_pending(self, now: Optional[datetime] = None) -> List[str]:
        """
        Start every due job.

        Returns:
            Names of the jobs started
        """
        now = now or self.clock.now()
        started = []
        for job in self.jobs.values():
            if job.next_run > now:
                continue

            job.next_run = job.trigger.next_fire(now)
            if job.running:
                job.skipped += 1
                logger.debug(f"Job {job.name} still running, skipping this fire")
                continue

            job.task = asyncio.create_task(self._run_job(job), name=f"job:{job.name}")
            started.append(job.name)

        # Let freshly created tasks start before returning
        await asyncio.sleep(0)
        return started

    async def _run_job(self, job: ScheduledJob) -> None:
        try:
            await job.func()
            job.runs += 1
        except asyncio.CancelledError:
            raise
        except Exception:
            job.failures += 1
            logger.exception(f"Job {job.name} failed")

    async def drain(self) -> None:
        """Wait for every running job to finish."""
        tasks = [job.task for job in self.jobs.values() if job.running]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def start(self) -> None:
        """Start the background loop."""
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._loop(), name="scheduler")
        logger.info(f"Scheduler started with {len(self.jobs)} jobs")

    async def _loop(self) -> None:
        while self._running:
            await self.run_pending()
            await self.clock.sleep(self.tick_seconds)

    async def stop(self) -> None:
        """Stop the loop and wait for in-flight jobs."""
        self._running = False
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        await self.drain()
        logger.info("Scheduler stopped")
