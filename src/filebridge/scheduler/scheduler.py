"""
Cron scheduler for active jobs.

One asyncio timer task per job, all evaluated in one timezone. The timer map
is owned by the JobScheduler instance and rebuilt from the store on start().
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from filebridge.exceptions import CronParseError, JobAlreadyRunningError, JobNotFoundError
from filebridge.models import JobRun, JobStatus, RunTrigger
from filebridge.scheduler.cron import CronExpression, get_timezone, parse_cron
from filebridge.store.base import JobStore
from filebridge.transfer.engine import TransferEngine
from filebridge.utils.logging import get_logger

logger = get_logger("filebridge.scheduler")


class JobScheduler:
    """
    Args:
        store: Job store
        engine: Engine that executes runs
        timezone: IANA timezone every cron expression is evaluated in
        clock: Returns the current aware datetime (tests override it)
    """

    def __init__(
        self,
        store: JobStore,
        engine: TransferEngine,
        timezone: str = "UTC",
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.engine = engine
        self._tz = get_timezone(timezone)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._timers: dict[int, asyncio.Task] = {}
        self._schedules: dict[int, CronExpression] = {}
        self._next_fire: dict[int, datetime] = {}
        self._in_flight: set[asyncio.Task] = set()
        self._running = False

    @property
    def timezone(self) -> str:
        return self._tz.key

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> list[int]:
        """
        Recover from a previous crash, then schedule every active job.

        Must be called from a running event loop. Returns the scheduled job ids.
        """
        recovered = self.store.reset_running_jobs()
        for job_id in recovered:
            logger.warning(f"Job {job_id} was left running by a previous process; marked as error")

        scheduled = []
        for job in self.store.list_jobs(JobStatus.ACTIVE):
            if self.schedule_job(job.id, job.schedule):
                scheduled.append(job.id)
        self._running = True
        logger.info(f"Scheduler started ({self.timezone}) with {len(scheduled)} job(s)")
        return scheduled

    def schedule_job(self, job_id: int, cron: str) -> bool:
        """Install (or replace) a job's timer. Returns False for an invalid expression."""
        try:
            expression = parse_cron(cron)
            expression.next_fire_time(self._clock(), self._tz)
        except CronParseError as e:
            logger.error(f"Job {job_id} not scheduled: {e}")
            return False

        self.unschedule_job(job_id)
        self._schedules[job_id] = expression
        self._timers[job_id] = asyncio.create_task(self._timer_loop(job_id, expression), name=f"job-timer-{job_id}")
        logger.info(f"Job {job_id} scheduled with '{cron}' ({self.timezone})")
        return True

    def unschedule_job(self, job_id: int) -> bool:
        """Stop a job's timer. Returns False if there was none."""
        task = self._timers.pop(job_id, None)
        self._schedules.pop(job_id, None)
        self._next_fire.pop(job_id, None)
        if task is None:
            return False
        task.cancel()
        logger.info(f"Job {job_id} unscheduled")
        return True

    def reschedule_all_jobs(self, timezone: str | None = None) -> list[int]:
        """
        Reinstall every active job's timer, optionally under a new timezone.

        The timezone is validated before any timer changes.

        Raises:
            ConfigurationError: Unknown timezone
        """
        tz = get_timezone(timezone) if timezone else self._tz
        if not self._running:
            self._tz = tz
            return []
        jobs = self.store.list_jobs(JobStatus.ACTIVE)
        for job_id in list(self._timers):
            self.unschedule_job(job_id)
        self._tz = tz
        scheduled = [job.id for job in jobs if self.schedule_job(job.id, job.schedule)]
        logger.info(f"Rescheduled {len(scheduled)} job(s) in {self.timezone}")
        return scheduled

    def trigger_job(self, job_id: int) -> asyncio.Task:
        """
        Submit a manual run without waiting for it.

        The returned task resolves to the JobRun (or None if the claim lost a
        race); the run is also observable through the store.

        Raises:
            JobNotFoundError: Unknown job
            JobAlreadyRunningError: A run of this job is in flight
        """
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status == JobStatus.RUNNING:
            raise JobAlreadyRunningError(job_id)
        logger.info(f"Manual run of job {job_id} submitted")
        return self._submit(job_id, RunTrigger.MANUAL)

    async def stop(self) -> None:
        """Cancel every timer and wait for in-flight runs to finish."""
        timers = list(self._timers.values())
        for job_id in list(self._timers):
            self.unschedule_job(job_id)
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
        if self._in_flight:
            logger.info(f"Waiting for {len(self._in_flight)} in-flight run(s)")
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)
        self._running = False
        logger.info("Scheduler stopped")

    def next_fire_times(self) -> dict[int, datetime]:
        return dict(self._next_fire)

    def status(self) -> dict[str, Any]:
        live = sorted(job_id for job_id, task in self._timers.items() if not task.done())
        return {
            "running": self._running,
            "timezone": self.timezone,
            "scheduled_jobs": len(live),
            "in_flight_runs": len(self._in_flight),
            "jobs": [
                {
                    "job_id": job_id,
                    "schedule": str(self._schedules.get(job_id, "")),
                    "next_fire_at": self._next_fire[job_id].isoformat() if job_id in self._next_fire else None,
                }
                for job_id in live
            ],
        }

    # --- internals -----------------------------------------------------------

    def _submit(self, job_id: int, trigger: RunTrigger) -> asyncio.Task:
        task = asyncio.create_task(self._run(job_id, trigger), name=f"job-run-{job_id}")
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _run(self, job_id: int, trigger: RunTrigger) -> JobRun | None:
        try:
            return await self.engine.run_job(job_id, trigger)
        except Exception:
            logger.exception(f"{trigger.capitalize()} run of job {job_id} crashed")
            return None

    async def _timer_loop(self, job_id: int, expression: CronExpression) -> None:
        last_fire: datetime | None = None
        while True:
            reference = self._clock()
            if last_fire is not None and last_fire > reference:
                reference = last_fire
            fire_at = expression.next_fire_time(reference, self._tz)
            self._next_fire[job_id] = fire_at

            # Sleep may return early; never fire before the scheduled minute
            while (remaining := (fire_at - self._clock()).total_seconds()) > 0:
                await asyncio.sleep(remaining)
            last_fire = fire_at

            try:
                job = self.store.get_job(job_id)
            except Exception:
                logger.exception(f"Job {job_id} could not be checked at fire time; skipping this fire")
                continue
            if job is None:
                logger.info(f"Job {job_id} no longer exists; removing its timer")
                self._timers.pop(job_id, None)
                self._schedules.pop(job_id, None)
                self._next_fire.pop(job_id, None)
                return
            if job.status != JobStatus.ACTIVE:
                logger.info(f"Job {job_id} is {job.status} at fire time, skipping")
                continue
            logger.info(f"Job {job_id} fired ({expression})")
            self._submit(job_id, RunTrigger.SCHEDULED)
