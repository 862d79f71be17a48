"""
Tests for the job scheduler: startup recovery, timers, manual triggers and
timezone changes.
"""

import asyncio
import time
from datetime import UTC, datetime, timedelta

import pytest

from filebridge.exceptions import ConfigurationError, JobAlreadyRunningError, JobNotFoundError, StoreError
from filebridge.models import JobStatus, RunStatus, RunTrigger
from filebridge.scheduler import JobScheduler
from filebridge.transfer import TransferEngine

from conftest import make_job


class RecordingEngine:
    """Stands in for TransferEngine; records which runs were started."""

    def __init__(self):
        self.calls: list[tuple[int, RunTrigger]] = []

    async def run_job(self, job_id, trigger=RunTrigger.MANUAL):
        self.calls.append((job_id, trigger))
        return None


def fast_clock(start: datetime):
    """A clock that starts at ``start`` and advances in real time."""
    origin = time.monotonic()
    return lambda: start + timedelta(seconds=time.monotonic() - origin)


# Just before a minute boundary, so "* * * * *" fires almost immediately
NEAR_MINUTE = datetime(2024, 6, 1, 8, 0, 59, 800_000, tzinfo=UTC)


class TestStartup:
    @pytest.mark.asyncio
    async def test_running_jobs_marked_as_error(self, store):
        store.save_job(make_job(id=1, status=JobStatus.RUNNING))
        store.save_job(make_job(id=2, status=JobStatus.ACTIVE))
        scheduler = JobScheduler(store, RecordingEngine())

        scheduled = scheduler.start()
        try:
            assert store.get_job(1).status == JobStatus.ERROR
            assert scheduled == [2]
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_only_active_jobs_scheduled(self, store):
        store.save_job(make_job(id=1, status=JobStatus.INACTIVE))
        store.save_job(make_job(id=2, status=JobStatus.ERROR))
        store.save_job(make_job(id=3, status=JobStatus.ACTIVE))
        scheduler = JobScheduler(store, RecordingEngine())

        try:
            assert scheduler.start() == [3]
            assert scheduler.status()["scheduled_jobs"] == 1
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_invalid_schedule_is_skipped(self, store):
        store.save_job(make_job(id=1, schedule="not a cron"))
        store.save_job(make_job(id=2))
        scheduler = JobScheduler(store, RecordingEngine())

        try:
            assert scheduler.start() == [2]
        finally:
            await scheduler.stop()

    def test_unknown_timezone_rejected(self, store):
        with pytest.raises(ConfigurationError):
            JobScheduler(store, RecordingEngine(), timezone="Nowhere/Special")


class TestTimers:
    @pytest.mark.asyncio
    async def test_active_job_fires(self, store):
        store.save_job(make_job(schedule="* * * * *"))
        engine = RecordingEngine()
        scheduler = JobScheduler(store, engine, clock=fast_clock(NEAR_MINUTE))

        scheduler.start()
        await asyncio.sleep(0.5)
        await scheduler.stop()

        assert engine.calls == [(1, RunTrigger.SCHEDULED)]

    @pytest.mark.asyncio
    async def test_status_rechecked_at_fire_time(self, store):
        store.save_job(make_job(schedule="* * * * *"))
        engine = RecordingEngine()
        scheduler = JobScheduler(store, engine, clock=fast_clock(NEAR_MINUTE))

        scheduler.start()
        store.set_job_status(1, JobStatus.INACTIVE)
        await asyncio.sleep(0.5)
        await scheduler.stop()

        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_schedule_and_unschedule(self, store):
        store.save_job(make_job())
        scheduler = JobScheduler(store, RecordingEngine(), clock=lambda: datetime(2024, 6, 1, tzinfo=UTC))
        scheduler.start()

        try:
            assert scheduler.schedule_job(1, "30 6 * * *")
            await asyncio.sleep(0)
            assert scheduler.next_fire_times()[1] == datetime(2024, 6, 1, 6, 30, tzinfo=UTC)
            assert scheduler.unschedule_job(1)
            assert not scheduler.unschedule_job(1)
            assert scheduler.next_fire_times() == {}
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_invalid_cron_keeps_existing_timer(self, store):
        store.save_job(make_job())
        scheduler = JobScheduler(store, RecordingEngine())
        scheduler.start()

        try:
            assert not scheduler.schedule_job(1, "99 * * * *")
            assert scheduler.status()["scheduled_jobs"] == 1
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_store_error_at_fire_time_keeps_timer(self, store):
        store.save_job(make_job(schedule="* * * * *"))
        engine = RecordingEngine()
        scheduler = JobScheduler(store, engine, clock=fast_clock(NEAR_MINUTE))
        scheduler.start()

        lookups = []
        get_job = store.get_job

        def locked_once(job_id):
            lookups.append(job_id)
            if len(lookups) == 1:
                raise StoreError("database is locked")
            return get_job(job_id)

        store.get_job = locked_once
        try:
            await asyncio.sleep(0.5)

            assert lookups == [1]
            assert engine.calls == []
            status = scheduler.status()
            assert status["scheduled_jobs"] == 1
            assert scheduler.next_fire_times()[1] == datetime(2024, 6, 1, 8, 2, tzinfo=UTC)
        finally:
            await scheduler.stop()


class TestManualTrigger:
    @pytest.mark.asyncio
    async def test_trigger_returns_immediately(self, store, providers, no_retry_config):
        store.save_job(make_job(status=JobStatus.INACTIVE))
        providers.source.add_file("/in/a.csv")
        engine = TransferEngine(store, no_retry_config, provider_factory=providers)
        scheduler = JobScheduler(store, engine)

        task = scheduler.trigger_job(1)
        run = await task

        assert run.status == RunStatus.SUCCESS
        assert run.trigger == RunTrigger.MANUAL
        assert store.get_job(1).status == JobStatus.INACTIVE

    def test_unknown_job(self, store):
        scheduler = JobScheduler(store, RecordingEngine())

        with pytest.raises(JobNotFoundError):
            scheduler.trigger_job(7)

    def test_running_job_rejected(self, store):
        store.save_job(make_job(status=JobStatus.RUNNING))
        scheduler = JobScheduler(store, RecordingEngine())

        with pytest.raises(JobAlreadyRunningError):
            scheduler.trigger_job(1)

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_runs(self, store):
        finished = []

        class SlowEngine(RecordingEngine):
            async def run_job(self, job_id, trigger=RunTrigger.MANUAL):
                await asyncio.sleep(0.1)
                finished.append(job_id)

        store.save_job(make_job())
        scheduler = JobScheduler(store, SlowEngine())
        scheduler.trigger_job(1)

        await scheduler.stop()

        assert finished == [1]

    @pytest.mark.asyncio
    async def test_crashing_run_is_contained(self, store):
        class BrokenEngine(RecordingEngine):
            async def run_job(self, job_id, trigger=RunTrigger.MANUAL):
                raise RuntimeError("store went away")

        store.save_job(make_job())
        scheduler = JobScheduler(store, BrokenEngine())

        assert await scheduler.trigger_job(1) is None

    @pytest.mark.asyncio
    async def test_concurrent_triggers_start_one_run(self, store, providers, no_retry_config):
        store.save_job(make_job())
        providers.source.add_file("/in/a.csv")
        providers.source.read_delay = 0.2
        engine = TransferEngine(store, no_retry_config, provider_factory=providers)
        scheduler = JobScheduler(store, engine)

        results = await asyncio.gather(scheduler.trigger_job(1), scheduler.trigger_job(1))

        assert sum(run is not None for run in results) == 1
        assert len(store.list_runs(1)) == 1
        assert store.get_job(1).status == JobStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_scheduled_fire_during_manual_run(self, store, providers, no_retry_config):
        store.save_job(make_job(schedule="* * * * *"))
        providers.source.add_file("/in/a.csv")
        providers.source.read_delay = 0.6
        engine = TransferEngine(store, no_retry_config, provider_factory=providers)
        scheduler = JobScheduler(store, engine, clock=fast_clock(NEAR_MINUTE))
        scheduler.start()

        try:
            manual = scheduler.trigger_job(1)
            # The timer fires while the manual run holds the job
            await asyncio.sleep(0.4)
            run = await manual
        finally:
            await scheduler.stop()

        runs = store.list_runs(1)
        assert len(runs) == 1
        assert runs[0].id == run.id
        assert runs[0].trigger == RunTrigger.MANUAL


class TestTimezoneChange:
    @pytest.mark.asyncio
    async def test_reschedule_in_new_timezone(self, store):
        store.save_job(make_job(schedule="0 9 * * *"))
        scheduler = JobScheduler(store, RecordingEngine(), clock=lambda: datetime(2024, 6, 1, tzinfo=UTC))
        scheduler.start()

        try:
            assert scheduler.reschedule_all_jobs("Europe/Berlin") == [1]
            await asyncio.sleep(0)
            assert scheduler.timezone == "Europe/Berlin"
            # 09:00 CEST is 07:00 UTC
            assert scheduler.next_fire_times()[1].astimezone(UTC) == datetime(2024, 6, 1, 7, 0, tzinfo=UTC)
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_invalid_timezone_changes_nothing(self, store):
        store.save_job(make_job())
        scheduler = JobScheduler(store, RecordingEngine())
        scheduler.start()

        try:
            with pytest.raises(ConfigurationError):
                scheduler.reschedule_all_jobs("Not/AZone")
            assert scheduler.timezone == "UTC"
            assert scheduler.status()["scheduled_jobs"] == 1
        finally:
            await scheduler.stop()

    def test_before_start_only_sets_timezone(self, store):
        scheduler = JobScheduler(store, RecordingEngine())

        assert scheduler.reschedule_all_jobs("Asia/Tokyo") == []
        assert scheduler.timezone == "Asia/Tokyo"
