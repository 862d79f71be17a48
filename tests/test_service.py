"""
Tests for the HTTP service: routes, error responses and the scheduler wiring.
"""

from __future__ import annotations

import asyncio

import pytest
from aiohttp.test_utils import TestClient, TestServer

from filebridge.config import Config
from filebridge.models import JobStatus, RunStatus
from filebridge.service.server import TIMEZONE_SETTING, FileBridgeService, create_app

from conftest import make_job


def _config(**overrides) -> Config:
    config = Config.defaults()
    config.data["store"]["type"] = "memory"
    config.data["transfer"]["retry_delay_s"] = 0
    for section, values in overrides.items():
        config.data[section].update(values)
    return config


async def _make_client(service: FileBridgeService) -> TestClient:
    client = TestClient(TestServer(create_app(service)))
    await client.start_server()
    return client


async def _wait_for_run(store, job_id: int, timeout: float = 5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        runs = store.list_runs(job_id)
        if runs and runs[0].status != RunStatus.RUNNING and store.get_job(job_id).status != JobStatus.RUNNING:
            return runs[0]
        await asyncio.sleep(0.01)
    raise AssertionError(f"Run of job {job_id} did not finish")


@pytest.fixture
def service(store, providers):
    store.save_job(make_job())
    return FileBridgeService(_config(), store=store, provider_factory=providers)


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, service):
        client = await _make_client(service)
        try:
            resp = await client.get("/health")
            assert resp.status == 200
            data = await resp.json()
            assert data["status"] == "ok"
            assert data["scheduler_running"] is True
            assert resp.headers["X-Request-ID"].startswith("req_")
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_scheduler_status(self, service):
        client = await _make_client(service)
        try:
            data = await (await client.get("/api/scheduler")).json()
            assert data["timezone"] == "UTC"
            assert [j["job_id"] for j in data["jobs"]] == [1]
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_scheduler_disabled(self, store, providers):
        service = FileBridgeService(_config(scheduler={"enabled": False}), store=store, provider_factory=providers)
        client = await _make_client(service)
        try:
            data = await (await client.get("/health")).json()
            assert data["scheduler_running"] is False
        finally:
            await client.close()


class TestJobRoutes:
    @pytest.mark.asyncio
    async def test_manual_run_is_accepted_then_observable(self, service, store, providers):
        providers.source.add_file("/in/a.csv", b"abc")
        client = await _make_client(service)
        try:
            resp = await client.post("/api/jobs/1/run")
            assert resp.status == 202
            assert (await resp.json())["status"] == "accepted"

            run = await _wait_for_run(store, 1)
            assert run.status == RunStatus.SUCCESS

            detail = await (await client.get(f"/api/runs/{run.id}")).json()
            assert detail["status"] == "success"
            assert [log["file_name"] for log in detail["transfer_logs"]] == ["a.csv"]
            assert detail["hook_runs"] == []

            history = await (await client.get("/api/jobs/1/runs?limit=5")).json()
            assert history["count"] == 1
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_run_unknown_job(self, service):
        client = await _make_client(service)
        try:
            resp = await client.post("/api/jobs/99/run")
            assert resp.status == 404
            assert (await resp.json())["error"]["code"] == "JOB_NOT_FOUND"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_run_while_running(self, service, store):
        client = await _make_client(service)
        try:
            # After startup, which marks leftover running jobs as errored
            store.set_job_status(1, JobStatus.RUNNING)
            resp = await client.post("/api/jobs/1/run")
            assert resp.status == 409
            assert (await resp.json())["error"]["code"] == "JOB_RUNNING"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_non_integer_id(self, service):
        client = await _make_client(service)
        try:
            resp = await client.post("/api/jobs/abc/run")
            assert resp.status == 400
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_dry_run(self, service, providers):
        providers.source.add_file("/in/a.csv")
        providers.source.add_file("/in/.hidden")
        client = await _make_client(service)
        try:
            resp = await client.get("/api/jobs/1/dry-run")
            assert resp.status == 200
            data = await resp.json()
            assert data["total_in_source"] == 2
            assert data["would_transfer"] == 1
            assert data["files"][0]["name"] == "a.csv"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_dry_run_unreachable_source(self, service, providers):
        providers.source.fail_list.add("/in")
        client = await _make_client(service)
        try:
            resp = await client.get("/api/jobs/1/dry-run")
            assert resp.status == 502
            assert (await resp.json())["error"]["code"] == "CONNECTION_ERROR"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_unknown_run(self, service):
        client = await _make_client(service)
        try:
            resp = await client.get("/api/runs/404")
            assert resp.status == 404
            assert (await resp.json())["error"]["code"] == "RUN_NOT_FOUND"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_schedule_and_unschedule(self, service, store):
        store.save_job(make_job(id=2, status=JobStatus.INACTIVE, schedule="*/5 * * * *"))
        client = await _make_client(service)
        try:
            resp = await client.post("/api/jobs/2/schedule")
            assert resp.status == 200
            data = await resp.json()
            assert data["scheduled"] is True

            resp = await client.delete("/api/jobs/2/schedule")
            assert (await resp.json())["removed"] is True
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_schedule_invalid_cron(self, service, store):
        store.save_job(make_job(id=2, schedule="every day"))
        client = await _make_client(service)
        try:
            resp = await client.post("/api/jobs/2/schedule")
            assert resp.status == 400
        finally:
            await client.close()


class TestTimezone:
    @pytest.mark.asyncio
    async def test_set_timezone(self, service, store):
        client = await _make_client(service)
        try:
            resp = await client.put("/api/settings/timezone", json={"timezone": "America/Chicago"})
            assert resp.status == 200
            assert await resp.json() == {"timezone": "America/Chicago", "rescheduled_jobs": 1}
            assert store.get_setting(TIMEZONE_SETTING) == "America/Chicago"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_invalid_timezone(self, service, store):
        client = await _make_client(service)
        try:
            resp = await client.put("/api/settings/timezone", json={"timezone": "Atlantis/Capital"})
            assert resp.status == 400
            assert store.get_setting(TIMEZONE_SETTING) is None
            assert service.scheduler.timezone == "UTC"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_invalid_json(self, service):
        client = await _make_client(service)
        try:
            resp = await client.put("/api/settings/timezone", data="{nope", headers={"Content-Type": "application/json"})
            assert resp.status == 400
            assert (await resp.json())["error"]["code"] == "INVALID_REQUEST"
        finally:
            await client.close()

    def test_stored_timezone_wins_over_config(self, store, providers):
        store.set_setting(TIMEZONE_SETTING, "Asia/Tokyo")
        service = FileBridgeService(_config(), store=store, provider_factory=providers)

        assert service.scheduler.timezone == "Asia/Tokyo"
