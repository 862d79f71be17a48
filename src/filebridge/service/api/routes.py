"""
API route registration.
"""

from typing import TYPE_CHECKING

from aiohttp import web

from filebridge.service.api.handlers.health import HealthHandler
from filebridge.service.api.handlers.jobs import JobsHandler
from filebridge.service.api.handlers.runs import RunsHandler

if TYPE_CHECKING:
    from filebridge.service.server import FileBridgeService


def setup_routes(app: web.Application, service: "FileBridgeService") -> None:
    """
    Register all API routes.

    Args:
        app: aiohttp Application
        service: FileBridgeService instance for handler access
    """
    health = HealthHandler(service)
    jobs = JobsHandler(service)
    runs = RunsHandler(service)

    prefix = "/api"

    app.router.add_routes(
        [
            web.get("/health", health.health),
            web.get(f"{prefix}/scheduler", health.scheduler_status),
            web.put(f"{prefix}/settings/timezone", health.set_timezone),
            # Jobs
            web.post(f"{prefix}/jobs/{{job_id}}/run", jobs.run),
            web.get(f"{prefix}/jobs/{{job_id}}/dry-run", jobs.dry_run),
            web.get(f"{prefix}/jobs/{{job_id}}/runs", jobs.runs),
            web.post(f"{prefix}/jobs/{{job_id}}/schedule", jobs.schedule),
            web.delete(f"{prefix}/jobs/{{job_id}}/schedule", jobs.unschedule),
            # Runs
            web.get(f"{prefix}/runs/{{run_id}}", runs.get),
        ]
    )
