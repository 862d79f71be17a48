"""
Job endpoints: manual run, dry run, run history and scheduling.
"""

from aiohttp import web

from filebridge.exceptions import (
    ConfigurationError,
    JobAlreadyRunningError,
    JobNotFoundError,
    PlanningError,
    ProviderError,
)
from filebridge.service.api.errors import ConflictError, NotFoundError, UpstreamError, ValidationError
from filebridge.service.api.handlers import BaseHandler


class JobsHandler(BaseHandler):
    """Handler for job execution and scheduling."""

    async def run(self, request: web.Request) -> web.Response:
        """
        POST /api/jobs/{job_id}/run

        Submit a manual run. Returns 202 immediately; poll the runs endpoint
        for the outcome.
        """
        job_id = self.int_param(request, "job_id")
        try:
            self.scheduler.trigger_job(job_id)
        except JobNotFoundError as e:
            raise NotFoundError("Job", job_id) from e
        except JobAlreadyRunningError as e:
            raise ConflictError(e.message, details={"job_id": job_id}) from e
        return await self.json_response({"status": "accepted", "job_id": job_id}, status=202, request=request)

    async def dry_run(self, request: web.Request) -> web.Response:
        """
        GET /api/jobs/{job_id}/dry-run

        Plan the job's next execution without changing anything.
        """
        job_id = self.int_param(request, "job_id")
        try:
            result = await self.engine.dry_run(job_id)
        except JobNotFoundError as e:
            raise NotFoundError("Job", job_id) from e
        except (ProviderError, PlanningError, ConfigurationError) as e:
            raise UpstreamError(e.message, details={"job_id": job_id}) from e
        return await self.json_response(result.to_dict(), request=request)

    async def runs(self, request: web.Request) -> web.Response:
        """
        GET /api/jobs/{job_id}/runs?limit=50

        Most recent runs first.
        """
        job_id = self.int_param(request, "job_id")
        if self.store.get_job(job_id) is None:
            raise NotFoundError("Job", job_id)
        try:
            limit = int(request.query.get("limit", "50"))
        except ValueError:
            raise ValidationError("'limit' must be an integer") from None
        if limit < 1:
            raise ValidationError("'limit' must be positive")
        runs = self.store.list_runs(job_id, limit=limit)
        return await self.json_response({"runs": [r.to_dict() for r in runs], "count": len(runs)}, request=request)

    async def schedule(self, request: web.Request) -> web.Response:
        """
        POST /api/jobs/{job_id}/schedule

        (Re)install the job's timer from its stored cron expression.
        """
        job_id = self.int_param(request, "job_id")
        job = self.store.get_job(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        if not self.scheduler.schedule_job(job_id, job.schedule):
            raise ValidationError(f"Invalid cron expression '{job.schedule}'", details={"job_id": job_id})
        next_fire = self.scheduler.next_fire_times().get(job_id)
        return await self.json_response(
            {
                "job_id": job_id,
                "scheduled": True,
                "schedule": job.schedule,
                "next_fire_at": next_fire.isoformat() if next_fire else None,
            },
            request=request,
        )

    async def unschedule(self, request: web.Request) -> web.Response:
        """DELETE /api/jobs/{job_id}/schedule"""
        job_id = self.int_param(request, "job_id")
        removed = self.scheduler.unschedule_job(job_id)
        return await self.json_response({"job_id": job_id, "scheduled": False, "removed": removed}, request=request)
