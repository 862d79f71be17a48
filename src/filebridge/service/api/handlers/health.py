"""
Health, scheduler status and settings endpoints.
"""

import time

from aiohttp import web

from filebridge.exceptions import ConfigurationError
from filebridge.service.api.errors import ValidationError
from filebridge.service.api.handlers import BaseHandler


class HealthHandler(BaseHandler):
    def __init__(self, service):
        super().__init__(service)
        self._start_time = time.time()

    async def health(self, request: web.Request) -> web.Response:
        """GET /health"""
        from filebridge import __version__

        data = {
            "status": "ok",
            "version": __version__,
            "uptime_seconds": round(time.time() - self._start_time, 2),
            "scheduler_running": self.scheduler.running,
        }
        return await self.json_response(data, request=request)

    async def scheduler_status(self, request: web.Request) -> web.Response:
        """GET /api/scheduler"""
        return await self.json_response(self.scheduler.status(), request=request)

    async def set_timezone(self, request: web.Request) -> web.Response:
        """
        PUT /api/settings/timezone

        Body: {"timezone": "Europe/Berlin"}. Every active job is rescheduled
        under the new zone; an unknown zone changes nothing.
        """
        body = await request.json()
        timezone = body.get("timezone") if isinstance(body, dict) else None
        if not isinstance(timezone, str) or not timezone:
            raise ValidationError("'timezone' must be a non-empty string")
        try:
            scheduled = self.service.set_timezone(timezone)
        except ConfigurationError as e:
            raise ValidationError(e.message, details={"timezone": timezone}) from e
        return await self.json_response(
            {"timezone": self.scheduler.timezone, "rescheduled_jobs": len(scheduled)},
            request=request,
        )
