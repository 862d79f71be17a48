"""
API endpoint handlers.

Each handler class manages a resource type (jobs, runs, scheduler).
"""

from typing import TYPE_CHECKING, Any

from aiohttp import web

from filebridge.service.api.errors import ValidationError

if TYPE_CHECKING:
    from filebridge.service.server import FileBridgeService


class BaseHandler:
    """
    Base class for API handlers.

    Provides access to service components and common utilities.
    """

    def __init__(self, service: "FileBridgeService"):
        self.service = service

    @property
    def store(self) -> Any:
        return self.service.store

    @property
    def engine(self) -> Any:
        return self.service.engine

    @property
    def scheduler(self) -> Any:
        return self.service.scheduler

    def get_request_id(self, request: web.Request) -> str | None:
        """Get request ID from request context."""
        return request.get("request_id")

    def int_param(self, request: web.Request, name: str) -> int:
        raw = request.match_info[name]
        try:
            return int(raw)
        except ValueError:
            raise ValidationError(f"'{name}' must be an integer", details={name: raw}) from None

    async def json_response(
        self,
        data: Any,
        status: int = 200,
        request: web.Request | None = None,
    ) -> web.Response:
        """Create JSON response with standard headers."""
        headers = {}
        if request:
            request_id = self.get_request_id(request)
            if request_id:
                headers["X-Request-ID"] = request_id
        return web.json_response(data, status=status, headers=headers)
