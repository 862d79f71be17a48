"""
Run detail endpoint.
"""

from aiohttp import web

from filebridge.service.api.errors import ErrorCode, NotFoundError
from filebridge.service.api.handlers import BaseHandler


class RunsHandler(BaseHandler):
    async def get(self, request: web.Request) -> web.Response:
        """
        GET /api/runs/{run_id}

        The run with its transfer logs and hook runs.
        """
        run_id = self.int_param(request, "run_id")
        run = self.store.get_run(run_id)
        if run is None:
            raise NotFoundError("Run", run_id, ErrorCode.RUN_NOT_FOUND)
        data = run.to_dict()
        data["transfer_logs"] = [log.to_dict() for log in self.store.list_transfer_logs(run_id)]
        data["hook_runs"] = [hook_run.to_dict() for hook_run in self.store.list_hook_runs(run_id)]
        return await self.json_response(data, request=request)
