"""
Error handling middleware.

Provides consistent error responses and request ID tracking.
"""

import json
import uuid
from collections.abc import Callable

from aiohttp import web

from filebridge.service.api.errors import APIError, ErrorCode
from filebridge.utils.logging import get_logger

logger = get_logger("filebridge.api.middleware.error")


def _error_response(code: ErrorCode, message: str, status: int, request_id: str) -> web.Response:
    return web.json_response(
        {"error": {"code": code.value, "message": message, "request_id": request_id}},
        status=status,
        headers={"X-Request-ID": request_id},
    )


@web.middleware
async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
    """
    Middleware for consistent error handling.

    - Adds request_id to all requests
    - Catches APIError and returns structured JSON response
    - Catches unexpected errors and returns generic 500
    """
    request_id = f"req_{uuid.uuid4().hex[:12]}"
    request["request_id"] = request_id

    try:
        response = await handler(request)
        response.headers["X-Request-ID"] = request_id
        return response

    except APIError as e:
        logger.warning(f"API error: {e.code.value} - {e.message} ({request.method} {request.path})")
        return web.json_response(e.to_dict(request_id), status=e.status, headers={"X-Request-ID": request_id})

    except json.JSONDecodeError as e:
        logger.warning(f"JSON decode error on {request.path}: {e}")
        return _error_response(ErrorCode.INVALID_REQUEST, "Invalid JSON in request body", 400, request_id)

    except web.HTTPException:
        # aiohttp renders its own HTTP exceptions
        raise

    except Exception as e:
        logger.error(f"Unexpected error on {request.method} {request.path}: {e}", exc_info=True)
        return _error_response(ErrorCode.INTERNAL_ERROR, "An internal error occurred", 500, request_id)
