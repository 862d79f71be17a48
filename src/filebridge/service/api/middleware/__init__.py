"""
API middleware components.
"""

from filebridge.service.api.middleware.error import error_middleware

__all__ = ["error_middleware"]
