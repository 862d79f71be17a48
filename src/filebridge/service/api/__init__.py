"""
REST API for triggering, previewing and inspecting transfer jobs.
"""

from filebridge.service.api.routes import setup_routes

__all__ = ["setup_routes"]
