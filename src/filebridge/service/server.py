"""
FileBridge long-running service (HTTP API + cron scheduler).

Provides:
- REST API to trigger, preview and inspect job runs
- Background scheduler that fires active jobs on their cron schedules
"""

from __future__ import annotations

from aiohttp import web

from filebridge.config import Config
from filebridge.scheduler import JobScheduler
from filebridge.service.api import setup_routes
from filebridge.service.api.middleware import error_middleware
from filebridge.store import JobStore, create_store
from filebridge.transfer.engine import ProviderFactory, TransferEngine
from filebridge.utils.logging import get_logger

logger = get_logger("filebridge.service")

TIMEZONE_SETTING = "timezone"


class FileBridgeService:
    """Holds the store, engine and scheduler shared by the API handlers."""

    def __init__(
        self,
        config: Config,
        store: JobStore | None = None,
        provider_factory: ProviderFactory | None = None,
    ):
        self.config = config
        self.store = store if store is not None else create_store(config)
        self.engine = TransferEngine(self.store, config, provider_factory=provider_factory)
        self.scheduler = JobScheduler(self.store, self.engine, timezone=self.resolve_timezone())

    def resolve_timezone(self) -> str:
        """The timezone saved in the store wins over the config file."""
        return self.store.get_setting(TIMEZONE_SETTING) or self.config.get("scheduler.timezone", "UTC")

    def start(self) -> None:
        """Start the scheduler (requires a running event loop)."""
        if self.config.get("scheduler.enabled", True) is False:
            logger.info("Scheduler disabled by configuration")
            return
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()

    def set_timezone(self, timezone: str) -> list[int]:
        """
        Move every job to a new timezone and persist it.

        Raises:
            ConfigurationError: Unknown timezone (nothing changes)
        """
        scheduled = self.scheduler.reschedule_all_jobs(timezone)
        self.store.set_setting(TIMEZONE_SETTING, self.scheduler.timezone)
        logger.info(f"Scheduler timezone set to {self.scheduler.timezone}")
        return scheduled


def create_app(service: FileBridgeService) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    setup_routes(app, service)

    async def on_startup(app: web.Application) -> None:
        service.start()

    async def on_cleanup(app: web.Application) -> None:
        await service.stop()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


def run_service(config: Config, *, host: str | None = None, port: int | None = None) -> None:
    """
    Run the FileBridge service (blocking).

    Args:
        config: Loaded configuration
        host: Bind address (default: ``service.host``)
        port: Bind port (default: ``service.port``)
    """
    host = host or config.get("service.host", "127.0.0.1")
    port = port or int(config.get("service.port", 8080))
    service = FileBridgeService(config)
    app = create_app(service)
    logger.info(f"FileBridge service starting on http://{host}:{port}")
    web.run_app(app, host=host, port=port, access_log=None, print=None)
