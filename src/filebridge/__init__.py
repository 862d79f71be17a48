"""
FileBridge - scheduled file transfers between SFTP servers and SMB shares.

Transfer orchestration: storage providers, dry-run planning, job execution
with pre/post hooks, and a cron scheduler.
"""

__version__ = "0.1.0"

# Configuration
from filebridge.config import Config, load_config

# Exceptions
from filebridge.exceptions import (
    ConfigurationError,
    CronParseError,
    FileBridgeError,
    HookConfigError,
    HookError,
    JobAlreadyRunningError,
    JobNotFoundError,
    PlanningError,
    ProviderConnectionError,
    ProviderError,
    StoreError,
    TransferError,
    UnsupportedProtocolError,
)

# Records
from filebridge.models import Connection, Hook, HookRun, Job, JobRun, TransferLog

# Scheduling
from filebridge.scheduler import JobScheduler, next_fire_time, parse_cron

# Storage providers
from filebridge.storage import FileInfo, StorageProvider, create_storage_provider

# Job stores
from filebridge.store import DuckDBJobStore, JobStore, MemoryJobStore, create_store

# Execution
from filebridge.transfer import DryRunResult, TransferEngine

# Logging utilities
from filebridge.utils.logging import get_logger, setup_logging, setup_logging_from_config

__all__ = [
    # Execution
    "TransferEngine",
    "DryRunResult",
    "JobScheduler",
    "parse_cron",
    "next_fire_time",
    # Storage
    "StorageProvider",
    "FileInfo",
    "create_storage_provider",
    # Stores
    "JobStore",
    "DuckDBJobStore",
    "MemoryJobStore",
    "create_store",
    # Records
    "Connection",
    "Job",
    "Hook",
    "JobRun",
    "TransferLog",
    "HookRun",
    # Config
    "Config",
    "load_config",
    # Logging
    "setup_logging",
    "setup_logging_from_config",
    "get_logger",
    # Exceptions
    "FileBridgeError",
    "ConfigurationError",
    "UnsupportedProtocolError",
    "ProviderError",
    "ProviderConnectionError",
    "HookError",
    "HookConfigError",
    "TransferError",
    "PlanningError",
    "JobNotFoundError",
    "JobAlreadyRunningError",
    "StoreError",
    "CronParseError",
]
