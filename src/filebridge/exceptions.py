"""
FileBridge exception hierarchy.

All domain-specific exceptions inherit from FileBridgeError, so callers can
catch any subsystem failure with one base class while the engine still tells
fatal run errors apart from per-file ones.

Hierarchy::

    FileBridgeError
    ├── ConfigurationError          - config loading, parsing, validation
    │   └── UnsupportedProtocolError - connection protocol has no provider
    ├── ProviderError               - any remote filesystem operation
    │   └── ProviderConnectionError - connect / authentication failures
    ├── HookError                   - hook invocation failed
    │   └── HookConfigError         - hook config could not be parsed
    ├── TransferError               - per-file transfer failures
    │   └── PlanningError           - source directory unreadable
    ├── JobNotFoundError            - job id not present in the store
    ├── JobAlreadyRunningError      - manual trigger while a run is in flight
    ├── StoreError                  - job store read/write
    └── CronParseError              - invalid cron expression
"""

from __future__ import annotations


class FileBridgeError(Exception):
    """Base exception for all FileBridge errors."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- Configuration -----------------------------------------------------------


class ConfigurationError(FileBridgeError):
    """Raised when configuration loading, parsing, or validation fails."""


class UnsupportedProtocolError(ConfigurationError):
    """Raised when a connection names a protocol without a provider."""

    def __init__(self, protocol: str) -> None:
        super().__init__(f"Unsupported protocol: {protocol}", details={"protocol": protocol})
        self.protocol = protocol


# --- Providers ---------------------------------------------------------------


class ProviderError(FileBridgeError):
    """Raised when a storage provider operation fails.

    Carries the protocol, the operation name and the remote path so log lines
    and TransferLog rows can say where things went wrong.
    """

    def __init__(
        self,
        message: str,
        *,
        protocol: str | None = None,
        operation: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message, details={"protocol": protocol, "operation": operation, "path": path})
        self.protocol = protocol
        self.operation = operation
        self.path = path


class ProviderConnectionError(ProviderError):
    """Raised when a provider cannot connect or authenticate."""


# --- Hooks -------------------------------------------------------------------


class HookError(FileBridgeError):
    """Raised when a hook invocation fails."""

    def __init__(self, hook_name: str, message: str) -> None:
        super().__init__(f'Hook "{hook_name}" failed: {message}', details={"hook": hook_name})
        self.hook_name = hook_name
        self.reason = message


class HookConfigError(HookError):
    """Raised when a hook's stored config is invalid."""


# --- Transfer ----------------------------------------------------------------


class TransferError(FileBridgeError):
    """Raised when a single file cannot be transferred."""


class PlanningError(TransferError):
    """Raised when the source directory cannot be listed.

    Treated like a connection error: the run aborts before any file decision.
    """


class JobNotFoundError(FileBridgeError):
    """Raised when a job id is not present in the store."""

    def __init__(self, job_id: int) -> None:
        super().__init__(f"Job {job_id} not found", details={"job_id": job_id})
        self.job_id = job_id


class JobAlreadyRunningError(FileBridgeError):
    """Raised when a manual run is requested for a job that is already running."""

    def __init__(self, job_id: int) -> None:
        super().__init__(f"Job {job_id} is already running", details={"job_id": job_id})
        self.job_id = job_id


# --- Store -------------------------------------------------------------------


class StoreError(FileBridgeError):
    """Raised when the job store cannot be read or written."""


# --- Scheduling --------------------------------------------------------------


class CronParseError(FileBridgeError, ValueError):
    """Raised when a cron expression is invalid or never fires."""
