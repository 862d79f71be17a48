"""
Records read and written by the transfer subsystem.

Jobs, connections and hooks are owned by the control plane and are read-only
here. JobRun, TransferLog and HookRun rows are written by the engine and the
hook executor.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(UTC)


class ConnectionProtocol(StrEnum):
    SFTP = "sftp"
    SMB = "smb"


class JobStatus(StrEnum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    RUNNING = "running"
    ERROR = "error"


class RunStatus(StrEnum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"


class LogStatus(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


class PostTransferAction(StrEnum):
    RETAIN = "retain"
    DELETE = "delete"
    MOVE = "move"


class HookType(StrEnum):
    WEBHOOK = "webhook"
    SHELL = "shell"


class HookTrigger(StrEnum):
    PRE_JOB = "pre_job"
    POST_JOB = "post_job"


class RunTrigger(StrEnum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


@dataclass
class Connection:
    """A reusable remote endpoint: protocol, host and an opaque credential bundle."""

    id: int
    name: str
    protocol: str
    host: str
    port: int
    credentials: dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        # Credentials stay out of reprs (and therefore out of log lines)
        return f"Connection(id={self.id}, name='{self.name}', protocol='{self.protocol}', host='{self.host}')"


@dataclass
class Job:
    """A configured source -> destination synchronization task."""

    id: int
    name: str
    source_connection_id: int
    source_path: str
    destination_connection_id: int
    destination_path: str
    schedule: str
    file_filter: str = "*"
    post_transfer_action: PostTransferAction = PostTransferAction.RETAIN
    move_path: str | None = None
    overwrite_existing: bool = False
    skip_hidden_files: bool = True
    extract_archives: bool = False
    delta_sync: bool = False
    status: JobStatus = JobStatus.INACTIVE
    last_run_at: datetime | None = None

    def __post_init__(self) -> None:
        self.post_transfer_action = PostTransferAction(self.post_transfer_action)
        self.status = JobStatus(self.status)
        if not self.file_filter:
            self.file_filter = "*"


@dataclass
class Hook:
    """A webhook or shell action attachable to a job's pre/post execution point."""

    id: int
    name: str
    type: HookType
    config: str | dict[str, Any]
    enabled: bool = True

    def __post_init__(self) -> None:
        self.type = HookType(self.type)

    def parsed_config(self) -> dict[str, Any]:
        """Decode the stored config. Raises ValueError when it is not a JSON object."""
        if isinstance(self.config, dict):
            return self.config
        data = json.loads(self.config)
        if not isinstance(data, dict):
            raise ValueError("hook config must be a JSON object")
        return data


@dataclass
class JobRun:
    """One execution attempt of a job."""

    id: int
    job_id: int
    started_at: datetime
    status: RunStatus = RunStatus.RUNNING
    trigger: RunTrigger = RunTrigger.MANUAL
    completed_at: datetime | None = None
    files_transferred: int = 0
    bytes_transferred: int = 0
    total_files: int | None = None
    total_bytes: int | None = None
    error_message: str | None = None
    # Progress of the file being transferred; cleared when the run ends
    current_file: str | None = None
    current_file_size: int | None = None
    current_file_bytes_transferred: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "status": str(self.status),
            "trigger": str(self.trigger),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "files_transferred": self.files_transferred,
            "bytes_transferred": self.bytes_transferred,
            "total_files": self.total_files,
            "total_bytes": self.total_bytes,
            "error_message": self.error_message,
            "current_file": self.current_file,
            "current_file_size": self.current_file_size,
            "current_file_bytes_transferred": self.current_file_bytes_transferred,
        }


@dataclass
class TransferLog:
    """Outcome of one file operation during an executed run."""

    job_id: int
    job_run_id: int
    file_name: str
    source_path: str
    destination_path: str
    status: LogStatus
    file_size: int = 0
    error_message: str | None = None
    transferred_at: datetime = field(default_factory=utcnow)
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_run_id": self.job_run_id,
            "file_name": self.file_name,
            "source_path": self.source_path,
            "destination_path": self.destination_path,
            "file_size": self.file_size,
            "status": str(self.status),
            "error_message": self.error_message,
            "transferred_at": _iso(self.transferred_at),
        }


@dataclass
class HookRun:
    """Outcome of one hook invocation within a job run."""

    job_id: int
    job_run_id: int
    hook_id: int | None
    hook_name: str
    hook_type: str
    trigger: HookTrigger
    status: LogStatus
    duration_ms: int = 0
    output: str | None = None
    error_message: str | None = None
    executed_at: datetime = field(default_factory=utcnow)
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_run_id": self.job_run_id,
            "hook_id": self.hook_id,
            "hook_name": self.hook_name,
            "hook_type": self.hook_type,
            "trigger": str(self.trigger),
            "status": str(self.status),
            "duration_ms": self.duration_ms,
            "output": self.output,
            "error_message": self.error_message,
            "executed_at": _iso(self.executed_at),
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
