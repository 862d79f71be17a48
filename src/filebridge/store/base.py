"""
Job store interface.

The relational store belongs to the control plane. The transfer subsystem
reads jobs, connections, hooks and settings, claims/releases jobs, and
appends JobRun / TransferLog / HookRun rows.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol

from filebridge.models import (
    Connection,
    Hook,
    HookRun,
    HookTrigger,
    Job,
    JobRun,
    JobStatus,
    RunTrigger,
    TransferLog,
)


class JobStore(Protocol):
    # --- control-plane records (read) ---------------------------------------

    def get_job(self, job_id: int) -> Job | None: ...

    def list_jobs(self, status: JobStatus | None = None) -> list[Job]: ...

    def get_connection(self, connection_id: int) -> Connection | None: ...

    def get_job_hooks(self, job_id: int, trigger: HookTrigger) -> list[Hook]: ...

    def get_setting(self, key: str, default: Any = None) -> Any: ...

    def set_setting(self, key: str, value: Any) -> None: ...

    # --- run lock -----------------------------------------------------------

    def claim_job(self, job_id: int, allowed: Iterable[JobStatus]) -> JobStatus | None:
        """
        Atomically move a job to ``running`` if its status is one of ``allowed``.

        Each check-and-set is a single conditional update, so concurrent
        claimers (in this process or another one sharing the store) cannot both
        win. Returns the status the job had before the claim, or None.
        """
        ...

    def release_job(self, job_id: int, status: JobStatus, last_run_at: datetime | None = None) -> None: ...

    def reset_running_jobs(self) -> list[int]:
        """Crash recovery: every ``running`` job becomes ``error``. Returns their ids."""
        ...

    # --- run records (append) -----------------------------------------------

    def create_run(self, job_id: int, trigger: RunTrigger) -> JobRun: ...

    def update_run(self, run: JobRun) -> None: ...

    def get_run(self, run_id: int) -> JobRun | None: ...

    def list_runs(self, job_id: int, limit: int = 50) -> list[JobRun]: ...

    def add_transfer_log(self, log: TransferLog) -> TransferLog: ...

    def list_transfer_logs(self, run_id: int) -> list[TransferLog]: ...

    def add_hook_run(self, hook_run: HookRun) -> HookRun: ...

    def list_hook_runs(self, run_id: int) -> list[HookRun]: ...
