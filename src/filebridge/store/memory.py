"""
In-memory job store.

Used for tests and for embedding the engine where the control plane hands
records over directly. Records are copied in and out so callers never share
mutable state with the store.
"""

from __future__ import annotations

import copy
import itertools
import threading
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime
from typing import Any

from filebridge.exceptions import StoreError
from filebridge.models import (
    Connection,
    Hook,
    HookRun,
    HookTrigger,
    Job,
    JobRun,
    JobStatus,
    RunStatus,
    RunTrigger,
    TransferLog,
    utcnow,
)


class MemoryJobStore:
    """Thread-safe in-process implementation of JobStore."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[int, Job] = {}
        self._connections: dict[int, Connection] = {}
        self._hooks: dict[int, Hook] = {}
        # (job_id, trigger) -> [(sort_order, hook_id)]
        self._job_hooks: dict[tuple[int, str], list[tuple[int, int]]] = {}
        self._settings: dict[str, Any] = {}
        self._runs: dict[int, JobRun] = {}
        self._transfer_logs: list[TransferLog] = []
        self._hook_runs: list[HookRun] = []
        self._run_ids = itertools.count(1)
        self._log_ids = itertools.count(1)
        self._hook_run_ids = itertools.count(1)

    # --- control-plane writes (seeding) -------------------------------------

    def save_connection(self, connection: Connection) -> Connection:
        with self._lock:
            self._connections[connection.id] = copy.deepcopy(connection)
        return connection

    def save_job(self, job: Job) -> Job:
        with self._lock:
            self._jobs[job.id] = replace(job)
        return job

    def save_hook(self, hook: Hook) -> Hook:
        with self._lock:
            self._hooks[hook.id] = copy.deepcopy(hook)
        return hook

    def attach_hook(self, job_id: int, hook_id: int, trigger: HookTrigger, sort_order: int | None = None) -> None:
        with self._lock:
            entries = self._job_hooks.setdefault((job_id, str(trigger)), [])
            order = sort_order if sort_order is not None else len(entries)
            entries.append((order, hook_id))

    def set_job_status(self, job_id: int, status: JobStatus) -> None:
        with self._lock:
            self._require_job(job_id).status = JobStatus(status)

    # --- control-plane records (read) ---------------------------------------

    def get_job(self, job_id: int) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job is not None else None

    def list_jobs(self, status: JobStatus | None = None) -> list[Job]:
        with self._lock:
            return [replace(j) for j in sorted(self._jobs.values(), key=lambda j: j.id) if status is None or j.status == status]

    def get_connection(self, connection_id: int) -> Connection | None:
        with self._lock:
            conn = self._connections.get(connection_id)
            return copy.deepcopy(conn) if conn is not None else None

    def get_job_hooks(self, job_id: int, trigger: HookTrigger) -> list[Hook]:
        with self._lock:
            entries = sorted(self._job_hooks.get((job_id, str(trigger)), []))
            return [copy.deepcopy(self._hooks[hook_id]) for _, hook_id in entries if hook_id in self._hooks]

    def get_setting(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._settings.get(key, default)

    def set_setting(self, key: str, value: Any) -> None:
        with self._lock:
            self._settings[key] = value

    # --- run lock -----------------------------------------------------------

    def claim_job(self, job_id: int, allowed: Iterable[JobStatus]) -> JobStatus | None:
        allowed_set = {JobStatus(s) for s in allowed} - {JobStatus.RUNNING}
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status not in allowed_set:
                return None
            previous = job.status
            job.status = JobStatus.RUNNING
            return previous

    def release_job(self, job_id: int, status: JobStatus, last_run_at: datetime | None = None) -> None:
        with self._lock:
            job = self._require_job(job_id)
            job.status = JobStatus(status)
            if last_run_at is not None:
                job.last_run_at = last_run_at

    def reset_running_jobs(self) -> list[int]:
        with self._lock:
            reset = [j.id for j in self._jobs.values() if j.status == JobStatus.RUNNING]
            for job_id in reset:
                self._jobs[job_id].status = JobStatus.ERROR
            return reset

    # --- run records --------------------------------------------------------

    def create_run(self, job_id: int, trigger: RunTrigger) -> JobRun:
        with self._lock:
            run = JobRun(id=next(self._run_ids), job_id=job_id, started_at=utcnow(), trigger=RunTrigger(trigger))
            self._runs[run.id] = replace(run)
            return run

    def update_run(self, run: JobRun) -> None:
        with self._lock:
            stored = self._runs.get(run.id)
            if stored is None:
                raise StoreError(f"Job run {run.id} not found")
            if stored.status != RunStatus.RUNNING:
                raise StoreError(f"Job run {run.id} is already finalized")
            self._runs[run.id] = replace(run)

    def get_run(self, run_id: int) -> JobRun | None:
        with self._lock:
            run = self._runs.get(run_id)
            return replace(run) if run is not None else None

    def list_runs(self, job_id: int, limit: int = 50) -> list[JobRun]:
        with self._lock:
            runs = [replace(r) for r in self._runs.values() if r.job_id == job_id]
        runs.sort(key=lambda r: r.id, reverse=True)
        return runs[:limit]

    def add_transfer_log(self, log: TransferLog) -> TransferLog:
        with self._lock:
            self._require_run(log.job_run_id)
            stored = replace(log, id=next(self._log_ids))
            self._transfer_logs.append(stored)
            return replace(stored)

    def list_transfer_logs(self, run_id: int) -> list[TransferLog]:
        with self._lock:
            return [replace(log) for log in self._transfer_logs if log.job_run_id == run_id]

    def add_hook_run(self, hook_run: HookRun) -> HookRun:
        with self._lock:
            self._require_run(hook_run.job_run_id)
            stored = replace(hook_run, id=next(self._hook_run_ids))
            self._hook_runs.append(stored)
            return replace(stored)

    def list_hook_runs(self, run_id: int) -> list[HookRun]:
        with self._lock:
            return [replace(h) for h in self._hook_runs if h.job_run_id == run_id]

    # --- helpers ------------------------------------------------------------

    def _require_job(self, job_id: int) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise StoreError(f"Job {job_id} not found")
        return job

    def _require_run(self, run_id: int) -> JobRun:
        run = self._runs.get(run_id)
        if run is None:
            raise StoreError(f"Job run {run_id} not found")
        return run
