"""
DuckDB-backed job store.

Automatically creates the filebridge tables if they don't exist. All access
goes through one ibis DuckDB backend guarded by a lock, since the engine
calls into the store from worker threads.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import ibis

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
)
from filebridge.utils.logging import get_logger

logger = get_logger("filebridge.store.duckdb")

_JOB_COLUMNS = (
    "id, name, source_connection_id, source_path, destination_connection_id, destination_path, "
    "schedule, file_filter, post_transfer_action, move_path, overwrite_existing, skip_hidden_files, "
    "extract_archives, delta_sync, status, last_run_at"
)
_RUN_COLUMNS = (
    "id, job_id, started_at, status, trigger, completed_at, files_transferred, bytes_transferred, "
    "total_files, total_bytes, error_message, current_file, current_file_size, current_file_bytes_transferred"
)
_LOG_COLUMNS = (
    "id, job_id, job_run_id, file_name, source_path, destination_path, status, file_size, error_message, transferred_at"
)
_HOOK_RUN_COLUMNS = (
    "id, job_id, job_run_id, hook_id, hook_name, hook_type, trigger, status, duration_ms, output, "
    "error_message, executed_at"
)

_SCHEMA = [
    "CREATE SEQUENCE IF NOT EXISTS job_runs_id_seq START 1",
    "CREATE SEQUENCE IF NOT EXISTS transfer_logs_id_seq START 1",
    "CREATE SEQUENCE IF NOT EXISTS hook_runs_id_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS connections (
        id BIGINT PRIMARY KEY,
        name VARCHAR NOT NULL,
        protocol VARCHAR NOT NULL,
        host VARCHAR NOT NULL,
        port INTEGER NOT NULL,
        credentials VARCHAR
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS jobs (
        id BIGINT PRIMARY KEY,
        name VARCHAR NOT NULL,
        source_connection_id BIGINT NOT NULL,
        source_path VARCHAR NOT NULL,
        destination_connection_id BIGINT NOT NULL,
        destination_path VARCHAR NOT NULL,
        schedule VARCHAR NOT NULL,
        file_filter VARCHAR DEFAULT '*',
        post_transfer_action VARCHAR DEFAULT 'retain',
        move_path VARCHAR,
        overwrite_existing BOOLEAN DEFAULT FALSE,
        skip_hidden_files BOOLEAN DEFAULT TRUE,
        extract_archives BOOLEAN DEFAULT FALSE,
        delta_sync BOOLEAN DEFAULT FALSE,
        status VARCHAR DEFAULT 'inactive',
        last_run_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS hooks (
        id BIGINT PRIMARY KEY,
        name VARCHAR NOT NULL,
        type VARCHAR NOT NULL,
        config VARCHAR NOT NULL,
        enabled BOOLEAN DEFAULT TRUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS job_hooks (
        job_id BIGINT NOT NULL,
        hook_id BIGINT NOT NULL,
        trigger VARCHAR NOT NULL,
        sort_order INTEGER DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS job_runs (
        id BIGINT PRIMARY KEY DEFAULT nextval('job_runs_id_seq'),
        job_id BIGINT NOT NULL,
        started_at TIMESTAMP NOT NULL,
        status VARCHAR NOT NULL,
        trigger VARCHAR NOT NULL,
        completed_at TIMESTAMP,
        files_transferred INTEGER DEFAULT 0,
        bytes_transferred BIGINT DEFAULT 0,
        total_files INTEGER,
        total_bytes BIGINT,
        error_message VARCHAR,
        current_file VARCHAR,
        current_file_size BIGINT,
        current_file_bytes_transferred BIGINT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transfer_logs (
        id BIGINT PRIMARY KEY DEFAULT nextval('transfer_logs_id_seq'),
        job_id BIGINT NOT NULL,
        job_run_id BIGINT NOT NULL,
        file_name VARCHAR NOT NULL,
        source_path VARCHAR NOT NULL,
        destination_path VARCHAR NOT NULL,
        status VARCHAR NOT NULL,
        file_size BIGINT DEFAULT 0,
        error_message VARCHAR,
        transferred_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS hook_runs (
        id BIGINT PRIMARY KEY DEFAULT nextval('hook_runs_id_seq'),
        job_id BIGINT NOT NULL,
        job_run_id BIGINT NOT NULL,
        hook_id BIGINT,
        hook_name VARCHAR NOT NULL,
        hook_type VARCHAR NOT NULL,
        trigger VARCHAR NOT NULL,
        status VARCHAR NOT NULL,
        duration_ms INTEGER DEFAULT 0,
        output VARCHAR,
        error_message VARCHAR,
        executed_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS settings (
        key VARCHAR PRIMARY KEY,
        value VARCHAR
    )
    """,
]


def _escape_sql_string(value: str) -> str:
    """Escape single quotes for SQL strings."""
    return value.replace("'", "''")


def _sql_value(value: Any) -> str:
    """Convert Python value to SQL string representation."""
    if value is None:
        return "NULL"
    # bool before int: bool is an int subclass
    elif isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    elif isinstance(value, (int, float)):
        return str(value)
    elif isinstance(value, datetime):
        # Stored as naive UTC
        if value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        return f"TIMESTAMP '{value.isoformat(sep=' ')}'"
    else:
        escaped = _escape_sql_string(str(value))
        return f"'{escaped}'"


def _from_db_time(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


class DuckDBJobStore:
    """JobStore over a DuckDB database file (or ``:memory:``)."""

    def __init__(self, path: str | Path = ":memory:"):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._connection = ibis.duckdb.connect(self.path)
        except Exception as e:
            raise StoreError(f"Could not open job store at {self.path}: {e}") from e
        self._lock = threading.RLock()
        self._initialize_schema()
        logger.debug(f"Job store ready at {self.path}")

    def _initialize_schema(self) -> None:
        for statement in _SCHEMA:
            self._execute(statement)

    def _execute(self, sql: str) -> list[tuple]:
        with self._lock:
            try:
                cursor = self._connection.raw_sql(sql)
                if cursor is None or cursor.description is None:
                    return []
                return cursor.fetchall()
            except Exception as e:
                raise StoreError(f"Job store query failed: {e}") from e

    def close(self) -> None:
        with self._lock:
            self._connection.disconnect()

    # --- control-plane writes (seeding) -------------------------------------

    def save_connection(self, connection: Connection) -> Connection:
        values = ", ".join(
            _sql_value(v)
            for v in (
                connection.id,
                connection.name,
                str(connection.protocol),
                connection.host,
                connection.port,
                json.dumps(connection.credentials),
            )
        )
        self._execute(f"INSERT OR REPLACE INTO connections VALUES ({values})")
        return connection

    def save_job(self, job: Job) -> Job:
        values = ", ".join(
            _sql_value(v)
            for v in (
                job.id,
                job.name,
                job.source_connection_id,
                job.source_path,
                job.destination_connection_id,
                job.destination_path,
                job.schedule,
                job.file_filter,
                str(job.post_transfer_action),
                job.move_path,
                job.overwrite_existing,
                job.skip_hidden_files,
                job.extract_archives,
                job.delta_sync,
                str(job.status),
                job.last_run_at,
            )
        )
        self._execute(f"INSERT OR REPLACE INTO jobs ({_JOB_COLUMNS}) VALUES ({values})")
        return job

    def save_hook(self, hook: Hook) -> Hook:
        config = hook.config if isinstance(hook.config, str) else json.dumps(hook.config)
        values = ", ".join(_sql_value(v) for v in (hook.id, hook.name, str(hook.type), config, hook.enabled))
        self._execute(f"INSERT OR REPLACE INTO hooks VALUES ({values})")
        return hook

    def attach_hook(self, job_id: int, hook_id: int, trigger: HookTrigger, sort_order: int | None = None) -> None:
        if sort_order is None:
            rows = self._execute(
                f"SELECT COUNT(*) FROM job_hooks WHERE job_id = {_sql_value(job_id)} "
                f"AND trigger = {_sql_value(str(trigger))}"
            )
            sort_order = int(rows[0][0])
        values = ", ".join(_sql_value(v) for v in (job_id, hook_id, str(trigger), sort_order))
        self._execute(f"INSERT INTO job_hooks VALUES ({values})")

    def set_job_status(self, job_id: int, status: JobStatus) -> None:
        self._execute(f"UPDATE jobs SET status = {_sql_value(str(status))} WHERE id = {_sql_value(job_id)}")

    # --- control-plane records (read) ---------------------------------------

    def get_job(self, job_id: int) -> Job | None:
        rows = self._execute(f"SELECT {_JOB_COLUMNS} FROM jobs WHERE id = {_sql_value(job_id)}")
        return _job_from_row(rows[0]) if rows else None

    def list_jobs(self, status: JobStatus | None = None) -> list[Job]:
        where = f" WHERE status = {_sql_value(str(status))}" if status is not None else ""
        rows = self._execute(f"SELECT {_JOB_COLUMNS} FROM jobs{where} ORDER BY id")
        return [_job_from_row(row) for row in rows]

    def get_connection(self, connection_id: int) -> Connection | None:
        rows = self._execute(
            f"SELECT id, name, protocol, host, port, credentials FROM connections WHERE id = {_sql_value(connection_id)}"
        )
        if not rows:
            return None
        id_, name, protocol, host, port, credentials = rows[0]
        return Connection(
            id=id_,
            name=name,
            protocol=protocol,
            host=host,
            port=port,
            credentials=json.loads(credentials) if credentials else {},
        )

    def get_job_hooks(self, job_id: int, trigger: HookTrigger) -> list[Hook]:
        rows = self._execute(
            f"""
            SELECT h.id, h.name, h.type, h.config, h.enabled
            FROM job_hooks jh
            INNER JOIN hooks h ON h.id = jh.hook_id
            WHERE jh.job_id = {_sql_value(job_id)} AND jh.trigger = {_sql_value(str(trigger))}
            ORDER BY jh.sort_order, h.id
            """
        )
        return [Hook(id=r[0], name=r[1], type=r[2], config=r[3], enabled=bool(r[4])) for r in rows]

    def get_setting(self, key: str, default: Any = None) -> Any:
        rows = self._execute(f"SELECT value FROM settings WHERE key = {_sql_value(key)}")
        if not rows or rows[0][0] is None:
            return default
        return json.loads(rows[0][0])

    def set_setting(self, key: str, value: Any) -> None:
        self._execute(f"INSERT OR REPLACE INTO settings VALUES ({_sql_value(key)}, {_sql_value(json.dumps(value))})")

    # --- run lock -----------------------------------------------------------

    def claim_job(self, job_id: int, allowed: Iterable[JobStatus]) -> JobStatus | None:
        for status in allowed:
            if JobStatus(status) == JobStatus.RUNNING:
                continue
            rows = self._execute(
                f"UPDATE jobs SET status = 'running' "
                f"WHERE id = {_sql_value(job_id)} AND status = {_sql_value(str(status))} RETURNING id"
            )
            if rows:
                return JobStatus(status)
        return None

    def release_job(self, job_id: int, status: JobStatus, last_run_at: datetime | None = None) -> None:
        assignments = [f"status = {_sql_value(str(status))}"]
        if last_run_at is not None:
            assignments.append(f"last_run_at = {_sql_value(last_run_at)}")
        rows = self._execute(f"UPDATE jobs SET {', '.join(assignments)} WHERE id = {_sql_value(job_id)} RETURNING id")
        if not rows:
            raise StoreError(f"Job {job_id} not found")

    def reset_running_jobs(self) -> list[int]:
        rows = self._execute("UPDATE jobs SET status = 'error' WHERE status = 'running' RETURNING id")
        return sorted(int(r[0]) for r in rows)

    # --- run records --------------------------------------------------------

    def create_run(self, job_id: int, trigger: RunTrigger) -> JobRun:
        started_at = datetime.now(UTC).replace(microsecond=0)
        rows = self._execute(
            f"INSERT INTO job_runs (job_id, started_at, status, trigger) VALUES "
            f"({_sql_value(job_id)}, {_sql_value(started_at)}, 'running', {_sql_value(str(trigger))}) RETURNING id"
        )
        return JobRun(id=int(rows[0][0]), job_id=job_id, started_at=started_at, trigger=RunTrigger(trigger))

    def update_run(self, run: JobRun) -> None:
        rows = self._execute(
            f"""
            UPDATE job_runs SET
                status = {_sql_value(str(run.status))},
                completed_at = {_sql_value(run.completed_at)},
                files_transferred = {_sql_value(run.files_transferred)},
                bytes_transferred = {_sql_value(run.bytes_transferred)},
                total_files = {_sql_value(run.total_files)},
                total_bytes = {_sql_value(run.total_bytes)},
                error_message = {_sql_value(run.error_message)},
                current_file = {_sql_value(run.current_file)},
                current_file_size = {_sql_value(run.current_file_size)},
                current_file_bytes_transferred = {_sql_value(run.current_file_bytes_transferred)}
            WHERE id = {_sql_value(run.id)} AND status = 'running'
            RETURNING id
            """
        )
        if rows:
            return
        if self.get_run(run.id) is None:
            raise StoreError(f"Job run {run.id} not found")
        raise StoreError(f"Job run {run.id} is already finalized")

    def get_run(self, run_id: int) -> JobRun | None:
        rows = self._execute(f"SELECT {_RUN_COLUMNS} FROM job_runs WHERE id = {_sql_value(run_id)}")
        return _run_from_row(rows[0]) if rows else None

    def list_runs(self, job_id: int, limit: int = 50) -> list[JobRun]:
        rows = self._execute(
            f"SELECT {_RUN_COLUMNS} FROM job_runs WHERE job_id = {_sql_value(job_id)} "
            f"ORDER BY id DESC LIMIT {int(limit)}"
        )
        return [_run_from_row(row) for row in rows]

    def add_transfer_log(self, log: TransferLog) -> TransferLog:
        self._require_run(log.job_run_id)
        values = ", ".join(
            _sql_value(v)
            for v in (
                log.job_id,
                log.job_run_id,
                log.file_name,
                log.source_path,
                log.destination_path,
                str(log.status),
                log.file_size,
                log.error_message,
                log.transferred_at,
            )
        )
        rows = self._execute(
            f"INSERT INTO transfer_logs ({_LOG_COLUMNS.removeprefix('id, ')}) VALUES ({values}) RETURNING id"
        )
        log.id = int(rows[0][0])
        return log

    def list_transfer_logs(self, run_id: int) -> list[TransferLog]:
        rows = self._execute(
            f"SELECT {_LOG_COLUMNS} FROM transfer_logs WHERE job_run_id = {_sql_value(run_id)} ORDER BY id"
        )
        return [
            TransferLog(
                id=r[0],
                job_id=r[1],
                job_run_id=r[2],
                file_name=r[3],
                source_path=r[4],
                destination_path=r[5],
                status=r[6],
                file_size=r[7] or 0,
                error_message=r[8],
                transferred_at=_from_db_time(r[9]),
            )
            for r in rows
        ]

    def add_hook_run(self, hook_run: HookRun) -> HookRun:
        self._require_run(hook_run.job_run_id)
        values = ", ".join(
            _sql_value(v)
            for v in (
                hook_run.job_id,
                hook_run.job_run_id,
                hook_run.hook_id,
                hook_run.hook_name,
                str(hook_run.hook_type),
                str(hook_run.trigger),
                str(hook_run.status),
                hook_run.duration_ms,
                hook_run.output,
                hook_run.error_message,
                hook_run.executed_at,
            )
        )
        rows = self._execute(
            f"INSERT INTO hook_runs ({_HOOK_RUN_COLUMNS.removeprefix('id, ')}) VALUES ({values}) RETURNING id"
        )
        hook_run.id = int(rows[0][0])
        return hook_run

    def list_hook_runs(self, run_id: int) -> list[HookRun]:
        rows = self._execute(
            f"SELECT {_HOOK_RUN_COLUMNS} FROM hook_runs WHERE job_run_id = {_sql_value(run_id)} ORDER BY id"
        )
        return [
            HookRun(
                id=r[0],
                job_id=r[1],
                job_run_id=r[2],
                hook_id=r[3],
                hook_name=r[4],
                hook_type=r[5],
                trigger=HookTrigger(r[6]),
                status=r[7],
                duration_ms=r[8] or 0,
                output=r[9],
                error_message=r[10],
                executed_at=_from_db_time(r[11]),
            )
            for r in rows
        ]

    def _require_run(self, run_id: int) -> None:
        rows = self._execute(f"SELECT 1 FROM job_runs WHERE id = {_sql_value(run_id)}")
        if not rows:
            raise StoreError(f"Job run {run_id} not found")


def _job_from_row(row: tuple) -> Job:
    return Job(
        id=row[0],
        name=row[1],
        source_connection_id=row[2],
        source_path=row[3],
        destination_connection_id=row[4],
        destination_path=row[5],
        schedule=row[6],
        file_filter=row[7] or "*",
        post_transfer_action=row[8],
        move_path=row[9],
        overwrite_existing=bool(row[10]),
        skip_hidden_files=bool(row[11]),
        extract_archives=bool(row[12]),
        delta_sync=bool(row[13]),
        status=row[14],
        last_run_at=_from_db_time(row[15]),
    )


def _run_from_row(row: tuple) -> JobRun:
    return JobRun(
        id=row[0],
        job_id=row[1],
        started_at=_from_db_time(row[2]),
        status=RunStatus(row[3]),
        trigger=RunTrigger(row[4]),
        completed_at=_from_db_time(row[5]),
        files_transferred=row[6] or 0,
        bytes_transferred=row[7] or 0,
        total_files=row[8],
        total_bytes=row[9],
        error_message=row[10],
        current_file=row[11],
        current_file_size=row[12],
        current_file_bytes_transferred=row[13],
    )
