"""
Transfer engine.

Dry run and execution share ``build_plan``. Execution claims the job, records
a JobRun, runs hooks around the transfer and releases the job in every path.
Provider calls block, so each one runs in a worker thread.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import AbstractContextManager, closing, nullcontext
from dataclasses import dataclass, field
from typing import Any, BinaryIO, TypeVar

from filebridge.exceptions import (
    ConfigurationError,
    HookError,
    JobNotFoundError,
    PlanningError,
    ProviderError,
    StoreError,
    TransferError,
)
from filebridge.hooks.executor import HookExecutor
from filebridge.hooks.templating import HookContext
from filebridge.models import (
    Connection,
    ConnectionProtocol,
    HookTrigger,
    Job,
    JobRun,
    JobStatus,
    LogStatus,
    PostTransferAction,
    RunStatus,
    RunTrigger,
    TransferLog,
    utcnow,
)
from filebridge.storage.base import FileInfo, StorageProvider, get_working_directory, is_hidden, join_remote
from filebridge.storage.registry import create_storage_provider
from filebridge.store.base import JobStore
from filebridge.transfer.archives import ArchiveReader, spool
from filebridge.transfer.planner import DryRunFile, DryRunResult, build_plan, destination_decision
from filebridge.transfer.retry import RetryPolicy
from filebridge.utils.logging import get_logger, job_context

logger = get_logger("filebridge.transfer")

T = TypeVar("T")

ProviderFactory = Callable[[Connection], StorageProvider]

# Statuses a run may start from
SCHEDULED_CLAIM = (JobStatus.ACTIVE,)
MANUAL_CLAIM = (JobStatus.ACTIVE, JobStatus.INACTIVE, JobStatus.ERROR)

_FILE_ERRORS = (ProviderError, TransferError, OSError)

# Destination listings can lag behind an upload: (polls, seconds between polls)
VERIFY_POLLING = {ConnectionProtocol.SMB: (10, 1.0)}
DEFAULT_VERIFY_POLLING = (5, 0.5)


class RunAborted(Exception):
    """Internal: the run stops before (or instead of) transferring files."""

    def __init__(self, message: str, run_post_hooks: bool):
        super().__init__(message)
        self.message = message
        self.run_post_hooks = run_post_hooks


class ProgressReader:
    """Read-only stream wrapper that counts the bytes handed to the uploader."""

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self.bytes_read = 0

    def read(self, size: int = -1) -> bytes:
        chunk = self._stream.read(size)
        self.bytes_read += len(chunk)
        return chunk


@dataclass
class _RunState:
    """Everything one execution needs, passed between the steps."""

    job: Job
    run: JobRun
    source: StorageProvider
    destination: StorageProvider
    source_path: str = ""
    destination_path: str = ""
    destination_index: dict[str, FileInfo] = field(default_factory=dict)
    failures: int = 0


class TransferEngine:
    """
    Executes jobs against live providers.

    Args:
        store: Job store (reads jobs and connections, writes run records)
        config: Loaded Config (or a plain dict with the same sections)
        provider_factory: Builds a provider from a Connection
        retry_policy: Per-file retry policy; defaults to the ``transfer`` config
    """

    def __init__(
        self,
        store: JobStore,
        config: Any = None,
        provider_factory: ProviderFactory | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        config = config if config is not None else {}
        transfer_config = config.get("transfer") or {}
        self.store = store
        self.provider_factory = provider_factory or create_storage_provider
        self.retry_policy = retry_policy or RetryPolicy.from_config(transfer_config)
        self.verify_size = bool(transfer_config.get("verify_size", True))
        verify_attempts = transfer_config.get("verify_attempts")
        verify_interval = transfer_config.get("verify_interval_s")
        self.verify_attempts = int(verify_attempts) if verify_attempts is not None else None
        self.verify_interval = float(verify_interval) if verify_interval is not None else None
        self.confirm_delete = bool(transfer_config.get("confirm_delete", True))
        self.delete_confirm_attempts = max(int(transfer_config.get("delete_confirm_attempts", 30)), 1)
        self.delete_confirm_interval = float(transfer_config.get("delete_confirm_interval_s", 1.0))
        self.progress_interval = max(float(transfer_config.get("progress_interval_s", 0.5)), 0.05)
        self.hooks = HookExecutor.from_config(store, config.get("hooks") or {})

    # ------------------------------------------------------------------
    # Dry run
    # ------------------------------------------------------------------

    async def dry_run(self, job_id: int) -> DryRunResult:
        """
        Plan a job without changing anything.

        Only lists directories: no lock, no run records, no remote writes.

        Raises:
            JobNotFoundError: Unknown job
            ProviderConnectionError: Source cannot be reached
            PlanningError: Source directory cannot be listed
        """
        job = self._require_job(job_id)
        source, destination = self._create_providers(job)
        try:
            await asyncio.to_thread(source.connect)
            source_path = await self._resolve_path(source, job.source_path)
            source_entries = await self._list_source(source, source_path)

            destination_path = job.destination_path
            try:
                await asyncio.to_thread(destination.connect)
                destination_path = await self._resolve_path(destination, job.destination_path)
                destination_entries = await asyncio.to_thread(destination.list_directory, destination_path)
            except ProviderError as e:
                logger.info(f"Destination not listable, treating as empty: {e}")
                destination_entries = []

            return build_plan(job, source_entries, destination_entries, source_path, destination_path)
        finally:
            await self._disconnect(source, destination)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run_job(self, job_id: int, trigger: RunTrigger = RunTrigger.MANUAL) -> JobRun | None:
        """
        Execute a job once.

        Returns the finalized JobRun, or None when the job could not be
        claimed (already running, or not in a startable status).

        Raises:
            JobNotFoundError: Unknown job
        """
        self._require_job(job_id)
        allowed = SCHEDULED_CLAIM if trigger == RunTrigger.SCHEDULED else MANUAL_CLAIM
        previous = self.store.claim_job(job_id, allowed)
        if previous is None:
            logger.info(f"Job {job_id} not claimable for a {trigger} run, skipping")
            return None

        job = self._require_job(job_id)
        run = self.store.create_run(job_id, trigger)
        outcome = JobStatus.ERROR
        with job_context(job_id, run.id):
            logger.info(f"Starting {trigger} run {run.id} of job '{job.name}'")
            try:
                outcome = await self._execute(job, run)
            except BaseException as e:
                if run.status == RunStatus.RUNNING:
                    self._finalize(run, RunStatus.FAILURE, f"Unexpected error: {e}")
                raise
            finally:
                # A run never changes an inactive job into an active or errored one
                release = JobStatus.INACTIVE if previous == JobStatus.INACTIVE else outcome
                self.store.release_job(job_id, release, last_run_at=utcnow())
                logger.info(f"Run {run.id} finished: {run.status}; job is now {release}")
        return self.store.get_run(run.id) or run

    async def _execute(self, job: Job, run: JobRun) -> JobStatus:
        """Carry out one claimed run. Returns the status to release the job to."""
        try:
            source, destination = self._create_providers(job)
        except ConfigurationError as e:
            logger.error(f"Cannot build providers: {e}")
            self._finalize(run, RunStatus.FAILURE, str(e))
            return JobStatus.ERROR

        state = _RunState(job=job, run=run, source=source, destination=destination)
        try:
            try:
                await self._connect(state)
                await self._run_hooks(state, HookTrigger.PRE_JOB)
                plan = await self._plan(state)
            except RunAborted as abort:
                if abort.run_post_hooks:
                    await self._post_hooks_after_abort(state, abort.message)
                self._finalize(run, RunStatus.FAILURE, abort.message)
                return JobStatus.ERROR

            run.total_files = plan.would_transfer
            run.total_bytes = plan.total_bytes
            self.store.update_run(run)

            for planned in plan.transferable:
                if planned.would_extract:
                    await self._transfer_archive(state, planned)
                else:
                    await self._transfer_file(state, planned)
                self.store.update_run(run)

            status = RunStatus.SUCCESS if state.failures == 0 else RunStatus.FAILURE
            error_message = f"{state.failures} file(s) failed" if state.failures else None

            try:
                await self._run_hooks(state, HookTrigger.POST_JOB, status=status, error_message=error_message)
            except RunAborted as abort:
                status = RunStatus.FAILURE
                error_message = f"{error_message}; {abort.message}" if error_message else abort.message

            self._finalize(run, status, error_message)
            return JobStatus.ACTIVE
        finally:
            await self._disconnect(source, destination)

    # --- steps -----------------------------------------------------------

    async def _connect(self, state: _RunState) -> None:
        for role, provider in (("source", state.source), ("destination", state.destination)):
            logger.info(f"Connecting to {role} ({provider.protocol})")
            try:
                await asyncio.to_thread(provider.connect)
            except (ProviderError, ConfigurationError) as e:
                logger.error(f"Connection to {role} failed: {e}")
                raise RunAborted(f"Connection failed: {e}", run_post_hooks=False) from e

    async def _run_hooks(
        self,
        state: _RunState,
        trigger: HookTrigger,
        status: RunStatus | None = None,
        error_message: str | None = None,
    ) -> None:
        hooks = self.store.get_job_hooks(state.job.id, trigger)
        if not hooks:
            return
        context = HookContext(
            job_id=state.job.id,
            job_name=state.job.name,
            run_id=state.run.id,
            trigger=trigger,
            status=str(status) if status is not None else None,
            files_transferred=state.run.files_transferred if trigger == HookTrigger.POST_JOB else None,
            bytes_transferred=state.run.bytes_transferred if trigger == HookTrigger.POST_JOB else None,
            error_message=error_message,
        )
        try:
            await self.hooks.execute_hooks(hooks, context)
        except HookError as e:
            raise RunAborted(e.message, run_post_hooks=trigger == HookTrigger.PRE_JOB) from e

    async def _post_hooks_after_abort(self, state: _RunState, message: str) -> None:
        try:
            await self._run_hooks(state, HookTrigger.POST_JOB, status=RunStatus.FAILURE, error_message=message)
        except RunAborted as abort:
            logger.error(f"Post-job hook failed after abort: {abort.message}")

    async def _plan(self, state: _RunState) -> DryRunResult:
        job = state.job
        try:
            state.source_path = await self._resolve_path(state.source, job.source_path)
            state.destination_path = await self._resolve_path(state.destination, job.destination_path)
            source_entries = await self._list_source(state.source, state.source_path)
        except (PlanningError, ProviderError) as e:
            logger.error(f"Planning failed: {e}")
            raise RunAborted(f"Planning failed: {e}", run_post_hooks=True) from e

        try:
            destination_entries = await asyncio.to_thread(state.destination.list_directory, state.destination_path)
        except ProviderError as e:
            logger.info(f"Destination {state.destination_path} not listable, treating as empty: {e}")
            destination_entries = []
        state.destination_index = {e.name: e for e in destination_entries if not e.is_directory}

        plan = build_plan(job, source_entries, destination_entries, state.source_path, state.destination_path)
        logger.info(
            f"Plan: {plan.total_in_source} in source, {plan.would_transfer} to transfer, "
            f"{plan.skipped_by_filter} filtered, {plan.skipped_by_exists} already at destination"
        )
        return plan

    # --- per file ----------------------------------------------------------

    async def _transfer_file(self, state: _RunState, planned: DryRunFile) -> None:
        source_path = join_remote(state.source_path, planned.name)
        destination_path = join_remote(state.destination_path, planned.name)

        def open_source() -> AbstractContextManager[BinaryIO]:
            return closing(state.source.open_read(source_path))

        async def copy() -> int:
            return await self._copy(state, planned.name, planned.size, open_source, destination_path)

        logger.info(f"Transferring {planned.name} ({planned.size} bytes)")
        written, error = await self._with_retries(planned.name, copy)
        if error is not None:
            self._log_failure(state, planned.name, source_path, destination_path, error)
            return

        post_error = await self._post_action(state, planned, source_path)
        self._log_success(state, planned.name, source_path, destination_path, written, post_error)

    async def _transfer_archive(self, state: _RunState, planned: DryRunFile) -> None:
        source_path = join_remote(state.source_path, planned.name)

        def download():
            with closing(state.source.open_read(source_path)) as stream:
                return spool(stream)

        async def fetch():
            return await asyncio.to_thread(download)

        logger.info(f"Downloading archive {planned.name} for extraction")
        spooled, error = await self._with_retries(planned.name, fetch)
        if error is not None:
            self._log_failure(state, planned.name, source_path, join_remote(state.destination_path, planned.name), error)
            return

        with spooled:
            try:
                with ArchiveReader(planned.name, spooled) as archive:
                    members = archive.members()
                    if state.job.skip_hidden_files:
                        members = [m for m in members if not is_hidden(m.name)]
                    if members:
                        logger.info(f"Extracting {len(members)} member(s) from {planned.name}")
                        member_failures = 0
                        for member in members:
                            if not await self._transfer_member(state, archive, member, source_path):
                                member_failures += 1
                        if member_failures:
                            logger.warning(f"{member_failures} member(s) of {planned.name} failed; source archive kept")
                            return
                        post_error = await self._post_action(state, planned, source_path)
                        if post_error:
                            logger.error(f"{planned.name}: {post_error}")
                        return
            except TransferError as e:
                logger.warning(f"{e}; transferring the archive as-is")
            else:
                logger.info(f"Archive {planned.name} has no members, transferring as-is")

            await self._transfer_spooled(state, planned, source_path, spooled)

    async def _transfer_member(self, state: _RunState, archive: ArchiveReader, member: Any, archive_path: str) -> bool:
        source_path = f"{archive_path}!{member.path}"
        destination_path = join_remote(state.destination_path, member.name)

        skip_reason, unchanged = destination_decision(
            state.job, member.name, member.size, member.modified_at, state.destination_index
        )
        if skip_reason is not None:
            detail = "unchanged" if unchanged else "already exists"
            logger.info(f"Skipping archive member {member.name}: {detail} at destination")
            return True

        async def copy() -> int:
            return await self._copy(state, member.name, member.size, lambda: archive.open(member), destination_path)

        written, error = await self._with_retries(member.name, copy)
        if error is not None:
            self._log_failure(state, member.name, source_path, destination_path, error)
            return False
        self._log_success(state, member.name, source_path, destination_path, written, None)
        return True

    async def _transfer_spooled(self, state: _RunState, planned: DryRunFile, source_path: str, spooled: Any) -> None:
        destination_path = join_remote(state.destination_path, planned.name)

        def rewind() -> AbstractContextManager[BinaryIO]:
            spooled.seek(0)
            return nullcontext(spooled)

        async def copy() -> int:
            return await self._copy(state, planned.name, planned.size, rewind, destination_path)

        written, error = await self._with_retries(planned.name, copy)
        if error is not None:
            self._log_failure(state, planned.name, source_path, destination_path, error)
            return
        post_error = await self._post_action(state, planned, source_path)
        self._log_success(state, planned.name, source_path, destination_path, written, post_error)

    async def _copy(
        self,
        state: _RunState,
        name: str,
        size: int,
        open_source: Callable[[], AbstractContextManager[BinaryIO]],
        destination_path: str,
    ) -> int:
        """
        One attempt at copying a stream to the destination.

        The source is opened before the destination is touched, so a source
        that cannot be read leaves an existing destination file in place. Once
        writing has started, a failed attempt removes what it left behind.
        """
        source = await asyncio.to_thread(open_source)
        with source as stream:
            if name in state.destination_index:
                await self._remove_existing(state, destination_path)
            self._start_progress(state.run, name, size)
            reader = ProgressReader(stream)
            try:
                written = await self._write(state, destination_path, reader)
                if self.verify_size:
                    await self._verify_size(state, destination_path, written)
            except _FILE_ERRORS:
                await self._remove_partial(state, destination_path)
                raise
            finally:
                state.run.current_file_bytes_transferred = reader.bytes_read
        return written

    async def _write(self, state: _RunState, destination_path: str, reader: ProgressReader) -> int:
        """Upload ``reader``, flushing byte progress to the store while it runs."""
        flusher = asyncio.create_task(self._flush_progress(state.run, reader))
        try:
            return await asyncio.to_thread(state.destination.write_file, destination_path, reader)
        finally:
            flusher.cancel()
            await asyncio.gather(flusher, return_exceptions=True)

    async def _flush_progress(self, run: JobRun, reader: ProgressReader) -> None:
        while True:
            await asyncio.sleep(self.progress_interval)
            run.current_file_bytes_transferred = reader.bytes_read
            try:
                self.store.update_run(run)
            except StoreError as e:
                logger.warning(f"Progress of run {run.id} not saved: {e}")

    def _start_progress(self, run: JobRun, name: str, size: int) -> None:
        run.current_file = name
        run.current_file_size = size
        run.current_file_bytes_transferred = 0
        self.store.update_run(run)

    async def _remove_existing(self, state: _RunState, destination_path: str) -> None:
        try:
            await asyncio.to_thread(state.destination.delete_file, destination_path)
        except ProviderError as e:
            logger.debug(f"Existing destination {destination_path} not removed: {e}")

    async def _verify_size(self, state: _RunState, destination_path: str, expected: int) -> None:
        """
        Poll the destination listing until the uploaded file shows ``expected`` bytes.

        Raises:
            TransferError: The file is still missing or the wrong size after the last poll
        """
        parent, _, name = destination_path.rpartition("/")
        parent = parent or "/"
        attempts, interval = self._verify_polling(state.destination.protocol)
        actual = None
        for attempt in range(1, attempts + 1):
            try:
                entries = await asyncio.to_thread(state.destination.list_directory, parent)
            except ProviderError as e:
                logger.warning(f"Size check of {destination_path} could not list {parent} (attempt {attempt}): {e}")
            else:
                actual = next((e.size for e in entries if e.name == name and not e.is_directory), None)
                if actual == expected:
                    return
                if actual is not None:
                    logger.warning(
                        f"Size mismatch for {destination_path} (attempt {attempt}): expected {expected}, found {actual}"
                    )
            if attempt < attempts:
                await _sleep(interval)

        if actual is None:
            raise TransferError(f"{destination_path} missing after upload")
        raise TransferError(f"Size mismatch for {destination_path}: wrote {expected} bytes, found {actual}")

    def _verify_polling(self, protocol: str) -> tuple[int, float]:
        attempts, interval = VERIFY_POLLING.get(protocol, DEFAULT_VERIFY_POLLING)
        if self.verify_attempts is not None:
            attempts = self.verify_attempts
        if self.verify_interval is not None:
            interval = self.verify_interval
        return max(attempts, 1), interval

    async def _with_retries(self, label: str, operation: Callable[[], Awaitable[T]]) -> tuple[T | None, str | None]:
        """Run one file operation with per-file retries. Returns (result, error message)."""
        attempt = 1
        while True:
            try:
                return await operation(), None
            except _FILE_ERRORS as e:
                error = str(e)
                if not self.retry_policy.should_retry(attempt):
                    logger.error(f"{label}: failed after {attempt} attempt(s): {error}")
                    return None, error
                delay = self.retry_policy.get_delay(attempt)
                logger.warning(f"{label}: attempt {attempt} failed ({error}), retrying in {delay:.1f}s")
                await _sleep(delay)
                attempt += 1

    async def _remove_partial(self, state: _RunState, path: str) -> None:
        try:
            await asyncio.to_thread(state.destination.delete_file, path)
        except ProviderError as e:
            logger.debug(f"No partial file removed at {path}: {e}")

    async def _post_action(self, state: _RunState, planned: DryRunFile, source_path: str) -> str | None:
        """Apply the post-transfer action. Returns an error message instead of raising."""
        action = state.job.post_transfer_action
        try:
            if action == PostTransferAction.DELETE:
                logger.info(f"Deleting source {source_path}")
                await asyncio.to_thread(state.source.delete_file, source_path)
                if self.confirm_delete and not await self._confirm_deleted(state, source_path):
                    logger.error(f"Source {source_path} still listed after delete")
                    return f"Post-transfer delete not confirmed: {source_path} is still listed"
            elif action == PostTransferAction.MOVE:
                if not planned.move_destination:
                    return "Post-transfer move skipped: job has no move path"
                logger.info(f"Moving source {source_path} to {planned.move_destination}")
                await asyncio.to_thread(state.source.move_file, source_path, planned.move_destination)
        except ProviderError as e:
            logger.error(f"Post-transfer {action} failed for {source_path}: {e}")
            return f"Post-transfer {action} failed: {e}"
        return None

    async def _confirm_deleted(self, state: _RunState, source_path: str) -> bool:
        """Poll the source listing until ``source_path`` is gone."""
        parent, _, name = source_path.rpartition("/")
        parent = parent or "/"
        for attempt in range(1, self.delete_confirm_attempts + 1):
            try:
                entries = await asyncio.to_thread(state.source.list_directory, parent)
            except ProviderError as e:
                logger.warning(f"Delete check of {source_path} could not list {parent} (attempt {attempt}): {e}")
            else:
                if not any(e.name == name for e in entries):
                    logger.debug(f"Delete of {source_path} confirmed (attempt {attempt})")
                    return True
            if attempt < self.delete_confirm_attempts:
                await _sleep(self.delete_confirm_interval)
        return False

    # --- records -----------------------------------------------------------

    def _log_success(
        self,
        state: _RunState,
        name: str,
        source_path: str,
        destination_path: str,
        size: int,
        error_message: str | None,
    ) -> None:
        state.run.files_transferred += 1
        state.run.bytes_transferred += size
        self.store.add_transfer_log(
            TransferLog(
                job_id=state.job.id,
                job_run_id=state.run.id,
                file_name=name,
                source_path=source_path,
                destination_path=destination_path,
                status=LogStatus.SUCCESS,
                file_size=size,
                error_message=error_message,
            )
        )
        logger.info(f"Transferred {name} -> {destination_path} ({size} bytes)")

    def _log_failure(self, state: _RunState, name: str, source_path: str, destination_path: str, error: str) -> None:
        state.failures += 1
        self.store.add_transfer_log(
            TransferLog(
                job_id=state.job.id,
                job_run_id=state.run.id,
                file_name=name,
                source_path=source_path,
                destination_path=destination_path,
                status=LogStatus.FAILURE,
                error_message=error,
            )
        )

    def _finalize(self, run: JobRun, status: RunStatus, error_message: str | None) -> None:
        run.status = status
        run.error_message = error_message
        run.completed_at = utcnow()
        run.current_file = None
        run.current_file_size = None
        run.current_file_bytes_transferred = None
        self.store.update_run(run)

    # --- helpers -----------------------------------------------------------

    def _require_job(self, job_id: int) -> Job:
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _create_providers(self, job: Job) -> tuple[StorageProvider, StorageProvider]:
        providers = []
        for role, connection_id in (("source", job.source_connection_id), ("destination", job.destination_connection_id)):
            connection = self.store.get_connection(connection_id)
            if connection is None:
                raise ConfigurationError(f"{role.capitalize()} connection {connection_id} not found for job {job.id}")
            providers.append(self.provider_factory(connection))
        return providers[0], providers[1]

    async def _resolve_path(self, provider: StorageProvider, path: str) -> str:
        if path not in (".", ""):
            return path
        resolved = await asyncio.to_thread(get_working_directory, provider)
        logger.info(f"Resolved '.' to {resolved} on {provider.protocol}")
        return resolved

    async def _list_source(self, provider: StorageProvider, path: str) -> list[FileInfo]:
        try:
            return await asyncio.to_thread(provider.list_directory, path)
        except ProviderError as e:
            raise PlanningError(f"Cannot list source directory {path}: {e}", details={"path": path}) from e

    async def _disconnect(self, *providers: StorageProvider) -> None:
        for provider in providers:
            await asyncio.to_thread(provider.disconnect)


async def _sleep(delay: float) -> None:
    if delay > 0:
        await asyncio.sleep(delay)

