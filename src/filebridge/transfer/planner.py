"""
Transfer planning.

``build_plan`` is shared by dry run and execution: given a job and the two
directory listings it decides, per source entry, whether the file would be
transferred and why not otherwise. It does no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from filebridge.models import Job, PostTransferAction
from filebridge.storage.base import FileInfo, is_hidden, join_remote, matches_filter
from filebridge.transfer.archives import is_archive

SKIP_FILTER = "filter"
SKIP_EXISTS = "exists"


@dataclass
class DryRunFile:
    name: str
    size: int
    modified_at: datetime | None
    skip_reason: str | None = None
    # Delta sync found an identical copy at the destination
    unchanged: bool = False
    post_action: PostTransferAction = PostTransferAction.RETAIN
    move_destination: str | None = None
    is_archive: bool = False
    would_extract: bool = False

    @property
    def would_skip(self) -> bool:
        return self.skip_reason is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "size": self.size,
            "modified_at": self.modified_at.isoformat() if self.modified_at else None,
            "would_skip": self.would_skip,
            "skip_reason": self.skip_reason,
            "unchanged": self.unchanged,
            "post_action": str(self.post_action),
            "move_destination": self.move_destination,
            "is_archive": self.is_archive,
            "would_extract": self.would_extract,
        }


@dataclass
class DryRunResult:
    job_id: int
    job_name: str
    source_path: str
    destination_path: str
    file_filter: str
    files: list[DryRunFile] = field(default_factory=list)
    total_in_source: int = 0
    total_matched: int = 0
    skipped_by_filter: int = 0
    skipped_by_exists: int = 0
    skipped_unchanged: int = 0

    @property
    def transferable(self) -> list[DryRunFile]:
        return [f for f in self.files if not f.would_skip]

    @property
    def would_transfer(self) -> int:
        return len(self.transferable)

    @property
    def would_skip(self) -> int:
        return self.skipped_by_filter + self.skipped_by_exists

    @property
    def total_bytes(self) -> int:
        return sum(f.size for f in self.transferable)

    def aggregates(self) -> dict[str, int]:
        return {
            "total_in_source": self.total_in_source,
            "total_matched": self.total_matched,
            "would_transfer": self.would_transfer,
            "would_skip": self.would_skip,
            "skipped_by_filter": self.skipped_by_filter,
            "skipped_by_exists": self.skipped_by_exists,
            "skipped_unchanged": self.skipped_unchanged,
            "total_bytes": self.total_bytes,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "job_name": self.job_name,
            "source_path": self.source_path,
            "destination_path": self.destination_path,
            "file_filter": self.file_filter,
            "files": [f.to_dict() for f in self.files],
            **self.aggregates(),
        }


def move_folder_segment(source_path: str, move_path: str | None) -> str | None:
    """
    First path segment of ``move_path`` below ``source_path``, if it lies inside it.

    >>> move_folder_segment("/in", "/in/done/2024")
    'done'
    >>> move_folder_segment("/in", "/archive") is None
    True
    """
    if not move_path:
        return None
    source_prefix = source_path.rstrip("/") + "/"
    normalized = move_path.rstrip("/")
    if not normalized.startswith(source_prefix):
        return None
    return normalized[len(source_prefix) :].split("/")[0] or None


def destination_decision(
    job: Job,
    name: str,
    size: int,
    modified_at: datetime | None,
    destination_index: dict[str, FileInfo],
) -> tuple[str | None, bool]:
    """
    Conflict and delta-sync check against the destination listing.

    Returns ``(skip_reason, unchanged)``. Archive members go through this same
    check during execution.
    """
    existing = destination_index.get(name)
    if existing is None:
        return None, False
    if job.delta_sync and _is_unchanged(size, modified_at, existing):
        return SKIP_EXISTS, True
    if not job.overwrite_existing:
        return SKIP_EXISTS, False
    return None, False


def _is_unchanged(size: int, modified_at: datetime | None, existing: FileInfo) -> bool:
    if existing.size != size:
        return False
    # Size-only when either side cannot report a modification time
    if existing.modified_at is None or modified_at is None:
        return True
    return existing.modified_at >= modified_at


def build_plan(
    job: Job,
    source_entries: list[FileInfo],
    destination_entries: list[FileInfo],
    source_path: str | None = None,
    destination_path: str | None = None,
) -> DryRunResult:
    """
    Classify every source entry.

    Args:
        job: Job whose policy applies
        source_entries: Single-level listing of the source directory
        destination_entries: Listing of the destination directory (empty when it does not exist)
        source_path: Resolved source directory, when the job uses ``.``
        destination_path: Resolved destination directory, when the job uses ``.``

    Returns:
        DryRunResult in source listing order
    """
    source_path = source_path or job.source_path
    result = DryRunResult(
        job_id=job.id,
        job_name=job.name,
        source_path=source_path,
        destination_path=destination_path or job.destination_path,
        file_filter=job.file_filter,
    )

    excluded = None
    if job.post_transfer_action == PostTransferAction.MOVE:
        excluded = move_folder_segment(source_path, job.move_path)

    destination_index = {entry.name: entry for entry in destination_entries if not entry.is_directory}

    for entry in source_entries:
        if entry.is_directory or entry.name == excluded:
            continue
        result.total_in_source += 1

        if job.skip_hidden_files and is_hidden(entry.name):
            result.skipped_by_filter += 1
            continue

        planned = DryRunFile(
            name=entry.name,
            size=entry.size,
            modified_at=entry.modified_at,
            post_action=job.post_transfer_action,
            is_archive=is_archive(entry.name),
        )
        result.files.append(planned)

        if not matches_filter(entry.name, job.file_filter):
            planned.skip_reason = SKIP_FILTER
            result.skipped_by_filter += 1
            continue
        result.total_matched += 1

        planned.skip_reason, planned.unchanged = destination_decision(
            job, entry.name, entry.size, entry.modified_at, destination_index
        )
        if planned.would_skip:
            result.skipped_by_exists += 1
            if planned.unchanged:
                result.skipped_unchanged += 1
            continue

        planned.would_extract = job.extract_archives and planned.is_archive
        if job.post_transfer_action == PostTransferAction.MOVE and job.move_path:
            planned.move_destination = join_remote(job.move_path, entry.name)

    return result
