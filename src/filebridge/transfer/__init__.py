"""
Transfer engine: planning, dry run and execution.
"""

from filebridge.transfer.archives import ARCHIVE_EXTENSIONS, ArchiveReader, is_archive
from filebridge.transfer.engine import MANUAL_CLAIM, SCHEDULED_CLAIM, TransferEngine
from filebridge.transfer.planner import DryRunFile, DryRunResult, build_plan
from filebridge.transfer.retry import RetryPolicy

__all__ = [
    "ARCHIVE_EXTENSIONS",
    "MANUAL_CLAIM",
    "SCHEDULED_CLAIM",
    "ArchiveReader",
    "DryRunFile",
    "DryRunResult",
    "RetryPolicy",
    "TransferEngine",
    "build_plan",
    "is_archive",
]
