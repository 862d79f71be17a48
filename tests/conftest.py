"""
Shared fixtures: an in-memory storage provider and a seeded job store.
"""

from __future__ import annotations

import io
import posixpath
import time
from datetime import UTC, datetime
from typing import BinaryIO

import pytest

from filebridge.exceptions import ProviderConnectionError, ProviderError
from filebridge.models import Connection, Hook, Job, JobStatus
from filebridge.storage.base import FileInfo
from filebridge.store import MemoryJobStore

DEFAULT_MTIME = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


class FakeProvider:
    """Dict-backed StorageProvider. Paths are absolute POSIX paths."""

    def __init__(self, protocol: str = "sftp", cwd: str = "/home/user"):
        self.protocol = protocol
        self.cwd = cwd
        self.files: dict[str, bytes] = {}
        self.mtimes: dict[str, datetime] = {}
        self.directories: set[str] = {"/"}
        self.connected = False
        self.connect_error: Exception | None = None
        self.fail_writes: dict[str, int] = {}
        self.fail_list: set[str] = set()
        self.fail_delete: set[str] = set()
        self.fail_reads: set[str] = set()
        # Listings that still miss a written file / still show a deleted one
        self.hidden_listings: dict[str, int] = {}
        self.ghost_listings: dict[str, int] = {}
        self._ghosts: dict[str, int] = {}
        self.read_delay = 0.0
        self.calls: list[tuple[str, str]] = []

    # --- seeding -------------------------------------------------------

    def add_file(self, path: str, data: bytes = b"data", modified_at: datetime | None = DEFAULT_MTIME) -> None:
        self.files[path] = data
        if modified_at is not None:
            self.mtimes[path] = modified_at
        self._add_parents(path)

    def add_directory(self, path: str) -> None:
        self.directories.add(path.rstrip("/") or "/")
        self._add_parents(path)

    def _add_parents(self, path: str) -> None:
        parent = posixpath.dirname(path.rstrip("/"))
        while parent and parent not in self.directories:
            self.directories.add(parent)
            parent = posixpath.dirname(parent)

    # --- StorageProvider -------------------------------------------------

    def connect(self) -> None:
        self.calls.append(("connect", ""))
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def disconnect(self) -> None:
        self.calls.append(("disconnect", ""))
        self.connected = False

    def list_directory(self, path: str) -> list[FileInfo]:
        self._require_connected()
        path = path.rstrip("/") or "/"
        if path in self.fail_list or path not in self.directories:
            raise ProviderError(f"No such directory: {path}", protocol=self.protocol, operation="list", path=path)
        entries = []
        for file_path, data in sorted(self.files.items()):
            if posixpath.dirname(file_path) == path:
                if self._lagging(self.hidden_listings, file_path):
                    continue
                entries.append(FileInfo(posixpath.basename(file_path), len(data), self.mtimes.get(file_path)))
        for file_path, size in sorted(self._ghosts.items()):
            if posixpath.dirname(file_path) == path and self._lagging(self.ghost_listings, file_path):
                entries.append(FileInfo(posixpath.basename(file_path), size, None))
        for directory in sorted(self.directories):
            if directory != path and posixpath.dirname(directory) == path:
                entries.append(FileInfo(posixpath.basename(directory), 0, None, is_directory=True))
        return entries

    def create_directory(self, path: str) -> None:
        self._require_connected()
        self.add_directory(path)

    def delete_file(self, path: str) -> None:
        self._require_connected()
        self.calls.append(("delete", path))
        if path in self.fail_delete or path not in self.files:
            raise ProviderError(f"Cannot delete {path}", protocol=self.protocol, operation="delete", path=path)
        if self.ghost_listings.get(path):
            self._ghosts[path] = len(self.files[path])
        del self.files[path]
        self.mtimes.pop(path, None)

    def move_file(self, source_path: str, destination_path: str) -> None:
        self._require_connected()
        self.calls.append(("move", source_path))
        if source_path not in self.files:
            raise ProviderError(f"Cannot move {source_path}", protocol=self.protocol, operation="move", path=source_path)
        self.add_file(destination_path, self.files.pop(source_path), self.mtimes.pop(source_path, None))

    def open_read(self, path: str) -> BinaryIO:
        self._require_connected()
        self.calls.append(("read", path))
        if self.read_delay:
            time.sleep(self.read_delay)
        if path in self.fail_reads:
            raise ProviderError(f"Permission denied: {path}", protocol=self.protocol, operation="read", path=path)
        if path not in self.files:
            raise ProviderError(f"Cannot read {path}", protocol=self.protocol, operation="read", path=path)
        return io.BytesIO(self.files[path])

    def write_file(self, path: str, stream: BinaryIO) -> int:
        self._require_connected()
        self.calls.append(("write", path))
        data = stream.read()
        remaining = self.fail_writes.get(path, 0)
        if remaining:
            self.fail_writes[path] = remaining - 1
            # Leave a partial file behind, like an interrupted upload
            self.add_file(path, data[: len(data) // 2])
            raise ProviderError(f"Write interrupted: {path}", protocol=self.protocol, operation="write", path=path)
        self.add_file(path, data, datetime.now(UTC))
        return len(data)

    def get_working_directory(self) -> str:
        self._require_connected()
        return self.cwd

    def _lagging(self, counters: dict[str, int], path: str) -> bool:
        remaining = counters.get(path, 0)
        if remaining <= 0:
            return False
        counters[path] = remaining - 1
        return True

    def _require_connected(self) -> None:
        if not self.connected:
            raise ProviderError("Not connected", protocol=self.protocol, operation="client")


class ProviderPair:
    """Hands out the source / destination fakes by connection id."""

    def __init__(self) -> None:
        self.source = FakeProvider("sftp")
        self.destination = FakeProvider("smb", cwd="/")

    def __call__(self, connection: Connection) -> FakeProvider:
        return self.source if connection.id == 1 else self.destination


def make_job(**overrides) -> Job:
    fields = {
        "id": 1,
        "name": "nightly-export",
        "source_connection_id": 1,
        "source_path": "/in",
        "destination_connection_id": 2,
        "destination_path": "/out",
        "schedule": "0 2 * * *",
        "status": JobStatus.ACTIVE,
    }
    fields.update(overrides)
    return Job(**fields)


def make_hook(hook_id: int, hook_type: str, config: dict | str, name: str | None = None, enabled: bool = True) -> Hook:
    return Hook(id=hook_id, name=name or f"hook-{hook_id}", type=hook_type, config=config, enabled=enabled)


@pytest.fixture
def providers() -> ProviderPair:
    return ProviderPair()


@pytest.fixture
def store() -> MemoryJobStore:
    store = MemoryJobStore()
    store.save_connection(Connection(id=1, name="partner-sftp", protocol="sftp", host="sftp.example.com", port=22))
    store.save_connection(
        Connection(id=2, name="office-share", protocol="smb", host="fs01", port=445, credentials={"share": "data"})
    )
    return store


@pytest.fixture
def no_retry_config() -> dict:
    return {
        "transfer": {
            "max_attempts": 3,
            "retry_delay_s": 0,
            "verify_size": True,
            "verify_interval_s": 0,
            "delete_confirm_interval_s": 0,
        },
        "hooks": {},
    }


def connection_refused() -> ProviderConnectionError:
    return ProviderConnectionError("Connection refused", protocol="sftp", operation="connect")
