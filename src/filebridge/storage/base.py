"""
Storage provider capability set.

Every protocol exposes the same operations so the transfer engine never needs
to know whether it talks to an SFTP server or an SMB share.
"""

from __future__ import annotations

import fnmatch
import posixpath
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Protocol, runtime_checkable

from filebridge.exceptions import ProviderError

# Chunk size used when copying between provider streams
COPY_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class FileInfo:
    """One entry of a single-level directory listing."""

    name: str
    size: int
    modified_at: datetime | None
    is_directory: bool = False


@runtime_checkable
class StorageProvider(Protocol):
    """
    Uniform filesystem operations against one remote connection.

    Idempotency of create/delete/move is protocol dependent; callers decide
    whether "already absent" or "already present" is fatal.
    """

    protocol: str

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def list_directory(self, path: str) -> list[FileInfo]: ...

    def create_directory(self, path: str) -> None: ...

    def delete_file(self, path: str) -> None: ...

    def move_file(self, source_path: str, destination_path: str) -> None: ...

    def open_read(self, path: str) -> BinaryIO: ...

    def write_file(self, path: str, stream: BinaryIO) -> int: ...


def get_working_directory(provider: StorageProvider) -> str:
    """Server default directory, or ``/`` for providers without the capability."""
    getter = getattr(provider, "get_working_directory", None)
    if getter is None:
        return "/"
    return getter() or "/"


def matches_filter(name: str, pattern: str | None) -> bool:
    """Case-insensitive glob match; an empty pattern matches everything."""
    if not pattern:
        pattern = "*"
    return fnmatch.fnmatchcase(name.lower(), pattern.lower())


def is_hidden(name: str) -> bool:
    return name.startswith(".")


def join_remote(base: str, name: str) -> str:
    return posixpath.join(base, name)


def copy_stream(source: BinaryIO, target: BinaryIO, chunk_size: int = COPY_CHUNK_SIZE) -> int:
    """Copy source into target chunk by chunk, returning the byte count."""
    total = 0
    while True:
        chunk = source.read(chunk_size)
        if not chunk:
            break
        target.write(chunk)
        total += len(chunk)
    return total


@contextmanager
def provider_errors(protocol: str, operation: str, path: str | None, *errors: type[BaseException]) -> Iterator[None]:
    """
    Re-raise the given library exceptions as ProviderError.

    ProviderError raised inside the block passes through unchanged.
    """
    try:
        yield
    except ProviderError:
        raise
    except errors as e:
        target = f" for {path}" if path else ""
        raise ProviderError(
            f"{protocol} {operation} failed{target}: {e}",
            protocol=protocol,
            operation=operation,
            path=path,
        ) from e
