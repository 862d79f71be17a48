"""
Archive detection and member iteration for ``extract_archives`` jobs.

Archives are spooled to a local temporary file first: zip needs random access
and remote streams only read forward. Members are flattened to their basename;
directory entries are never yielded.
"""

from __future__ import annotations

import posixpath
import tarfile
import tempfile
import zipfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import BinaryIO

from filebridge.exceptions import TransferError
from filebridge.storage.base import copy_stream

ARCHIVE_EXTENSIONS = (".zip", ".tar", ".tar.gz", ".tgz")

# Spool in memory up to this size, then roll over to disk
SPOOL_MAX_MEMORY = 8 * 1024 * 1024


def is_archive(name: str) -> bool:
    lowered = name.lower()
    return any(lowered.endswith(ext) for ext in ARCHIVE_EXTENSIONS)


@dataclass(frozen=True)
class ArchiveMember:
    name: str
    path: str
    size: int
    modified_at: datetime | None = None


def spool(source: BinaryIO) -> tempfile.SpooledTemporaryFile:
    """Copy a forward-only stream into a seekable temporary file."""
    spooled = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY)
    copy_stream(source, spooled)  # type: ignore[arg-type]
    spooled.seek(0)
    return spooled


class ArchiveReader:
    """
    Read members of a spooled zip or tar archive.

    Usage::

        with ArchiveReader("batch.zip", spooled) as archive:
            for member in archive.members():
                with archive.open(member) as stream:
                    ...
    """

    def __init__(self, name: str, fileobj: BinaryIO):
        self.name = name
        self._fileobj = fileobj
        self._zip: zipfile.ZipFile | None = None
        self._tar: tarfile.TarFile | None = None

    def __enter__(self) -> ArchiveReader:
        self._fileobj.seek(0)
        try:
            if self.name.lower().endswith(".zip"):
                self._zip = zipfile.ZipFile(self._fileobj)
            else:
                self._tar = tarfile.open(fileobj=self._fileobj, mode="r:*")
        except (zipfile.BadZipFile, tarfile.TarError, OSError, EOFError) as e:
            raise TransferError(f"Cannot read archive {self.name}: {e}") from e
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._zip is not None:
            self._zip.close()
        if self._tar is not None:
            self._tar.close()

    def members(self) -> list[ArchiveMember]:
        result = []
        if self._zip is not None:
            for info in self._zip.infolist():
                basename = posixpath.basename(info.filename.rstrip("/"))
                if info.is_dir() or not basename:
                    continue
                result.append(
                    ArchiveMember(
                        name=basename,
                        path=info.filename,
                        size=info.file_size,
                        modified_at=_zip_time(info.date_time),
                    )
                )
        elif self._tar is not None:
            for info in self._tar.getmembers():
                basename = posixpath.basename(info.name.rstrip("/"))
                if not info.isfile() or not basename:
                    continue
                result.append(
                    ArchiveMember(
                        name=basename,
                        path=info.name,
                        size=info.size,
                        modified_at=datetime.fromtimestamp(info.mtime, tz=UTC) if info.mtime else None,
                    )
                )
        return result

    @contextmanager
    def open(self, member: ArchiveMember) -> Iterator[BinaryIO]:
        try:
            if self._zip is not None:
                stream: BinaryIO | None = self._zip.open(member.path)  # type: ignore[assignment]
            elif self._tar is not None:
                stream = self._tar.extractfile(member.path)  # type: ignore[assignment]
            else:
                raise TransferError(f"Archive {self.name} is not open")
        except (zipfile.BadZipFile, tarfile.TarError, KeyError) as e:
            raise TransferError(f"Cannot read {member.path} from {self.name}: {e}") from e
        if stream is None:
            raise TransferError(f"Cannot read {member.path} from {self.name}")
        try:
            yield stream
        finally:
            stream.close()


def _zip_time(date_time: tuple[int, int, int, int, int, int]) -> datetime | None:
    try:
        return datetime(*date_time, tzinfo=UTC)
    except ValueError:
        return None
