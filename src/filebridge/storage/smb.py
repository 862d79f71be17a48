"""
SMB storage provider (smbprotocol's ``smbclient``).

Paths are POSIX-style and relative to the share root; they are converted to
UNC paths (``\\\\host\\share\\dir\\file``) on the way in. Each provider keeps
its own connection cache so jobs never share an SMB session.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, BinaryIO

import smbclient
from smbprotocol.exceptions import SMBException

from filebridge.exceptions import ConfigurationError, ProviderConnectionError, ProviderError
from filebridge.storage.base import FileInfo, copy_stream, provider_errors
from filebridge.utils.logging import get_logger

logger = get_logger("filebridge.storage.smb")

_SMB_ERRORS = (OSError, SMBException, ValueError)


class SMBProvider:
    """Storage provider for one SMB share."""

    protocol = "smb"

    def __init__(self, host: str, port: int, credentials: dict[str, Any]):
        share = (credentials.get("share") or "").strip("\\/")
        if not share:
            raise ConfigurationError("SMB connection requires a 'share' credential")
        self.host = host
        self.port = int(port or 445)
        self.share = share
        self.username = credentials.get("username")
        self.password = credentials.get("password")
        self.domain = credentials.get("domain") or None
        self._connection_cache: dict[str, Any] = {}
        self._connected = False

    @property
    def _login(self) -> str | None:
        if self.username and self.domain:
            return f"{self.domain}\\{self.username}"
        return self.username

    def unc_path(self, path: str) -> str:
        """``/in/a.csv`` -> ``\\\\host\\share\\in\\a.csv``; ``/`` and ``""`` are the share root."""
        return "\\".join([f"\\\\{self.host}", self.share, *_segments(path)])

    def _kwargs(self) -> dict[str, Any]:
        return {"port": self.port, "connection_cache": self._connection_cache}

    def connect(self) -> None:
        if self._connected:
            return
        logger.info(f"Connecting to smb://{self.host}:{self.port}/{self.share} as {self._login}")
        try:
            smbclient.register_session(
                self.host,
                username=self._login,
                password=self.password,
                port=self.port,
                connection_cache=self._connection_cache,
            )
            # Touch the share so a bad share name fails here, not mid-run
            smbclient.stat(self.unc_path("/"), **self._kwargs())
        except _SMB_ERRORS as e:
            logger.error(f"SMB connection to {self.host}/{self.share} failed: {e}")
            self.disconnect()
            raise ProviderConnectionError(
                f"SMB connection to {self.host}/{self.share} failed: {e}",
                protocol=self.protocol,
                operation="connect",
            ) from e
        self._connected = True
        logger.info(f"Connected to smb://{self.host}/{self.share}")

    def disconnect(self) -> None:
        """Drop every session in this provider's cache. Never raises."""
        try:
            smbclient.reset_connection_cache(fail_on_error=False, connection_cache=self._connection_cache)
        except _SMB_ERRORS as e:
            logger.warning(f"Error during SMB disconnect from {self.host}: {e}")
        finally:
            self._connection_cache.clear()
            self._connected = False

    def _require_connected(self, operation: str) -> None:
        if not self._connected:
            raise ProviderError("SMB provider is not connected", protocol=self.protocol, operation=operation)

    def list_directory(self, path: str) -> list[FileInfo]:
        self._require_connected("list")
        result = []
        with provider_errors(self.protocol, "list", path, *_SMB_ERRORS):
            for entry in smbclient.scandir(self.unc_path(path), **self._kwargs()):
                if entry.name in (".", ".."):
                    continue
                info = entry.stat()
                mtime = getattr(info, "st_mtime", None)
                result.append(
                    FileInfo(
                        name=entry.name,
                        size=int(info.st_size or 0),
                        modified_at=datetime.fromtimestamp(mtime, tz=UTC) if mtime else None,
                        is_directory=entry.is_dir(),
                    )
                )
        logger.debug(f"Listed {path}: {len(result)} entries")
        return result

    def create_directory(self, path: str) -> None:
        self._require_connected("mkdir")
        if not _segments(path):
            return  # share root always exists
        with provider_errors(self.protocol, "mkdir", path, *_SMB_ERRORS):
            smbclient.makedirs(self.unc_path(path), exist_ok=True, **self._kwargs())

    def delete_file(self, path: str) -> None:
        self._require_connected("delete")
        with provider_errors(self.protocol, "delete", path, *_SMB_ERRORS):
            smbclient.remove(self.unc_path(path), **self._kwargs())

    def move_file(self, source_path: str, destination_path: str) -> None:
        self._require_connected("move")
        self.create_directory(_parent(destination_path))
        with provider_errors(self.protocol, "move", source_path, *_SMB_ERRORS):
            smbclient.rename(self.unc_path(source_path), self.unc_path(destination_path), **self._kwargs())

    def open_read(self, path: str) -> BinaryIO:
        self._require_connected("read")
        with provider_errors(self.protocol, "read", path, *_SMB_ERRORS):
            return smbclient.open_file(self.unc_path(path), mode="rb", **self._kwargs())

    def write_file(self, path: str, stream: BinaryIO) -> int:
        self._require_connected("write")
        self.create_directory(_parent(path))
        with provider_errors(self.protocol, "write", path, *_SMB_ERRORS):
            with smbclient.open_file(self.unc_path(path), mode="wb", **self._kwargs()) as handle:
                return copy_stream(stream, handle)

    def get_working_directory(self) -> str:
        # SMB has no per-session working directory; paths are share-relative
        return "/"

    def __enter__(self) -> SMBProvider:
        self.connect()
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: Any) -> None:
        self.disconnect()

    def __repr__(self) -> str:
        return f"SMBProvider(host='{self.host}', share='{self.share}')"


def _segments(path: str) -> list[str]:
    return [p for p in path.replace("\\", "/").split("/") if p and p != "."]


def _parent(path: str) -> str:
    return "/".join(_segments(path)[:-1])
