"""
SFTP storage provider (paramiko).
"""

from __future__ import annotations

import io
import posixpath
import stat
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, BinaryIO

import paramiko

from filebridge.exceptions import ProviderConnectionError, ProviderError
from filebridge.storage.base import FileInfo, copy_stream, provider_errors
from filebridge.utils.logging import get_logger

logger = get_logger("filebridge.storage.sftp")

_SFTP_ERRORS = (OSError, paramiko.SSHException)

# Key types tried, in order, when loading a PEM/OpenSSH private key from text
_KEY_CLASSES: tuple[type[paramiko.PKey], ...] = (paramiko.RSAKey, paramiko.Ed25519Key, paramiko.ECDSAKey)


@dataclass(frozen=True)
class SFTPConfig:
    host: str
    port: int = 22
    username: str | None = None
    password: str | None = None
    private_key: str | None = None
    passphrase: str | None = None
    connect_timeout_s: float = 20.0


class SFTPProvider:
    """
    Storage provider backed by one paramiko SFTP session.

    Construction does no I/O; the transport is opened by ``connect()``.
    """

    protocol = "sftp"

    def __init__(self, host: str, port: int, credentials: dict[str, Any]):
        self.host = host
        self.port = int(port or 22)
        self.credentials = credentials
        self._transport: paramiko.Transport | None = None
        self._client: paramiko.SFTPClient | None = None

    def _parse_config(self) -> SFTPConfig:
        creds = self.credentials
        return SFTPConfig(
            host=self.host,
            port=self.port,
            username=creds.get("username"),
            password=creds.get("password") or None,
            private_key=creds.get("private_key") or creds.get("privateKey") or None,
            passphrase=creds.get("passphrase") or None,
            connect_timeout_s=float(creds.get("connect_timeout_s", 20.0)),
        )

    @property
    def client(self) -> paramiko.SFTPClient:
        if self._client is None:
            raise ProviderError("SFTP provider is not connected", protocol=self.protocol, operation="client")
        return self._client

    def connect(self) -> None:
        if self._client is not None:
            return

        cfg = self._parse_config()
        if not cfg.host:
            raise ProviderConnectionError("SFTP connection missing host", protocol=self.protocol, operation="connect")

        logger.info(
            f"Connecting to sftp://{cfg.host}:{cfg.port} as {cfg.username} "
            f"(key={'yes' if cfg.private_key else 'no'}, password={'yes' if cfg.password else 'no'})"
        )
        transport: paramiko.Transport | None = None
        try:
            pkey = _load_private_key(cfg.private_key, cfg.passphrase) if cfg.private_key else None
            transport = paramiko.Transport((cfg.host, cfg.port))
            transport.banner_timeout = cfg.connect_timeout_s
            transport.auth_timeout = cfg.connect_timeout_s
            transport.connect(username=cfg.username, password=cfg.password, pkey=pkey)
            self._client = paramiko.SFTPClient.from_transport(transport)
            self._transport = transport
        except _SFTP_ERRORS as e:
            if transport is not None:
                transport.close()
            logger.error(f"SFTP connection to {cfg.host}:{cfg.port} failed: {e}")
            raise ProviderConnectionError(
                f"SFTP connection to {cfg.host}:{cfg.port} failed: {e}",
                protocol=self.protocol,
                operation="connect",
            ) from e
        logger.info(f"Connected to sftp://{cfg.host}:{cfg.port}")

    def disconnect(self) -> None:
        """Close SFTP client + underlying transport. Never raises."""
        try:
            if self._client is not None:
                self._client.close()
        except _SFTP_ERRORS as e:
            logger.warning(f"Error closing SFTP client for {self.host}: {e}")
        finally:
            self._client = None
        try:
            if self._transport is not None:
                self._transport.close()
        except _SFTP_ERRORS as e:
            logger.warning(f"Error closing SFTP transport for {self.host}: {e}")
        finally:
            self._transport = None

    def list_directory(self, path: str) -> list[FileInfo]:
        with provider_errors(self.protocol, "list", path, *_SFTP_ERRORS):
            entries = self.client.listdir_attr(path)
        result = []
        for attr in entries:
            if attr.filename in (".", ".."):
                continue
            mtime = getattr(attr, "st_mtime", None)
            result.append(
                FileInfo(
                    name=attr.filename,
                    size=int(attr.st_size or 0),
                    modified_at=datetime.fromtimestamp(mtime, tz=UTC) if mtime is not None else None,
                    is_directory=stat.S_ISDIR(attr.st_mode or 0),
                )
            )
        logger.debug(f"Listed {path}: {len(result)} entries")
        return result

    def create_directory(self, path: str) -> None:
        """mkdir -p; components that already exist are left alone."""
        with provider_errors(self.protocol, "mkdir", path, *_SFTP_ERRORS):
            current = "/" if path.startswith("/") else ""
            for part in [p for p in path.split("/") if p]:
                current = posixpath.join(current, part) if current else part
                try:
                    self.client.stat(current)
                except FileNotFoundError:
                    self.client.mkdir(current)

    def delete_file(self, path: str) -> None:
        with provider_errors(self.protocol, "delete", path, *_SFTP_ERRORS):
            self.client.remove(path)

    def move_file(self, source_path: str, destination_path: str) -> None:
        parent = posixpath.dirname(destination_path)
        if parent and parent != "/":
            self.create_directory(parent)
        with provider_errors(self.protocol, "move", source_path, *_SFTP_ERRORS):
            self.client.rename(source_path, destination_path)

    def open_read(self, path: str) -> BinaryIO:
        with provider_errors(self.protocol, "read", path, *_SFTP_ERRORS):
            handle = self.client.open(path, "rb")
            handle.prefetch()
        return handle  # type: ignore[return-value]

    def write_file(self, path: str, stream: BinaryIO) -> int:
        parent = posixpath.dirname(path)
        if parent and parent != "/":
            self.create_directory(parent)
        with provider_errors(self.protocol, "write", path, *_SFTP_ERRORS):
            with self.client.open(path, "wb") as handle:
                handle.set_pipelined(True)
                return copy_stream(stream, handle)  # type: ignore[arg-type]

    def get_working_directory(self) -> str:
        with provider_errors(self.protocol, "cwd", None, *_SFTP_ERRORS):
            return self.client.normalize(".")

    def __enter__(self) -> SFTPProvider:
        self.connect()
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: Any) -> None:
        self.disconnect()

    def __repr__(self) -> str:
        return f"SFTPProvider(host='{self.host}', port={self.port})"


def _load_private_key(text: str, passphrase: str | None) -> paramiko.PKey:
    """Load a private key from its PEM/OpenSSH text, trying each supported key type."""
    last_error: Exception | None = None
    for key_class in _KEY_CLASSES:
        try:
            return key_class.from_private_key(io.StringIO(text), password=passphrase)
        except paramiko.SSHException as e:
            last_error = e
    raise paramiko.SSHException(f"Unsupported or invalid private key: {last_error}")
