"""
Provider registry: build a storage provider from a persisted connection.

Pure factory; nothing touches the network until ``connect()``.
"""

from __future__ import annotations

from typing import Any

from filebridge.exceptions import UnsupportedProtocolError
from filebridge.models import Connection, ConnectionProtocol
from filebridge.storage.base import StorageProvider
from filebridge.storage.sftp import SFTPProvider
from filebridge.storage.smb import SMBProvider


def create_storage_provider(connection: Connection | dict[str, Any]) -> StorageProvider:
    """
    Construct the provider for a connection's protocol.

    Accepts a Connection or any mapping with ``protocol``, ``host``, ``port``
    and ``credentials`` keys.

    Raises:
        UnsupportedProtocolError: protocol is not ``sftp`` or ``smb``
        ConfigurationError: credentials do not fit the protocol
    """
    if isinstance(connection, Connection):
        protocol, host, port, credentials = (
            connection.protocol,
            connection.host,
            connection.port,
            connection.credentials,
        )
    else:
        protocol = connection.get("protocol", "")
        host = connection.get("host", "")
        port = connection.get("port", 0)
        credentials = connection.get("credentials") or {}

    if protocol == ConnectionProtocol.SFTP:
        return SFTPProvider(host, port or 22, credentials)
    if protocol == ConnectionProtocol.SMB:
        return SMBProvider(host, port or 445, credentials)
    raise UnsupportedProtocolError(str(protocol))
