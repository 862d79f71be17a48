"""
Storage providers: one capability set over SFTP servers and SMB shares.
"""

from filebridge.storage.base import FileInfo, StorageProvider, get_working_directory, is_hidden, matches_filter
from filebridge.storage.registry import create_storage_provider
from filebridge.storage.sftp import SFTPProvider
from filebridge.storage.smb import SMBProvider

__all__ = [
    "FileInfo",
    "StorageProvider",
    "SFTPProvider",
    "SMBProvider",
    "create_storage_provider",
    "get_working_directory",
    "is_hidden",
    "matches_filter",
]
