"""
Tests for storage providers: registry dispatch, shared helpers, and the SFTP
and SMB providers against mocked client libraries.
"""

import io
import stat
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import paramiko
import pytest
from smbprotocol.exceptions import SMBException

from filebridge.exceptions import ConfigurationError, ProviderConnectionError, ProviderError, UnsupportedProtocolError
from filebridge.models import Connection
from filebridge.storage import SFTPProvider, SMBProvider, create_storage_provider, matches_filter
from filebridge.storage.base import copy_stream, get_working_directory, join_remote


class TestRegistry:
    def test_sftp(self):
        provider = create_storage_provider(Connection(id=1, name="s", protocol="sftp", host="h", port=0))

        assert isinstance(provider, SFTPProvider)
        assert provider.port == 22

    def test_smb_from_mapping(self):
        provider = create_storage_provider(
            {"protocol": "smb", "host": "fs01", "port": 4450, "credentials": {"share": "data"}}
        )

        assert isinstance(provider, SMBProvider)
        assert provider.port == 4450

    def test_unknown_protocol(self):
        with pytest.raises(UnsupportedProtocolError):
            create_storage_provider({"protocol": "ftp", "host": "h"})

    def test_construction_does_no_io(self):
        with patch("paramiko.Transport") as transport_cls:
            create_storage_provider({"protocol": "sftp", "host": "h"})
        transport_cls.assert_not_called()


class TestHelpers:
    @pytest.mark.parametrize(
        "name, pattern, expected",
        [
            ("a.csv", "*.csv", True),
            ("A.CSV", "*.csv", True),
            ("a.txt", "*.csv", False),
            ("report_01.csv", "report_??.csv", True),
            ("anything", "", True),
            ("anything", None, True),
        ],
    )
    def test_matches_filter(self, name, pattern, expected):
        assert matches_filter(name, pattern) is expected

    def test_copy_stream_counts_bytes(self):
        target = io.BytesIO()

        assert copy_stream(io.BytesIO(b"x" * 100), target, chunk_size=7) == 100
        assert target.getvalue() == b"x" * 100

    def test_join_remote(self):
        assert join_remote("/in", "a.csv") == "/in/a.csv"
        assert join_remote("/in/", "a.csv") == "/in/a.csv"

    def test_working_directory_fallback(self):
        assert get_working_directory(SimpleNamespace(protocol="x")) == "/"


def _attr(name, size=10, mode=stat.S_IFREG, mtime=1_700_000_000):
    return SimpleNamespace(filename=name, st_size=size, st_mode=mode, st_mtime=mtime)


class TestSFTPProvider:
    @pytest.fixture
    def connected(self):
        with patch("paramiko.Transport") as transport_cls, patch("paramiko.SFTPClient.from_transport") as from_transport:
            client = MagicMock()
            from_transport.return_value = client
            provider = SFTPProvider("sftp.example.com", 22, {"username": "u", "password": "p"})
            provider.connect()
            yield provider, client, transport_cls.return_value

    def test_connect_with_password(self, connected):
        provider, client, transport = connected

        transport.connect.assert_called_once_with(username="u", password="p", pkey=None)
        assert provider.client is client

    def test_connect_failure(self):
        with patch("paramiko.Transport") as transport_cls:
            transport_cls.return_value.connect.side_effect = paramiko.AuthenticationException("bad password")
            provider = SFTPProvider("sftp.example.com", 22, {"username": "u", "password": "x"})

            with pytest.raises(ProviderConnectionError, match="bad password"):
                provider.connect()
            transport_cls.return_value.close.assert_called_once()

    def test_operations_require_connection(self):
        with pytest.raises(ProviderError, match="not connected"):
            SFTPProvider("h", 22, {}).list_directory("/")

    def test_list_directory(self, connected):
        provider, client, _ = connected
        client.listdir_attr.return_value = [_attr("a.csv", 5), _attr("sub", 0, stat.S_IFDIR), _attr(".", 0, stat.S_IFDIR)]

        entries = provider.list_directory("/in")

        assert [(e.name, e.size, e.is_directory) for e in entries] == [("a.csv", 5, False), ("sub", 0, True)]
        assert entries[0].modified_at.timestamp() == 1_700_000_000

    def test_list_error_wrapped(self, connected):
        provider, client, _ = connected
        client.listdir_attr.side_effect = FileNotFoundError(2, "No such file")

        with pytest.raises(ProviderError) as exc_info:
            provider.list_directory("/missing")
        assert exc_info.value.operation == "list"
        assert exc_info.value.path == "/missing"

    def test_move_creates_parent(self, connected):
        provider, client, _ = connected
        client.stat.side_effect = FileNotFoundError()

        provider.move_file("/in/a.csv", "/in/done/a.csv")

        client.mkdir.assert_any_call("/in")
        client.mkdir.assert_any_call("/in/done")
        client.rename.assert_called_once_with("/in/a.csv", "/in/done/a.csv")

    def test_write_file(self, connected):
        provider, client, _ = connected
        handle = io.BytesIO()
        handle.set_pipelined = MagicMock()
        client.open.return_value.__enter__.return_value = handle

        written = provider.write_file("/out.csv", io.BytesIO(b"hello"))

        assert written == 5
        assert handle.getvalue() == b"hello"

    def test_working_directory(self, connected):
        provider, client, _ = connected
        client.normalize.return_value = "/home/u"

        assert provider.get_working_directory() == "/home/u"

    def test_disconnect_never_raises(self, connected):
        provider, client, transport = connected
        client.close.side_effect = OSError("socket closed")

        provider.disconnect()

        transport.close.assert_called_once()
        with pytest.raises(ProviderError):
            _ = provider.client

    def test_repr_hides_credentials(self):
        assert "p4ss" not in repr(SFTPProvider("h", 22, {"password": "p4ss"}))


class TestSMBProvider:
    @pytest.fixture
    def smbclient(self):
        with patch("filebridge.storage.smb.smbclient") as smbclient:
            yield smbclient

    def test_share_required(self):
        with pytest.raises(ConfigurationError):
            SMBProvider("fs01", 445, {"username": "u"})

    def test_unc_paths(self):
        provider = SMBProvider("fs01", 445, {"share": "/data/"})

        assert provider.unc_path("/in/a.csv") == "\\\\fs01\\data\\in\\a.csv"
        assert provider.unc_path("/") == "\\\\fs01\\data"
        assert provider.unc_path(".") == "\\\\fs01\\data"

    def test_connect_registers_domain_user(self, smbclient):
        provider = SMBProvider("fs01", 445, {"share": "data", "username": "u", "password": "p", "domain": "CORP"})
        provider.connect()

        kwargs = smbclient.register_session.call_args.kwargs
        assert kwargs["username"] == "CORP\\u"
        assert kwargs["port"] == 445

    def test_connect_failure(self, smbclient):
        smbclient.register_session.side_effect = SMBException("logon failure")
        provider = SMBProvider("fs01", 445, {"share": "data"})

        with pytest.raises(ProviderConnectionError, match="logon failure"):
            provider.connect()
        smbclient.reset_connection_cache.assert_called()

    def test_list_directory(self, smbclient):
        entry = MagicMock()
        entry.name = "a.csv"
        entry.is_dir.return_value = False
        entry.stat.return_value = SimpleNamespace(st_size=42, st_mtime=1_700_000_000)
        smbclient.scandir.return_value = [entry]
        provider = SMBProvider("fs01", 445, {"share": "data"})
        provider.connect()

        entries = provider.list_directory("/in")

        assert [(e.name, e.size) for e in entries] == [("a.csv", 42)]
        assert smbclient.scandir.call_args.args[0] == "\\\\fs01\\data\\in"

    def test_operations_require_connection(self, smbclient):
        with pytest.raises(ProviderError, match="not connected"):
            SMBProvider("fs01", 445, {"share": "data"}).delete_file("/a")

    def test_delete_error_wrapped(self, smbclient):
        smbclient.remove.side_effect = SMBException("sharing violation")
        provider = SMBProvider("fs01", 445, {"share": "data"})
        provider.connect()

        with pytest.raises(ProviderError) as exc_info:
            provider.delete_file("/in/a.csv")
        assert exc_info.value.protocol == "smb"

    def test_move_creates_parent(self, smbclient):
        provider = SMBProvider("fs01", 445, {"share": "data"})
        provider.connect()

        provider.move_file("/in/a.csv", "/archive/2024/a.csv")

        assert smbclient.makedirs.call_args.args[0] == "\\\\fs01\\data\\archive\\2024"
        assert smbclient.rename.call_args.args == ("\\\\fs01\\data\\in\\a.csv", "\\\\fs01\\data\\archive\\2024\\a.csv")

    def test_working_directory_is_share_root(self):
        assert SMBProvider("fs01", 445, {"share": "data"}).get_working_directory() == "/"
