"""Tests for the SFTP transport."""

import stat
from unittest.mock import Mock, call, patch

import paramiko
import pytest

from changes_uploader.exceptions import TransferError
from changes_uploader.models import ConnectionProfile
from changes_uploader.transport import SftpSession, SftpTransport, open_session


def _dir_attrs():
    attrs = paramiko.SFTPAttributes()
    attrs.st_mode = stat.S_IFDIR | 0o755
    return attrs


class TestSftpSession:
    """Tests for SftpSession."""

    @pytest.fixture
    def sftp(self):
        return Mock(spec=paramiko.SFTPClient)

    @pytest.fixture
    def session(self, sftp):
        return SftpSession(Mock(spec=paramiko.SSHClient), sftp)

    def test_make_directory_creates_missing_segments(self, session, sftp):
        existing = {"/srv"}

        def fake_stat(path):
            if path in existing:
                return _dir_attrs()
            raise FileNotFoundError(path)

        sftp.stat.side_effect = fake_stat

        session.make_directory("/srv/app/src")

        assert sftp.mkdir.call_args_list == [call("/srv/app"), call("/srv/app/src")]

    def test_make_directory_existing_is_noop(self, session, sftp):
        sftp.stat.return_value = _dir_attrs()

        session.make_directory("/srv/app/")

        sftp.mkdir.assert_not_called()

    def test_make_directory_relative_path(self, session, sftp):
        sftp.stat.side_effect = FileNotFoundError

        session.make_directory("uploads/today")

        assert sftp.mkdir.call_args_list == [call("uploads"), call("uploads/today")]

    def test_make_directory_non_recursive(self, session, sftp):
        sftp.stat.side_effect = FileNotFoundError

        session.make_directory("/srv/app/src", recursive=False)

        sftp.mkdir.assert_called_once_with("/srv/app/src")

    def test_make_directory_error_propagates(self, session, sftp):
        sftp.stat.side_effect = FileNotFoundError
        sftp.mkdir.side_effect = PermissionError("denied")

        with pytest.raises(PermissionError):
            session.make_directory("/root/secret")

    def test_put_file(self, session, sftp):
        session.put_file("/tmp/a.txt", "/srv/a.txt")

        sftp.put.assert_called_once_with("/tmp/a.txt", "/srv/a.txt")

    def test_close_closes_client_even_if_sftp_fails(self, sftp):
        client = Mock(spec=paramiko.SSHClient)
        sftp.close.side_effect = OSError("socket closed")
        session = SftpSession(client, sftp)

        with pytest.raises(OSError):
            session.close()

        client.close.assert_called_once()


class TestSftpTransport:
    """Tests for SftpTransport.connect."""

    @pytest.fixture
    def profile(self):
        return ConnectionProfile(
            host_name="example.com", user="deploy", private_key_path="/keys/id"
        )

    @patch("changes_uploader.transport.paramiko.SSHClient")
    def test_connect_defaults_port(self, mock_client_cls, profile):
        client = mock_client_cls.return_value

        session = SftpTransport(connect_timeout=5).connect(profile)

        assert isinstance(session, SftpSession)
        kwargs = client.connect.call_args[1]
        assert kwargs["hostname"] == "example.com"
        assert kwargs["port"] == 22
        assert kwargs["username"] == "deploy"
        assert kwargs["key_filename"] == "/keys/id"
        assert kwargs["timeout"] == 5
        client.open_sftp.assert_called_once()

    @patch("changes_uploader.transport.paramiko.SSHClient")
    def test_connect_uses_profile_port(self, mock_client_cls, profile):
        client = mock_client_cls.return_value
        custom = ConnectionProfile(
            host_name="example.com", user="u", port=2222, private_key_path="/k"
        )

        SftpTransport().connect(custom)

        assert client.connect.call_args[1]["port"] == 2222

    @patch("changes_uploader.transport.paramiko.SSHClient")
    def test_auth_failure_raises_transfer_error(self, mock_client_cls, profile):
        client = mock_client_cls.return_value
        client.connect.side_effect = paramiko.AuthenticationException("bad key")

        with pytest.raises(TransferError, match="bad key"):
            SftpTransport().connect(profile)

        client.close.assert_called_once()

    @patch("changes_uploader.transport.paramiko.SSHClient")
    def test_network_failure_raises_transfer_error(self, mock_client_cls, profile):
        client = mock_client_cls.return_value
        client.connect.side_effect = OSError("Connection refused")

        with pytest.raises(TransferError, match="example.com:22"):
            SftpTransport().connect(profile)

    def test_missing_host_name(self):
        with pytest.raises(TransferError, match="No host name"):
            SftpTransport().connect(ConnectionProfile(user="u"))


class TestOpenSession:
    """Tests for open_session."""

    def test_returns_session(self):
        transport = Mock()

        assert open_session(transport, ConnectionProfile()) is transport.connect.return_value

    def test_wraps_unexpected_errors(self):
        transport = Mock()
        transport.connect.side_effect = ValueError("boom")

        with pytest.raises(TransferError, match="Failed to open session: boom"):
            open_session(transport, ConnectionProfile())

    def test_transfer_error_passes_through(self):
        transport = Mock()
        transport.connect.side_effect = TransferError("original")

        with pytest.raises(TransferError, match="^original$"):
            open_session(transport, ConnectionProfile())
