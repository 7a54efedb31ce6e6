"""SSH/SFTP transport used by the transfer engine."""

import logging
import posixpath
import stat
from typing import Protocol

import paramiko

from .exceptions import TransferError
from .models import ConnectionProfile

logger = logging.getLogger(__name__)

DEFAULT_SSH_PORT = 22


class Session(Protocol):
    """One open connection to a remote host."""

    def make_directory(self, path: str, recursive: bool = True) -> None: ...

    def put_file(self, local_path: str, remote_path: str) -> None: ...

    def close(self) -> None: ...


class Transport(Protocol):
    """Factory for remote sessions."""

    def connect(self, profile: ConnectionProfile) -> Session: ...


class SftpSession:
    """Session backed by a paramiko SSH client and its SFTP channel."""

    def __init__(self, client: paramiko.SSHClient, sftp: paramiko.SFTPClient):
        self._client = client
        self._sftp = sftp

    def _is_dir(self, path: str) -> bool:
        try:
            attrs = self._sftp.stat(path)
        except FileNotFoundError:
            return False
        return attrs.st_mode is not None and stat.S_ISDIR(attrs.st_mode)

    def make_directory(self, path: str, recursive: bool = True) -> None:
        """Create ``path`` on the remote host; existing directories are fine.

        Args:
            path: Remote directory path (forward slashes)
            recursive: Also create missing parent directories
        """
        path = path.rstrip("/") or "/"
        if not recursive:
            if not self._is_dir(path):
                self._sftp.mkdir(path)
            return

        segments = [s for s in path.split("/") if s]
        current = "/" if path.startswith("/") else ""
        for segment in segments:
            current = posixpath.join(current, segment) if current else segment
            if self._is_dir(current):
                continue
            logger.debug(f"Creating remote directory {current}")
            self._sftp.mkdir(current)

    def put_file(self, local_path: str, remote_path: str) -> None:
        self._sftp.put(local_path, remote_path)

    def close(self) -> None:
        try:
            self._sftp.close()
        finally:
            self._client.close()


class SftpTransport:
    """Opens SFTP sessions with key-file authentication."""

    def __init__(self, connect_timeout: float = 20.0):
        self.connect_timeout = connect_timeout

    def connect(self, profile: ConnectionProfile) -> SftpSession:
        """Open a session for ``profile``.

        Raises:
            TransferError: If the connection or SFTP channel cannot be opened
        """
        if not profile.host_name:
            raise TransferError("No host name to connect to")

        port = profile.port or DEFAULT_SSH_PORT
        logger.info(f"Connecting to {profile.user}@{profile.host_name}:{port}")

        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=profile.host_name,
                port=port,
                username=profile.user,
                key_filename=profile.private_key_path,
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
            )
            sftp = client.open_sftp()
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise TransferError(
                f"Failed to connect to {profile.host_name}:{port}: {e}"
            ) from e

        logger.debug("SFTP session opened")
        return SftpSession(client, sftp)


def open_session(
    transport: Transport, profile: ConnectionProfile
) -> Session:
    """Open a session, wrapping unexpected errors in TransferError."""
    try:
        return transport.connect(profile)
    except TransferError:
        raise
    except Exception as e:
        raise TransferError(f"Failed to open session: {e}") from e
