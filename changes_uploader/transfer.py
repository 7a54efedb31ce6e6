"""Transfer engine for uploading files to a remote host over one session."""

import logging
import os
import posixpath
import threading
import time
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence, Union

from .exceptions import (
    IncompleteCredentialsError,
    KeyFileMissingError,
    TransferError,
)
from .models import BatchSummary, ConnectionProfile, UploadOutcome, canonical_path
from .output import OutputFormatter
from .transport import Session, SftpTransport, Transport, open_session

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
ProgressCallback = Callable[[float, str], None]
UploadItem = tuple[PathLike, Optional[PathLike]]


class CancellationToken:
    """Cooperative cancellation flag checked between files."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


def find_workspace_root(
    local_path: PathLike, workspaces: Iterable[PathLike]
) -> Optional[Path]:
    """Return the deepest workspace directory containing ``local_path``."""
    path = Path(canonical_path(local_path))
    best: Optional[Path] = None
    for workspace in workspaces:
        root = Path(os.path.realpath(workspace))
        if path == root or root in path.parents:
            if best is None or len(root.parts) > len(best.parts):
                best = root
    return best


def remote_path_for(
    local_path: PathLike, workspace_root: PathLike, remote_root: str
) -> str:
    """Map a local file to its path under ``remote_root``.

    The path of ``local_path`` relative to ``workspace_root`` is appended to
    ``remote_root`` using forward slashes whatever the local separator.

    Raises:
        TransferError: If ``local_path`` is not inside ``workspace_root``

    Examples:
        >>> remote_path_for("/work/app/src/main.py", "/work/app", "/srv/app")
        '/srv/app/src/main.py'
    """
    relative = os.path.relpath(str(local_path), str(workspace_root))
    relative = relative.replace(os.sep, "/").replace("\\", "/")
    if relative == ".." or relative.startswith("../") or os.path.isabs(relative):
        raise TransferError(f"{local_path} is not inside workspace {workspace_root}")
    root = remote_root.replace("\\", "/")
    return posixpath.join(root, relative)


class TransferEngine:
    """Uploads local files to a remote root directory."""

    def __init__(
        self,
        transport: Optional[Transport] = None,
        output: Optional[OutputFormatter] = None,
    ):
        """Initialize transfer engine.

        Args:
            transport: Session factory (SFTP by default)
            output: Output formatter for user-visible errors
        """
        self.transport = transport or SftpTransport()
        self.output = output

    def validate_profile(self, profile: ConnectionProfile) -> None:
        """Check credentials before any connection is attempted.

        Raises:
            IncompleteCredentialsError: If no user name is configured
            KeyFileMissingError: If the private key is unset or unreadable
        """
        if not profile.user:
            raise IncompleteCredentialsError("SSH configuration has no user name")
        if not profile.private_key_path:
            raise KeyFileMissingError("SSH configuration has no identity file")
        key_path = Path(profile.private_key_path)
        if not key_path.is_file() or not os.access(key_path, os.R_OK):
            raise KeyFileMissingError(f"Private key file not found: {key_path}")

    def _close(self, session: Session) -> None:
        try:
            session.close()
            logger.debug("Session closed")
        except Exception as e:
            logger.warning(f"Error while closing session: {e}")

    def _transfer(
        self,
        session: Session,
        local_path: PathLike,
        remote_root: str,
        workspace_root: Optional[PathLike],
    ) -> str:
        if workspace_root is None:
            raise TransferError(f"Cannot determine workspace for {local_path}")
        if not Path(local_path).is_file():
            raise TransferError(f"Local file does not exist: {local_path}")

        remote_path = remote_path_for(local_path, workspace_root, remote_root)
        logger.debug(f"Local: {local_path} -> remote: {remote_path}")

        remote_dir = posixpath.dirname(remote_path)
        if remote_dir:
            try:
                session.make_directory(remote_dir, recursive=True)
            except Exception as e:
                logger.warning(f"Could not create remote directory {remote_dir}: {e}")

        start = time.time()
        try:
            session.put_file(str(local_path), remote_path)
        except TransferError:
            raise
        except Exception as e:
            raise TransferError(f"Failed to upload {local_path}: {e}") from e

        logger.debug(f"Upload of {local_path} took {time.time() - start:.2f}s")
        return remote_path

    def upload_one(
        self,
        profile: ConnectionProfile,
        local_path: PathLike,
        remote_root: str,
        workspace_root: Optional[PathLike],
        session: Optional[Session] = None,
    ) -> str:
        """Upload a single file.

        Without ``session`` the profile is validated and a session is
        opened and closed around the transfer. A supplied session is used
        as is and left open.

        Returns:
            Remote path the file was written to

        Raises:
            IncompleteCredentialsError: Profile has no user
            KeyFileMissingError: Profile's key file is missing
            TransferError: Session could not be opened or the upload failed
        """
        if session is not None:
            return self._transfer(session, local_path, remote_root, workspace_root)

        self.validate_profile(profile)
        if not Path(local_path).is_file():
            raise TransferError(f"Local file does not exist: {local_path}")

        own_session = open_session(self.transport, profile)
        try:
            remote_path = self._transfer(
                own_session, local_path, remote_root, workspace_root
            )
        finally:
            self._close(own_session)

        logger.info(f"Uploaded {local_path} -> {remote_path}")
        return remote_path

    def upload_all(
        self,
        items: Sequence[UploadItem],
        profile: ConnectionProfile,
        remote_root: str,
        on_progress: Optional[ProgressCallback] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> BatchSummary:
        """Upload ``items`` in order over one session.

        A failing file is recorded and the batch continues. Cancellation is
        checked before each file; files not yet started are left out of the
        summary. The session is closed on every exit path.

        Args:
            items: ``(local_path, workspace_root)`` pairs
            profile: Resolved connection profile
            remote_root: Remote directory mirroring the workspace roots
            on_progress: Called before each file with ``(1 / total, label)``
            cancellation: Token polled between files

        Returns:
            BatchSummary of the processed files

        Raises:
            IncompleteCredentialsError: Profile has no user
            KeyFileMissingError: Profile's key file is missing
            TransferError: Session could not be opened
        """
        self.validate_profile(profile)

        summary = BatchSummary()
        total = len(items)
        if total == 0:
            return summary

        session = open_session(self.transport, profile)
        try:
            for local_path, workspace_root in items:
                if cancellation is not None and cancellation.is_cancelled:
                    logger.info("Upload cancelled by user")
                    summary.cancelled = True
                    break

                name = Path(local_path).name
                if on_progress is not None:
                    on_progress(1 / total, f"Uploading {name}")

                try:
                    remote_path = self._transfer(
                        session, local_path, remote_root, workspace_root
                    )
                except Exception as e:
                    logger.warning(f"Failed to upload {name}: {e}")
                    if self.output is not None:
                        self.output.error(f"Failed to upload {name}: {e}")
                    summary.outcomes.append(
                        UploadOutcome(str(local_path), False, error_message=str(e))
                    )
                    continue

                logger.info(f"Uploaded {name}")
                summary.outcomes.append(
                    UploadOutcome(str(local_path), True, remote_path=remote_path)
                )
        finally:
            self._close(session)

        logger.info(
            f"Batch upload finished: {summary.succeeded_count}/{total} succeeded"
            + (" (cancelled)" if summary.cancelled else "")
        )
        return summary
