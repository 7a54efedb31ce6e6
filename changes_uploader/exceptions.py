"""Exceptions raised by changes-uploader."""

from typing import Optional, Sequence


class UploaderError(Exception):
    """Base exception for all changes-uploader errors."""


class VcsCommandFailedError(UploaderError):
    """A version-control command could not be spawned or exited non-zero."""

    def __init__(
        self,
        args: Sequence[str],
        returncode: Optional[int] = None,
        stderr: str = "",
        message: Optional[str] = None,
    ):
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr
        if message is None:
            message = f"Command failed ({returncode}): {' '.join(self.command)}"
            if stderr.strip():
                message = f"{message}: {stderr.strip()}"
        super().__init__(message)


class ConfigError(UploaderError):
    """Invalid or missing configuration."""


class ConfigUnreadableError(ConfigError):
    """No candidate host configuration file could be read."""


class IncompleteCredentialsError(ConfigError):
    """The connection profile has no user name."""


class KeyFileMissingError(ConfigError):
    """The connection profile's private key file is unset or unreadable."""


class TransferError(UploaderError):
    """Opening a session or transferring a file failed."""
