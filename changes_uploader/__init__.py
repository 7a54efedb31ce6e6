"""Changes Uploader - track modified git files and upload them over SFTP."""

__version__ = "0.1.0"

from .exceptions import (  # noqa: E402
    ConfigError,
    ConfigUnreadableError,
    IncompleteCredentialsError,
    KeyFileMissingError,
    TransferError,
    UploaderError,
    VcsCommandFailedError,
)
from .models import (  # noqa: E402
    BatchSummary,
    ConnectionProfile,
    FileStatus,
    TrackedFile,
    UploadOutcome,
)
from .ssh_config import HostConfigResolver, parse_host_config  # noqa: E402
from .tracker import ChangeSetTracker, classify_status  # noqa: E402
from .transfer import CancellationToken, TransferEngine  # noqa: E402
from .vcs import GitStatusAdapter  # noqa: E402

__all__ = [
    "__version__",
    "ChangeSetTracker",
    "GitStatusAdapter",
    "HostConfigResolver",
    "TransferEngine",
    "CancellationToken",
    "TrackedFile",
    "FileStatus",
    "ConnectionProfile",
    "UploadOutcome",
    "BatchSummary",
    "classify_status",
    "parse_host_config",
    "UploaderError",
    "VcsCommandFailedError",
    "ConfigError",
    "ConfigUnreadableError",
    "IncompleteCredentialsError",
    "KeyFileMissingError",
    "TransferError",
]
