"""Data models for tracked files and upload results."""

import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union


def canonical_path(path: Union[str, Path]) -> str:
    """Absolute path with symlinked parent directories resolved.

    The last component is kept as written, so a symlinked file is tracked
    under its own name rather than its target's.
    """
    absolute = os.path.abspath(str(path))
    parent, name = os.path.split(absolute)
    if not name:
        return absolute
    return os.path.join(os.path.realpath(parent), name)


class FileStatus(str, Enum):
    """Three-state classification of a file's version-control status."""

    STAGED = "staged"
    UNSTAGED = "unstaged"
    UNTRACKED = "untracked"

    @classmethod
    def from_value(cls, value: Any) -> "FileStatus":
        """Parse a stored status string, defaulting to ``UNSTAGED``."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNSTAGED


@dataclass
class TrackedFile:
    """A file the tracker currently believes has uncommitted changes."""

    file_path: str
    """Absolute, canonical path (unique within the tracked set)"""

    file_name: str
    """Base name, used for display only"""

    status: FileStatus = FileStatus.UNSTAGED
    """Classification of the last observed status code"""

    last_modified: float = 0.0
    """Last observed modification time (Unix timestamp)"""

    @classmethod
    def from_path(cls, file_path: Path, status: FileStatus) -> "TrackedFile":
        """Create a TrackedFile from a file on disk.

        Args:
            file_path: Absolute path to an existing file
            status: Status classification

        Returns:
            TrackedFile instance
        """
        stat = file_path.stat()
        return cls(
            file_path=str(file_path),
            file_name=file_path.name,
            status=status,
            last_modified=stat.st_mtime,
        )

    def to_dict(self) -> dict:
        """Convert to a plain dictionary for persistence."""
        return {
            "filePath": self.file_path,
            "fileName": self.file_name,
            "status": self.status.value,
            "lastModified": self.last_modified,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TrackedFile":
        """Create TrackedFile from a persisted dictionary.

        Raises:
            KeyError: If ``filePath`` is missing
            TypeError: If ``data`` is not a mapping
            ValueError: If ``lastModified`` is not numeric
        """
        file_path = data["filePath"]
        if not isinstance(file_path, str) or not file_path:
            raise ValueError(f"Invalid filePath: {file_path!r}")
        return cls(
            file_path=file_path,
            file_name=data.get("fileName") or os.path.basename(file_path),
            status=FileStatus.from_value(data.get("status")),
            last_modified=float(data.get("lastModified") or 0.0),
        )


@dataclass(frozen=True)
class ConnectionProfile:
    """Connection parameters resolved from a host alias block."""

    host_name: Optional[str] = None
    user: Optional[str] = None
    port: Optional[int] = None
    private_key_path: Optional[str] = None

    def is_empty(self) -> bool:
        return (
            self.host_name is None
            and self.user is None
            and self.port is None
            and self.private_key_path is None
        )

    def with_fallback_host(self, host: str) -> "ConnectionProfile":
        """Return a copy whose host name falls back to ``host``."""
        if self.host_name:
            return self
        return replace(self, host_name=host)


@dataclass
class UploadOutcome:
    """Result of attempting to upload one file."""

    file_path: str
    succeeded: bool
    error_message: Optional[str] = None
    remote_path: Optional[str] = None


@dataclass
class BatchSummary:
    """Aggregate result of a batch upload over one session."""

    outcomes: list[UploadOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def succeeded_count(self) -> int:
        return sum(1 for o in self.outcomes if o.succeeded)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.succeeded)

    @property
    def processed_count(self) -> int:
        return len(self.outcomes)

    def to_dict(self) -> dict:
        return {
            "succeeded": self.succeeded_count,
            "failed": self.failed_count,
            "cancelled": self.cancelled,
            "files": [
                {
                    "path": o.file_path,
                    "remote_path": o.remote_path,
                    "succeeded": o.succeeded,
                    "error": o.error_message,
                }
                for o in self.outcomes
            ],
        }
