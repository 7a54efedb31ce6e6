"""Change-set tracking for modified files in git working trees.

The tracker owns the persisted list of files with uncommitted changes.
``refresh`` merges the current ``git status`` of every workspace into the
list, ``on_commit`` drops files that were just committed and ``remove``
drops a single file on request. Files that stop appearing in ``git status``
are kept until they are committed or removed explicitly.
"""

from __future__ import annotations

import itertools
import logging
import os
import threading
from dataclasses import replace
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from .exceptions import VcsCommandFailedError
from .models import FileStatus, TrackedFile, canonical_path
from .output import OutputFormatter
from .storage import KeyValueStore
from .vcs import GitStatusAdapter

logger = logging.getLogger(__name__)

STATE_KEY = "trackedFiles"

# Checked in order against the start of the raw two-character status code.
STATUS_PREFIXES: tuple[tuple[str, FileStatus], ...] = (
    ("A", FileStatus.STAGED),
    ("M", FileStatus.STAGED),
    ("?", FileStatus.UNTRACKED),
)

Listener = Callable[[list[TrackedFile]], None]


def classify_status(code: str) -> FileStatus:
    """Map a raw status code to a FileStatus.

    Examples:
        >>> classify_status("M ")
        <FileStatus.STAGED: 'staged'>
        >>> classify_status("??")
        <FileStatus.UNTRACKED: 'untracked'>
        >>> classify_status(" M")
        <FileStatus.UNSTAGED: 'unstaged'>
    """
    for prefix, status in STATUS_PREFIXES:
        if code.startswith(prefix):
            return status
    return FileStatus.UNSTAGED


class ChangeSetTracker:
    """Maintains a deduplicated, persisted set of modified files."""

    def __init__(
        self,
        store: KeyValueStore,
        workspaces: Iterable[Union[str, Path]] = (),
        adapter: Optional[GitStatusAdapter] = None,
        output: Optional[OutputFormatter] = None,
    ):
        """Initialize the tracker and load the persisted set.

        Args:
            store: Key-value persistence
            workspaces: Workspace root directories to scan
            adapter: Git adapter (a default one is created if omitted)
            output: Optional sink for user-visible notifications
        """
        self.store = store
        self.workspaces = [os.path.realpath(w) for w in workspaces]
        self.adapter = adapter or GitStatusAdapter()
        self.output = output

        self._files: dict[str, TrackedFile] = {}
        self._repositories: dict[str, str] = {}
        self._listeners: dict[int, Listener] = {}
        self._handles = itertools.count(1)
        self._lock = threading.Lock()
        self._refresh_guard = threading.Lock()

        self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        stored = self.store.get(STATE_KEY)
        if stored is None:
            return
        if not isinstance(stored, list):
            logger.warning("Ignoring stored tracked files: unexpected format")
            return

        files: dict[str, TrackedFile] = {}
        try:
            for item in stored:
                tracked = TrackedFile.from_dict(item)
                files.setdefault(tracked.file_path, tracked)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Ignoring stored tracked files: {e}")
            return

        self._files = files
        logger.debug(f"Loaded {len(files)} tracked file(s)")

    def _save(self) -> None:
        self.store.set(STATE_KEY, [f.to_dict() for f in self._files.values()])

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list(self) -> list[TrackedFile]:
        """Return copies of the tracked entries."""
        return [replace(f) for f in self._files.values()]

    def is_tracked(self, file_path: Union[str, Path]) -> bool:
        return canonical_path(file_path) in self._files

    @property
    def repositories(self) -> dict[str, str]:
        """Workspace root to repository root mapping from the last scan."""
        return dict(self._repositories)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, callback: Listener) -> int:
        """Subscribe to change notifications.

        Returns:
            Handle to pass to ``remove_listener``
        """
        handle = next(self._handles)
        self._listeners[handle] = callback
        return handle

    def remove_listener(self, handle: int) -> bool:
        return self._listeners.pop(handle, None) is not None

    def notify(self) -> None:
        """Invoke every listener, in registration order, with a snapshot."""
        for handle, callback in list(self._listeners.items()):
            try:
                callback(self.list())
            except Exception as e:
                logger.warning(f"Listener {handle} failed: {e}")

    def _notify_user(self, kind: str, message: str) -> None:
        if self.output is not None:
            self.output.notify(kind, message)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _resolve_repositories(self) -> None:
        self._repositories = {}
        for workspace in self.workspaces:
            repo_root = self.adapter.find_repository_root(workspace)
            if repo_root:
                logger.debug(f"Workspace {workspace} is in repository {repo_root}")
                self._repositories[workspace] = repo_root
            else:
                logger.debug(f"No repository found for {workspace}")

    def _scan_repository(self, repo_root: str) -> int:
        entries = self.adapter.scan_status(repo_root)
        count = 0
        for entry in entries:
            path = Path(canonical_path(os.path.join(repo_root, entry.relative_path)))
            if not path.is_file():
                continue

            status = classify_status(entry.code)
            existing = self._files.get(str(path))
            if existing is not None:
                existing.status = status
                existing.last_modified = path.stat().st_mtime
            else:
                self._files[str(path)] = TrackedFile.from_path(path, status)
            count += 1
        return count

    def refresh(self) -> list[TrackedFile]:
        """Merge the current git status of all workspaces into the set.

        Entries are inserted or updated, never removed. A refresh issued
        while another is running is dropped.

        Returns:
            Snapshot of the tracked set after the refresh
        """
        if not self._refresh_guard.acquire(blocking=False):
            logger.debug("Refresh already in progress, skipping")
            return self.list()

        try:
            with self._lock:
                if not self.workspaces:
                    logger.info("No workspace folders configured")
                else:
                    self._resolve_repositories()
                    if not self._repositories:
                        logger.info("No git repository found in any workspace")

                    for repo_root in dict.fromkeys(self._repositories.values()):
                        try:
                            found = self._scan_repository(repo_root)
                            logger.debug(f"{repo_root}: {found} modified file(s)")
                        except (VcsCommandFailedError, OSError) as e:
                            logger.warning(f"Failed to scan {repo_root}: {e}")
                            self._notify_user("warning", f"Failed to scan {repo_root}: {e}")

                logger.info(f"Tracking {len(self._files)} file(s)")
                self._save()
            self.notify()
        finally:
            self._refresh_guard.release()

        return self.list()

    def on_commit(self, repo_root: Optional[Union[str, Path]] = None) -> int:
        """Drop tracked files that the latest commit touched.

        Args:
            repo_root: Repository that was committed to. If omitted, every
                repository known from the workspaces is checked.

        Returns:
            Number of entries removed
        """
        with self._lock:
            if repo_root is not None:
                roots = [os.path.realpath(repo_root)]
            else:
                if not self._repositories:
                    self._resolve_repositories()
                roots = list(dict.fromkeys(self._repositories.values()))

            removed = 0
            for root in roots:
                try:
                    committed = self.adapter.list_last_commit_files(root)
                except VcsCommandFailedError as e:
                    logger.warning(f"Failed to read last commit in {root}: {e}")
                    continue

                committed_paths = {
                    canonical_path(os.path.join(root, name)) for name in committed
                }
                for file_path in list(self._files):
                    if file_path in committed_paths:
                        del self._files[file_path]
                        removed += 1

            logger.info(f"Removed {removed} committed file(s)")
            self._save()
        self.notify()
        return removed

    def remove(self, file_path: Union[str, Path]) -> bool:
        """Stop tracking ``file_path``.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            removed = self._files.pop(canonical_path(file_path), None)
            if removed is None:
                return False
            self._save()
        self.notify()
        return True
