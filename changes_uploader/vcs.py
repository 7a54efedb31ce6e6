"""Git status adapter.

Runs git as an external process and parses its machine-readable output.
The adapter returns raw two-character status codes; classification into
staged/unstaged/untracked is done by the tracker.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple, Optional, Sequence

from .exceptions import VcsCommandFailedError

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Outcome of a finished external command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str = ""


class StatusEntry(NamedTuple):
    """One line of porcelain status output."""

    relative_path: str
    code: str


class ProcessRunner:
    """Runs external commands and raises on failure."""

    def run(
        self, command: str, args: Sequence[str], cwd: Optional[str] = None
    ) -> ProcessResult:
        """Run ``command`` with ``args`` in ``cwd``.

        Raises:
            VcsCommandFailedError: If the process cannot be spawned or exits
                with a non-zero code
        """
        cmd = [command, *args]
        logger.debug("Running %s (cwd=%s)", " ".join(cmd), cwd)
        try:
            completed = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                check=False,
            )
        except OSError as e:
            raise VcsCommandFailedError(
                cmd, message=f"Failed to run {' '.join(cmd)}: {e}"
            ) from e

        if completed.returncode != 0:
            logger.debug(
                "Command exited %d: %s", completed.returncode, completed.stderr.strip()
            )
            raise VcsCommandFailedError(cmd, completed.returncode, completed.stderr)

        return ProcessResult(
            args=tuple(cmd),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )


def _unquote_path(path: str) -> str:
    """Undo git's C-style quoting of paths with special characters."""
    if len(path) < 2 or not (path.startswith('"') and path.endswith('"')):
        return path
    inner = path[1:-1]
    try:
        return (
            inner.encode("latin-1")
            .decode("unicode_escape")
            .encode("latin-1")
            .decode("utf-8")
        )
    except (UnicodeEncodeError, UnicodeDecodeError):
        return inner


def parse_porcelain_line(line: str) -> Optional[StatusEntry]:
    """Parse one ``git status --porcelain`` line.

    The status code is the fixed two-character prefix, kept verbatim
    (a leading space is significant). Rename and copy entries yield the
    destination path.

    Examples:
        >>> parse_porcelain_line(" M src/app.py")
        StatusEntry(relative_path='src/app.py', code=' M')
        >>> parse_porcelain_line("R  old.py -> new.py")
        StatusEntry(relative_path='new.py', code='R ')
    """
    if len(line.strip()) == 0 or len(line) < 4:
        return None

    code = line[:2]
    path = line[3:].rstrip("\r\n")
    if code[0] in "RC" and " -> " in path:
        path = path.split(" -> ", 1)[1]
    path = _unquote_path(path.strip())
    if not path:
        return None
    return StatusEntry(relative_path=path, code=code)


class GitStatusAdapter:
    """Queries a git working tree for its modified files."""

    def __init__(
        self, runner: Optional[ProcessRunner] = None, executable: str = "git"
    ):
        self.runner = runner or ProcessRunner()
        self.executable = executable

    def _git(self, cwd: str, *args: str) -> str:
        return self.runner.run(self.executable, args, cwd=cwd).stdout

    def find_repository_root(self, start_path: str) -> Optional[str]:
        """Return the canonical root of the repository enclosing ``start_path``.

        Returns:
            Repository root, or None if ``start_path`` is not inside a
            git working tree
        """
        try:
            output = self._git(start_path, "rev-parse", "--show-toplevel")
        except VcsCommandFailedError as e:
            logger.debug(f"No repository at {start_path}: {e}")
            return None

        root = output.strip()
        if not root:
            return None
        return os.path.realpath(root)

    def scan_status(self, repo_root: str) -> list[StatusEntry]:
        """List changed paths in ``repo_root`` with their raw status codes.

        Raises:
            VcsCommandFailedError: If git fails
        """
        output = self._git(
            repo_root, "status", "--porcelain", "--untracked-files=all"
        )
        entries = []
        for line in output.splitlines():
            entry = parse_porcelain_line(line)
            if entry is not None:
                entries.append(entry)
        return entries

    def list_last_commit_files(self, repo_root: str) -> list[str]:
        """List paths (relative to ``repo_root``) touched by the HEAD commit.

        Raises:
            VcsCommandFailedError: If git fails
        """
        output = self._git(
            repo_root, "diff-tree", "--no-commit-id", "--name-only", "-r", "HEAD"
        )
        return [
            _unquote_path(line.strip()) for line in output.splitlines() if line.strip()
        ]

    def hooks_dir(self, repo_root: str) -> Path:
        """Directory git runs hooks from for ``repo_root``.

        Raises:
            VcsCommandFailedError: If git fails
        """
        output = self._git(repo_root, "rev-parse", "--git-path", "hooks").strip()
        path = Path(output)
        if not path.is_absolute():
            path = Path(repo_root) / path
        return path
