"""CLI progress display for batch uploads.

This module provides a Rich-based progress bar that consumes the
``on_progress`` callback of ``TransferEngine.upload_all``.
"""

from typing import Optional

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)


class UploadProgressDisplay:
    """Rich-based progress display for a batch upload.

    Each progress event advances the bar by a fraction of the batch and
    replaces the description with the file currently being uploaded.
    """

    def __init__(self, total_files: int) -> None:
        self.total_files = total_files
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None
        self._started = 0

    def on_progress(self, increment: float, message: str) -> None:
        """Progress callback for ``TransferEngine.upload_all``."""
        if self._progress is None or self._task is None:
            return
        self._started += 1
        self._progress.update(
            self._task,
            advance=increment,
            description=message,
            file_info=f"{self._started}/{self.total_files} files",
        )

    def __enter__(self) -> "UploadProgressDisplay":
        """Enter context manager - start progress display."""
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("[cyan]{task.fields[file_info]}"),
            TimeElapsedColumn(),
            refresh_per_second=4,
        )
        self._progress.__enter__()
        self._task = self._progress.add_task(
            "Preparing upload...",
            total=1.0,
            file_info=f"0/{self.total_files} files",
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager - stop progress display."""
        if self._progress is not None:
            if self._task is not None:
                description = (
                    "Upload complete" if exc_type is None else "Upload interrupted"
                )
                self._progress.update(self._task, description=description)
            self._progress.__exit__(exc_type, exc_val, exc_tb)
            self._progress = None
            self._task = None
