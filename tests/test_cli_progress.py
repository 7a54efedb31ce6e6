"""Tests for the upload progress display."""

import pytest

from changes_uploader.cli_progress import UploadProgressDisplay


class TestUploadProgressDisplay:
    """Tests for UploadProgressDisplay."""

    def test_progress_advances_per_file(self):
        with UploadProgressDisplay(4) as display:
            display.on_progress(0.25, "Uploading a.py")
            display.on_progress(0.25, "Uploading b.py")

            task = display._progress.tasks[0]
            assert task.completed == pytest.approx(0.5)
            assert task.description == "Uploading b.py"
            assert task.fields["file_info"] == "2/4 files"

    def test_callback_outside_context_is_ignored(self):
        display = UploadProgressDisplay(2)

        display.on_progress(0.5, "Uploading a.py")

        assert display._started == 0

    def test_exception_propagates_and_stops_display(self):
        display = UploadProgressDisplay(1)

        with pytest.raises(RuntimeError):
            with display:
                raise RuntimeError("boom")

        assert display._progress is None
