import os

import pytest


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep CHANGES_UPLOADER_* variables of the caller out of the tests."""
    for name in list(os.environ):
        if name.upper().startswith("CHANGES_UPLOADER_"):
            monkeypatch.delenv(name)
