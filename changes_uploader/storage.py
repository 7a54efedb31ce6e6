"""Key-value persistence for tracker state.

The tracker treats storage as an opaque ``get``/``set`` collaborator.
``JsonStateStore`` keeps all keys in a single JSON document in the user's
config directory, written through on every ``set``.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = Path.home() / ".config" / "changes-uploader" / "state.json"


class KeyValueStore(Protocol):
    """Minimal persistence interface used by the tracker."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...


class MemoryStore:
    """In-process store with no persistence."""

    def __init__(self, initial: Optional[dict] = None):
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value


class JsonStateStore:
    """Stores key-value state in a JSON file.

    Reads are best-effort: a missing, unreadable, or corrupt file yields
    an empty store. Write failures are logged and otherwise ignored.
    """

    def __init__(self, state_file: Optional[Path] = None):
        """Initialize the store.

        Args:
            state_file: Path of the JSON document. Defaults to
                       ~/.config/changes-uploader/state.json
        """
        self.state_file = Path(state_file) if state_file else DEFAULT_STATE_FILE
        self._data: dict[str, Any] = self._load()

    def _load(self) -> dict[str, Any]:
        if not self.state_file.exists():
            logger.debug(f"No state file at {self.state_file}")
            return {}

        try:
            with open(self.state_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load state from {self.state_file}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Ignoring state file with unexpected layout: {self.state_file}")
            return {}
        return data

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._save()

    def _save(self) -> None:
        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.state_file, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
            logger.debug(f"Saved state to {self.state_file}")
        except (OSError, TypeError) as e:
            logger.warning(f"Failed to save state: {e}")
