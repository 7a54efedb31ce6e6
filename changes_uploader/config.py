"""Configuration loading for changes-uploader.

Settings are merged from, lowest to highest precedence: the JSON config
file, ``CHANGES_UPLOADER_*`` environment variables and explicit overrides
(command line options).
"""

import json
import logging
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from pydantic import Field, ValidationError, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "changes-uploader"
DEFAULT_CONFIG_FILE = CONFIG_DIR / "config.json"
ENV_PREFIX = "CHANGES_UPLOADER_"

# Config file read by the settings currently being built, None for none.
_config_file: ContextVar[Optional[Path]] = ContextVar("config_file", default=None)


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        logger.debug(f"No config file at {path}")
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return data


class ConfigFileSource(PydanticBaseSettingsSource):
    """Settings source reading a JSON object from the config file."""

    def __init__(self, settings_cls: type[BaseSettings], config_file: Path):
        super().__init__(settings_cls)
        self.config_file = config_file
        self._data = _read_config_file(config_file)

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        return self._data.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        fields = self.settings_cls.model_fields
        unknown = sorted(set(self._data) - set(fields))
        if unknown:
            logger.warning(
                f"Ignoring unknown config keys in {self.config_file}: "
                f"{', '.join(unknown)}"
            )
        return {
            name: value
            for name, value in self._data.items()
            if name in fields and value is not None
        }


class UploaderConfig(BaseSettings):
    """Resolved application settings."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX, env_ignore_empty=True, extra="ignore"
    )

    remote_host: Optional[str] = None
    """Host alias (or host name) to upload to"""

    remote_root: Optional[str] = None
    """Remote directory that mirrors each workspace root"""

    ssh_config_path: Optional[str] = None
    """SSH client config to resolve the host alias from"""

    workspaces: list[Path] = Field(default_factory=list, validate_default=True)
    """Workspace root directories to track (current directory if empty)"""

    state_file: Optional[Path] = None
    """Where the tracked file list is persisted"""

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        config_file = _config_file.get()
        if config_file is None:
            return (init_settings, env_settings)
        return (init_settings, env_settings, ConfigFileSource(settings_cls, config_file))

    @field_validator("workspaces")
    @classmethod
    def _resolve_workspaces(cls, value: list[Path]) -> list[Path]:
        resolved = [path.expanduser().resolve() for path in value]
        return resolved or [Path.cwd().resolve()]

    @field_validator("state_file")
    @classmethod
    def _expand_state_file(cls, value: Optional[Path]) -> Optional[Path]:
        return value.expanduser() if value is not None else None

    def missing_upload_settings(self) -> list[str]:
        """Names of settings required for uploading that are unset."""
        missing = []
        if not self.remote_host:
            missing.append("remote_host")
        if not self.remote_root:
            missing.append("remote_root")
        return missing


def load_config(
    config_file: Optional[Union[str, Path]] = None,
    workspaces: Optional[Sequence[Union[str, Path]]] = None,
    **overrides: Any,
) -> UploaderConfig:
    """Build the effective configuration.

    Args:
        config_file: JSON config file (defaults to
                     ~/.config/changes-uploader/config.json)
        workspaces: Workspace directories; overrides the file when non-empty
        **overrides: Non-None values override file and environment settings

    Returns:
        UploaderConfig

    Raises:
        ConfigError: If the config file is malformed or a value is invalid
    """
    path = Path(config_file).expanduser() if config_file else DEFAULT_CONFIG_FILE
    values = {key: value for key, value in overrides.items() if value is not None}
    if workspaces:
        values["workspaces"] = list(workspaces)

    token = _config_file.set(path)
    try:
        return UploaderConfig(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e
    finally:
        _config_file.reset(token)


def save_config(
    config: UploaderConfig, config_file: Optional[Union[str, Path]] = None
) -> Path:
    """Write the explicitly set values of ``config`` as JSON.

    Returns:
        Path of the written file
    """
    path = Path(config_file).expanduser() if config_file else DEFAULT_CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json", exclude_unset=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    logger.debug(f"Saved config to {path}")
    return path
