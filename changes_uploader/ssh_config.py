"""Host alias resolution from OpenSSH-style client configuration files."""

import logging
import os
import re
from pathlib import Path
from typing import Optional, Union

from .exceptions import ConfigUnreadableError
from .models import ConnectionProfile

logger = logging.getLogger(__name__)

SYSTEM_SSH_CONFIG = Path("/etc/ssh/ssh_config")

# "Keyword value", "Keyword=value" or a bare "Keyword"
_LINE_RE = re.compile(r"^(\S+?)(?:(?:\s*=\s*|\s+)(.*))?$")


def _expand_home(value: str, home: Path) -> str:
    if not value.startswith("~"):
        return value
    return os.path.join(str(home), value[1:].lstrip("/\\"))


def _parse_port(value: str) -> Optional[int]:
    if not (value.isascii() and value.isdigit()):
        logger.debug(f"Ignoring malformed Port value: {value!r}")
        return None
    port = int(value)
    if not 0 < port < 65536:
        logger.debug(f"Ignoring out-of-range Port value: {value!r}")
        return None
    return port


def parse_host_config(
    text: str, host_alias: str, home: Optional[Path] = None
) -> ConnectionProfile:
    """Extract connection settings for ``host_alias`` from config text.

    Only ``HostName``, ``User``, ``Port`` and ``IdentityFile`` inside a
    ``Host`` block listing ``host_alias`` are read. Keywords are matched
    case-insensitively, values are kept as written. A later value for the
    same keyword overrides an earlier one.

    Args:
        text: Contents of the configuration file
        host_alias: Alias to look up (exact, case-sensitive match)
        home: Directory that a leading ``~`` in IdentityFile expands to

    Returns:
        ConnectionProfile, with every field unset if no block matches

    Examples:
        >>> cfg = "Host a b\\n  HostName h1\\n  User u1\\nHost c\\n  User u2\\n"
        >>> parse_host_config(cfg, "b")
        ConnectionProfile(host_name='h1', user='u1', port=None, private_key_path=None)
        >>> parse_host_config(cfg, "z").is_empty()
        True
    """
    home = home if home is not None else Path.home()
    settings: dict = {}
    in_target = False

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue

        match = _LINE_RE.match(line)
        if not match:
            continue
        keyword = match.group(1).lower()
        value = (match.group(2) or "").strip()

        if keyword == "host":
            in_target = host_alias in value.split()
            continue
        if not in_target or not value:
            continue

        if keyword == "hostname":
            settings["host_name"] = value
        elif keyword == "user":
            settings["user"] = value
        elif keyword == "port":
            port = _parse_port(value)
            if port is not None:
                settings["port"] = port
        elif keyword == "identityfile":
            settings["private_key_path"] = _expand_home(value, home)

    return ConnectionProfile(**settings)


class HostConfigResolver:
    """Resolves a host alias against one or more configuration files."""

    def __init__(
        self,
        home: Optional[Path] = None,
        system_config: Optional[Path] = SYSTEM_SSH_CONFIG,
    ):
        """Initialize resolver.

        Args:
            home: Home directory for ``~`` expansion and the default
                  ``~/.ssh/config`` location
            system_config: System-wide config tried last, None to skip
        """
        self.home = home if home is not None else Path.home()
        self.system_config = system_config

    @property
    def default_config(self) -> Path:
        return self.home / ".ssh" / "config"

    def resolve(
        self, config_path: Union[str, Path], host_alias: str
    ) -> ConnectionProfile:
        """Resolve ``host_alias`` from a single file.

        Raises:
            ConfigUnreadableError: If the file cannot be read
        """
        path = Path(config_path).expanduser()
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigUnreadableError(f"Cannot read SSH config {path}: {e}") from e

        logger.debug(f"Resolving host {host_alias!r} from {path}")
        profile = parse_host_config(text, host_alias, home=self.home)
        logger.debug(f"Resolved {host_alias!r}: {profile}")
        return profile

    def candidate_paths(
        self, config_path: Optional[Union[str, Path]] = None
    ) -> list[Path]:
        """Config files to try, in order, without duplicates."""
        candidates: list[Path] = []
        if config_path:
            candidates.append(Path(config_path).expanduser())
        candidates.append(self.default_config)
        if self.system_config is not None:
            candidates.append(self.system_config)

        unique: list[Path] = []
        for candidate in candidates:
            if candidate not in unique:
                unique.append(candidate)
        return unique

    def resolve_with_fallback(
        self, config_path: Optional[Union[str, Path]], host_alias: str
    ) -> ConnectionProfile:
        """Resolve ``host_alias`` from the first readable candidate file.

        Raises:
            ConfigUnreadableError: If no candidate file can be read
        """
        candidates = self.candidate_paths(config_path)
        for candidate in candidates:
            try:
                return self.resolve(candidate, host_alias)
            except ConfigUnreadableError as e:
                logger.debug(str(e))

        tried = ", ".join(str(c) for c in candidates)
        raise ConfigUnreadableError(f"No readable SSH config found (tried: {tried})")
