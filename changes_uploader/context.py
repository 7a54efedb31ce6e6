"""Process-wide application context."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from .config import UploaderConfig
from .exceptions import ConfigError
from .models import ConnectionProfile
from .output import OutputFormatter
from .ssh_config import HostConfigResolver
from .storage import JsonStateStore, KeyValueStore
from .tracker import ChangeSetTracker, Listener
from .transfer import TransferEngine
from .transport import Transport
from .vcs import GitStatusAdapter

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Components shared by every command, created once at startup."""

    config: UploaderConfig
    output: OutputFormatter
    store: KeyValueStore
    tracker: ChangeSetTracker
    engine: TransferEngine
    resolver: HostConfigResolver = field(default_factory=HostConfigResolver)
    _subscriptions: list[int] = field(default_factory=list, repr=False)
    _closed: bool = field(default=False, repr=False)

    @classmethod
    def create(
        cls,
        config: UploaderConfig,
        output: Optional[OutputFormatter] = None,
        store: Optional[KeyValueStore] = None,
        adapter: Optional[GitStatusAdapter] = None,
        transport: Optional[Transport] = None,
        resolver: Optional[HostConfigResolver] = None,
    ) -> "AppContext":
        output = output or OutputFormatter()
        store = store if store is not None else JsonStateStore(config.state_file)
        tracker = ChangeSetTracker(
            store, workspaces=config.workspaces, adapter=adapter, output=output
        )
        engine = TransferEngine(transport=transport, output=output)
        return cls(
            config=config,
            output=output,
            store=store,
            tracker=tracker,
            engine=engine,
            resolver=resolver or HostConfigResolver(),
        )

    def connection_profile(self) -> ConnectionProfile:
        """Resolve the configured remote host into a connection profile.

        Unset fields fall back to the configured host string itself.

        Raises:
            ConfigError: If no remote host is configured
            ConfigUnreadableError: If no SSH config file can be read
        """
        host = self.config.remote_host
        if not host:
            raise ConfigError("No remote host configured")
        profile = self.resolver.resolve_with_fallback(
            self.config.ssh_config_path, host
        )
        if profile.is_empty():
            logger.info(f"No SSH config block for {host!r}, using it as host name")
        return profile.with_fallback_host(host)

    def subscribe(self, callback: Listener) -> int:
        """Register a tracker listener that is removed again on close."""
        handle = self.tracker.add_listener(callback)
        self._subscriptions.append(handle)
        return handle

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for handle in self._subscriptions:
            self.tracker.remove_listener(handle)
        self._subscriptions.clear()
        logger.debug("Application context closed")
