"""
Gateway wiring

Builds every component from Settings. The REST server and the CLI both
work through a Gateway; tests build one with fakes for the launcher,
relay directory and sampler.
"""

import logging
from typing import Optional

from wg_gateway.config import Settings
from wg_gateway.credential_vault import CredentialVault
from wg_gateway.daemon_adapter import DaemonAdapter, WgShowPoller
from wg_gateway.errors import ConfigError, UpstreamUnavailable
from wg_gateway.launcher import TunnelLauncher, WgQuickLauncher
from wg_gateway.metrics_feed import MetricsFeed
from wg_gateway.peer_registry import PeerRegistry
from wg_gateway.relays import HttpRelayDirectory, RelayDirectory
from wg_gateway.service_controller import ServiceController
from wg_gateway.system_metrics import SystemSampler

logger = logging.getLogger(__name__)


class UnconfiguredRelayDirectory(RelayDirectory):
    """Stand-in when no relay directory URL is configured"""

    def fetch(self, credentials, timeout):
        raise UpstreamUnavailable("No relay directory URL configured (relays.url)")


class Gateway:
    """All core components for one tunnel interface"""

    def __init__(
        self,
        settings: Settings,
        launcher: Optional[TunnelLauncher] = None,
        directory: Optional[RelayDirectory] = None,
        sampler=None,
    ):
        if not settings.db_path:
            raise ConfigError("database path is required")

        self.settings = settings
        self.registry = PeerRegistry(settings.db_path, enforce_unique_keys=settings.enforce_unique_keys)
        self.controller = ServiceController(launcher or WgQuickLauncher(settings.interface))

        if directory is None:
            directory = HttpRelayDirectory(settings.relay_url) if settings.relay_url else UnconfiguredRelayDirectory()
        self.vault = CredentialVault(
            settings.db_path,
            directory,
            target=settings.target_region,
            timeout=settings.relay_timeout,
        )

        self.feed = MetricsFeed(
            self.registry,
            self.controller,
            sampler or SystemSampler(settings.interface),
            freshness_window=settings.freshness_window,
        )
        self.adapter = DaemonAdapter(self.registry, self.controller)
        self.poller: Optional[WgShowPoller] = None

    def start_background(self, poll_daemon: bool = True):
        """Start the report worker and, optionally, the wg show poller"""
        self.adapter.start()
        if poll_daemon:
            self.poller = WgShowPoller(
                self.adapter,
                self.registry,
                interface=self.settings.interface,
                interval=self.settings.daemon_poll_interval,
                upstream_public_key=self.settings.upstream_public_key,
            )
            self.poller.start()
        logger.info(f"Gateway background workers started for {self.settings.interface}")

    def shutdown(self):
        if self.poller:
            self.poller.stop()
            self.poller = None
        self.adapter.stop()
        self.vault.close()
