"""
Metrics Feed

Builds the polled ServiceStatus. compute_status() is a pure function over
a controller snapshot, a peer list and a system sample; MetricsFeed only
gathers those three and calls it, so nothing is cached between polls.
"""

import logging
import time
from typing import Iterable, Optional

from wg_gateway.models import ControllerSnapshot, Peer, ServiceStatus, SystemSample

logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS_WINDOW = 60  # seconds


def is_active(peer: Peer, now: int, freshness_window: float) -> bool:
    """Peer had activity within the window (inclusive)"""
    if peer.last_seen is None:
        return False
    return now - peer.last_seen <= int(freshness_window * 1_000_000_000)


def compute_status(
    controller: ControllerSnapshot,
    peers: Iterable[Peer],
    sample: SystemSample,
    now: int,
    freshness_window: float = DEFAULT_FRESHNESS_WINDOW,
) -> ServiceStatus:
    """
    Combine controller and registry snapshots into a ServiceStatus.

    Args:
        controller: controller snapshot
        peers: registry snapshot
        sample: host metrics
        now: ns timestamp the snapshot is taken at
        freshness_window: seconds a peer stays active after its last activity
    """
    peers = list(peers)
    return ServiceStatus(
        is_running=controller.is_running,
        state=controller.state,
        active_peers=sum(1 for p in peers if is_active(p, now, freshness_window)),
        total_peers=len(peers),
        total_data_usage=sum(p.data_usage for p in peers),
        cpu_load=sample.cpu_load,
        network_speed=sample.network_speed,
        tunnel_health=controller.health,
        generated_at=now,
    )


class MetricsFeed:
    """Read-only aggregator over a registry, a controller and a sampler"""

    def __init__(self, registry, controller, sampler, freshness_window: float = DEFAULT_FRESHNESS_WINDOW):
        self.registry = registry
        self.controller = controller
        self.sampler = sampler
        self.freshness_window = freshness_window

    def get_status(self, now: Optional[int] = None) -> ServiceStatus:
        snapshot = self.controller.snapshot()
        peers = self.registry.list()
        sample = self.sampler.sample()
        return compute_status(
            snapshot,
            peers,
            sample,
            now if now is not None else time.time_ns(),
            self.freshness_window,
        )
