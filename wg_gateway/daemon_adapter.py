"""
Daemon Adapter

The tunnel daemon reports activity and health on its own schedule. Those
reports arrive here as messages, go through a queue, and are applied by a
single worker thread, so a slow or chatty daemon never blocks the
registry's or controller's command path.

WgShowPoller is one producer: it reads `wg show <iface> dump`, turns the
cumulative transfer counters into per-peer deltas, and derives tunnel
health from the upstream relay's handshake age.

Usage:
    adapter = DaemonAdapter(registry, controller)
    adapter.start()
    adapter.submit_activity("laptop", 1500)
    adapter.submit_health("connected")

    poller = WgShowPoller(adapter, registry, interface="wg0")
    poller.start()
"""

import logging
import queue
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from wg_gateway.models import TunnelHealth

logger = logging.getLogger(__name__)

HANDSHAKE_FRESH_SECONDS = 180


@dataclass(frozen=True)
class ActivityReport:
    peer_id: str
    bytes_delta: int
    seen_at: Optional[int] = None   # ns


@dataclass(frozen=True)
class HealthReport:
    value: str


_STOP = object()


class DaemonAdapter:
    """Queue plus worker thread between the daemon and the core"""

    def __init__(self, registry, controller, max_queue: int = 10000):
        self.registry = registry
        self.controller = controller
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue)
        self._thread: Optional[threading.Thread] = None
        self._counter_lock = threading.Lock()
        self.applied = 0
        self.dropped = 0

    def _count(self, applied: int = 0, dropped: int = 0):
        with self._counter_lock:
            self.applied += applied
            self.dropped += dropped

    # =========================================================================
    # PRODUCER SIDE
    # =========================================================================

    def _submit(self, message) -> bool:
        try:
            self._queue.put_nowait(message)
            return True
        except queue.Full:
            self._count(dropped=1)
            logger.warning(f"Daemon report queue full, dropped {type(message).__name__}")
            return False

    def submit_activity(self, peer_id: str, bytes_delta: int, seen_at: Optional[int] = None) -> bool:
        return self._submit(ActivityReport(peer_id, int(bytes_delta), seen_at))

    def submit_health(self, value) -> bool:
        return self._submit(HealthReport(getattr(value, 'value', value)))

    # =========================================================================
    # WORKER SIDE
    # =========================================================================

    def _apply(self, message):
        if isinstance(message, ActivityReport):
            self.registry.record_activity(message.peer_id, message.bytes_delta, message.seen_at)
        elif isinstance(message, HealthReport):
            self.controller.report_health(message.value)
        else:
            raise ValueError(f"Unknown daemon message: {message!r}")

    def _run(self):
        while True:
            message = self._queue.get()
            try:
                if message is _STOP:
                    return
                self._apply(message)
                self._count(applied=1)
            except ValueError as e:
                self._count(dropped=1)
                logger.warning(f"Dropped daemon report: {e}")
            except Exception:
                self._count(dropped=1)
                logger.exception(f"Failed to apply daemon report {message!r}")
            finally:
                self._queue.task_done()

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name='daemon-adapter', daemon=True)
        self._thread.start()
        logger.debug("Daemon adapter started")

    def stop(self, timeout: float = 5.0):
        if not self._thread:
            return
        self._queue.put(_STOP)
        self._thread.join(timeout)
        self._thread = None

    def flush(self):
        """Block until every queued report has been applied"""
        self._queue.join()


# =============================================================================
# WG SHOW POLLER
# =============================================================================

@dataclass
class PeerTransfer:
    """One peer line of `wg show <iface> dump`"""
    public_key: str
    endpoint: Optional[str]
    allowed_ips: str
    latest_handshake: Optional[int]     # unix seconds
    transfer_rx: int
    transfer_tx: int

    @property
    def total_bytes(self) -> int:
        return self.transfer_rx + self.transfer_tx


def parse_wg_show_dump(output: str) -> Dict[str, PeerTransfer]:
    """
    Parse output from `wg show wg0 dump`.

    Returns dict mapping public_key -> PeerTransfer
    """
    peers = {}

    # wg show dump format:
    # private_key public_key listen_port fwmark
    # public_key preshared_key endpoint allowed_ips latest_handshake transfer_rx transfer_tx persistent_keepalive

    lines = output.strip().split('\n')
    for line in lines[1:]:
        parts = line.split('\t')
        if len(parts) < 8:
            continue

        try:
            handshake = int(parts[4])
            rx = int(parts[5])
            tx = int(parts[6])
        except ValueError:
            logger.debug(f"Skipping unparseable dump line: {line!r}")
            continue

        peers[parts[0]] = PeerTransfer(
            public_key=parts[0],
            endpoint=parts[2] if parts[2] != '(none)' else None,
            allowed_ips=parts[3],
            latest_handshake=handshake or None,
            transfer_rx=rx,
            transfer_tx=tx,
        )

    return peers


def run_wg_show(interface: str = 'wg0') -> Optional[str]:
    """Run wg show dump locally; None when the interface can't be read"""
    try:
        result = subprocess.run(
            ['wg', 'show', interface, 'dump'],
            capture_output=True,
            text=True,
            timeout=10
        )
    except subprocess.TimeoutExpired:
        logger.error("wg show command timed out")
        return None
    except FileNotFoundError:
        logger.error("wg command not found")
        return None

    if result.returncode != 0:
        logger.debug(f"wg show {interface} failed: {result.stderr.strip()}")
        return None
    return result.stdout


class WgShowPoller:
    """Periodically converts `wg show` dumps into daemon reports"""

    def __init__(
        self,
        adapter: DaemonAdapter,
        registry,
        interface: str = 'wg0',
        interval: float = 5.0,
        upstream_public_key: Optional[str] = None,
        runner: Optional[Callable[[str], Optional[str]]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.adapter = adapter
        self.registry = registry
        self.interface = interface
        self.interval = interval
        self.upstream_public_key = upstream_public_key
        self.runner = runner or run_wg_show
        self.clock = clock
        self._last: Dict[str, PeerTransfer] = {}
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _health_from(self, peers: Dict[str, PeerTransfer], now: float) -> TunnelHealth:
        if not self.upstream_public_key:
            return TunnelHealth.CONNECTED

        upstream = peers.get(self.upstream_public_key)
        if upstream and upstream.latest_handshake and now - upstream.latest_handshake <= HANDSHAKE_FRESH_SECONDS:
            return TunnelHealth.CONNECTED
        return TunnelHealth.CONNECTING

    def poll_once(self) -> int:
        """
        Take one dump and submit reports.

        Returns:
            number of activity reports submitted
        """
        output = self.runner(self.interface)
        if output is None:
            self.adapter.submit_health(TunnelHealth.DISCONNECTED)
            self._last = {}
            return 0

        now = self.clock()
        current = parse_wg_show_dump(output)
        self.adapter.submit_health(self._health_from(current, now))

        submitted = 0
        for public_key, transfer in current.items():
            if public_key == self.upstream_public_key:
                continue

            previous = self._last.get(public_key)
            if previous is None:
                # First sighting: counters may predate us, only take a baseline
                continue

            delta = transfer.total_bytes - previous.total_bytes
            if delta < 0:
                # Interface was restarted, counters began again from zero
                delta = transfer.total_bytes
            new_handshake = (transfer.latest_handshake or 0) > (previous.latest_handshake or 0)
            if delta == 0 and not new_handshake:
                continue

            peer = self.registry.find_by_public_key(public_key)
            if peer is None:
                continue

            seen_at = transfer.latest_handshake * 1_000_000_000 if new_handshake else None
            if self.adapter.submit_activity(peer.id, delta, seen_at):
                submitted += 1

        self._last = current
        return submitted

    def _run(self):
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("wg show poll failed")
            self._stop.wait(self.interval)

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name='wg-show-poller', daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
