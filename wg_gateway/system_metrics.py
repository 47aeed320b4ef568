"""
System Metrics Sampler

Host CPU load and network throughput for the status feed, via psutil.
Throughput is the bit rate between two consecutive samples, so the first
sample after construction reports 0.
"""

import logging
import time
from threading import Lock
from typing import Optional

import psutil

from wg_gateway.models import SystemSample

logger = logging.getLogger(__name__)


class SystemSampler:
    """Samples psutil counters, optionally for one interface only"""

    def __init__(self, interface: Optional[str] = None):
        self.interface = interface
        self._lock = Lock()
        self._last_bytes: Optional[int] = None
        self._last_time: Optional[float] = None

    def _total_bytes(self) -> int:
        if self.interface:
            counters = psutil.net_io_counters(pernic=True).get(self.interface)
            if counters is None:
                return 0
        else:
            counters = psutil.net_io_counters()
        return counters.bytes_sent + counters.bytes_recv

    def sample(self) -> SystemSample:
        cpu = psutil.cpu_percent(interval=None)
        now = time.monotonic()
        total = self._total_bytes()

        with self._lock:
            speed = 0.0
            if self._last_bytes is not None and now > self._last_time and total >= self._last_bytes:
                speed = (total - self._last_bytes) * 8 / (now - self._last_time)
            self._last_bytes = total
            self._last_time = now

        return SystemSample(cpu_load=round(cpu, 1), network_speed=round(speed, 1))


class StaticSampler:
    """Fixed values; for tests and hosts without counters"""

    def __init__(self, cpu_load: float = 0.0, network_speed: float = 0.0):
        self._sample = SystemSample(cpu_load=cpu_load, network_speed=network_speed)

    def sample(self) -> SystemSample:
        return self._sample
