"""
Data Model

Peers, service state, status snapshots, relay credentials and relays.

Timestamps are integer nanoseconds since the epoch (time.time_ns()).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Any


class ServiceState(str, Enum):
    """Run state of the tunnel daemon as seen by the controller"""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    RESTARTING = "restarting"


class TunnelHealth(str, Enum):
    """Coarse connectivity of the daemon's upstream link"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RESTARTING = "restarting"


@dataclass
class Peer:
    """Authorized client of the tunnel"""
    id: str
    public_key: str
    allowed_ips: str                    # ex "10.0.0.2/32"
    created_at: Optional[int] = None    # ns, set once by the registry if unset
    last_seen: Optional[int] = None     # ns, None until first activity
    data_usage: int = 0                 # cumulative bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "publicKey": self.public_key,
            "allowedIps": self.allowed_ips,
            "createdAt": self.created_at,
            "lastSeen": self.last_seen,
            "dataUsage": self.data_usage,
        }


@dataclass(frozen=True)
class ControllerSnapshot:
    """Immutable view of the service controller"""
    state: ServiceState
    health: TunnelHealth
    reported_health: TunnelHealth
    changed_at: int

    @property
    def is_running(self) -> bool:
        return self.state == ServiceState.RUNNING


@dataclass(frozen=True)
class SystemSample:
    """Instantaneous host metrics"""
    cpu_load: float = 0.0           # percent
    network_speed: float = 0.0      # bits per second


@dataclass(frozen=True)
class ServiceStatus:
    """Polled status snapshot, recomputed on every read"""
    is_running: bool
    state: ServiceState
    active_peers: int
    total_peers: int
    total_data_usage: int
    cpu_load: float
    network_speed: float
    tunnel_health: TunnelHealth
    generated_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isRunning": self.is_running,
            "state": self.state.value,
            "activePeers": self.active_peers,
            "totalPeers": self.total_peers,
            "totalDataUsage": self.total_data_usage,
            "cpuLoad": self.cpu_load,
            "networkSpeed": self.network_speed,
            "tunnelHealth": self.tunnel_health.value,
            "generatedAt": self.generated_at,
        }


@dataclass
class ProtonVpnCredentials:
    """Relay provider credentials, forwarded verbatim"""
    username: str
    password: str
    saved_at: Optional[int] = None

    def __repr__(self) -> str:
        return f"ProtonVpnCredentials(username={self.username!r}, password='***')"

    def to_public_dict(self) -> Dict[str, Any]:
        return {"username": self.username, "password": "********", "savedAt": self.saved_at}


@dataclass
class Relay:
    """Egress exit point offered by the relay directory"""
    name: str
    hostname: str
    country: str
    city: Optional[str]
    load: int                       # percent, 0-100
    capacity_mbps: int              # link capacity
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    wireguard_public_key: Optional[str] = None
    protocols: List[str] = field(default_factory=list)
    distance_km: Optional[float] = None

    @property
    def supports_wireguard(self) -> bool:
        return "wireguard" in self.protocols or bool(self.wireguard_public_key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "hostname": self.hostname,
            "country": self.country,
            "city": self.city,
            "load": self.load,
            "capacityMbps": self.capacity_mbps,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "wireguardPublicKey": self.wireguard_public_key,
            "protocols": list(self.protocols),
            "distanceKm": self.distance_km,
        }
