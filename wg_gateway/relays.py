"""
Relay Directory

Client for the relay-discovery service and the selection policy applied
to its answer. The provider is opaque: it is reached at a configured URL
with HTTP basic auth and answers with a JSON list of relays, either bare
or under a "relays" key.

Relay fields accepted (camelCase or snake_case):
    name, hostname, country, city, load, capacityMbps,
    latitude, longitude, wireguardPublicKey, protocols

Selection:
1. Keep WireGuard-capable relays only
2. Rank by ascending load, then descending link capacity, then ascending
   distance to the target region
"""

import base64
import json
import logging
import math
import ssl
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from wg_gateway.errors import UpstreamUnavailable
from wg_gateway.models import ProtonVpnCredentials, Relay

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class TargetRegion:
    """Where egress should be close to"""
    name: str = "Raleigh, NC"
    latitude: float = 35.7796
    longitude: float = -78.6382


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in km"""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def rank_relays(relays: List[Relay], target: Optional[TargetRegion] = None) -> List[Relay]:
    """
    Filter to WireGuard-capable relays and rank them.

    Returns copies with distance_km set when both the relay and the target
    have coordinates; the input relays are left untouched. Relays without
    coordinates sort after those with them when load and capacity tie.
    """
    target = target or TargetRegion()
    capable = []
    for relay in relays:
        if not relay.supports_wireguard:
            continue
        distance = None
        if relay.latitude is not None and relay.longitude is not None:
            distance = round(
                haversine_km(target.latitude, target.longitude, relay.latitude, relay.longitude), 1
            )
        capable.append(replace(relay, distance_km=distance))

    return sorted(
        capable,
        key=lambda r: (
            r.load,
            -r.capacity_mbps,
            r.distance_km if r.distance_km is not None else math.inf,
        )
    )


def _pick(data: Dict[str, Any], *names, default=None):
    for name in names:
        if name in data and data[name] is not None:
            return data[name]
    return default


def parse_relay(data: Dict[str, Any]) -> Relay:
    """
    Build a Relay from one directory entry.

    Raises:
        ValueError: entry is missing a name/hostname or has bad numbers
    """
    if not isinstance(data, dict):
        raise ValueError(f"Relay entry is not an object: {data!r}")

    name = _pick(data, 'name', 'Name')
    hostname = _pick(data, 'hostname', 'domain', 'Domain', default=name)
    if not name or not hostname:
        raise ValueError("Relay entry has no name")

    location = data.get('location') or {}
    latitude = _pick(data, 'latitude', 'lat', default=location.get('lat'))
    longitude = _pick(data, 'longitude', 'long', 'lon', default=location.get('long'))

    protocols = [str(p).lower() for p in _pick(data, 'protocols', default=[])]

    return Relay(
        name=str(name),
        hostname=str(hostname),
        country=str(_pick(data, 'country', 'exitCountry', default='')),
        city=_pick(data, 'city'),
        load=int(_pick(data, 'load', default=100)),
        capacity_mbps=int(_pick(data, 'capacityMbps', 'capacity_mbps', default=0)),
        latitude=float(latitude) if latitude is not None else None,
        longitude=float(longitude) if longitude is not None else None,
        wireguard_public_key=_pick(data, 'wireguardPublicKey', 'wireguard_public_key'),
        protocols=protocols,
    )


def parse_relay_payload(payload: Any) -> List[Relay]:
    """Raises ValueError on anything that isn't a list of relay entries"""
    entries = payload.get('relays') if isinstance(payload, dict) else payload
    if not isinstance(entries, list):
        raise ValueError("Relay payload is not a list")
    return [parse_relay(entry) for entry in entries]


class RelayDirectory:
    """Interface the credential vault expects"""

    def fetch(self, credentials: ProtonVpnCredentials, timeout: float) -> List[Relay]:
        raise NotImplementedError


class HttpRelayDirectory(RelayDirectory):
    """Fetches relays from an HTTP(S) endpoint"""

    def __init__(self, url: str):
        self.url = url

    def fetch(self, credentials: ProtonVpnCredentials, timeout: float) -> List[Relay]:
        """
        Raises:
            UpstreamUnavailable: transport error, timeout, non-2xx or bad payload
        """
        token = base64.b64encode(
            f"{credentials.username}:{credentials.password}".encode('utf-8')
        ).decode('ascii')
        request = Request(
            self.url,
            headers={
                "Accept": "application/json",
                "Authorization": f"Basic {token}",
            },
            method='GET'
        )
        ssl_context = ssl.create_default_context()

        try:
            with urlopen(request, timeout=timeout, context=ssl_context) as response:
                body = response.read()
        except HTTPError as e:
            raise UpstreamUnavailable(f"Relay directory answered {e.code}: {e.reason}") from e
        except URLError as e:
            raise UpstreamUnavailable(f"Relay directory unreachable: {e.reason}") from e
        except (TimeoutError, OSError) as e:
            raise UpstreamUnavailable(f"Relay directory request failed: {e}") from e

        try:
            return parse_relay_payload(json.loads(body.decode('utf-8')))
        except (ValueError, TypeError, UnicodeDecodeError) as e:
            raise UpstreamUnavailable(f"Relay directory returned a malformed payload: {e}") from e
