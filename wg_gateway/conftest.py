"""Shared fixtures for wg-gateway tests"""

import time
from typing import Callable, List, Optional

import pytest

from wg_gateway.app import Gateway
from wg_gateway.config import Settings
from wg_gateway.keygen import generate_public_key
from wg_gateway.launcher import LauncherError, TunnelLauncher
from wg_gateway.models import Peer, Relay
from wg_gateway.relays import RelayDirectory
from wg_gateway.system_metrics import StaticSampler


class FakeLauncher(TunnelLauncher):
    """Records calls; fails on demand"""

    def __init__(self):
        self.calls: List[str] = []
        self.fail_up = False
        self.fail_down = False
        self.fail_restart = False
        self.up_state = False
        self.on_restart: Optional[Callable[[], None]] = None
        self.delay = 0.0

    def up(self):
        self.calls.append('up')
        time.sleep(self.delay)
        if self.fail_up:
            raise LauncherError("wg-quick up wg0 exited 1: RTNETLINK answers: Operation not permitted")
        self.up_state = True

    def down(self):
        self.calls.append('down')
        if self.fail_down:
            raise LauncherError("wg-quick down wg0 exited 1")
        self.up_state = False

    def restart(self):
        self.calls.append('restart')
        if self.on_restart:
            self.on_restart()
        if self.fail_restart:
            raise LauncherError("wg-quick up wg0 exited 1")

    def is_up(self) -> bool:
        return self.up_state


class FakeDirectory(RelayDirectory):
    """Returns canned relays, raises, or hangs"""

    def __init__(self, relays: Optional[List[Relay]] = None):
        self.relays = relays or []
        self.error: Optional[Exception] = None
        self.hang = 0.0
        self.seen_credentials = []

    def fetch(self, credentials, timeout):
        self.seen_credentials.append(credentials)
        if self.hang:
            time.sleep(self.hang)
        if self.error:
            raise self.error
        return list(self.relays)


def make_relay(name, load, capacity_mbps, lat=None, lon=None, wireguard=True):
    return Relay(
        name=name,
        hostname=f"{name.lower().replace('#', '-')}.relay.example",
        country="US",
        city=None,
        load=load,
        capacity_mbps=capacity_mbps,
        latitude=lat,
        longitude=lon,
        protocols=['wireguard', 'openvpn'] if wireguard else ['openvpn'],
    )


def make_peer(peer_id: str, allowed_ips: str = "10.0.0.2/32", **kwargs) -> Peer:
    return Peer(id=peer_id, public_key=kwargs.pop('public_key', generate_public_key()),
                allowed_ips=allowed_ips, **kwargs)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "gateway.db"


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def gateway(db_path, launcher, directory):
    settings = Settings(db_path=str(db_path), relay_timeout=0.5)
    gw = Gateway(settings, launcher=launcher, directory=directory,
                 sampler=StaticSampler(cpu_load=12.5, network_speed=2_000_000))
    yield gw
    gw.shutdown()
