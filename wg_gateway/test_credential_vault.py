"""
Tests for the credential vault and relay selection

Run with: python -m pytest wg_gateway/test_credential_vault.py -v
"""

import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

from wg_gateway.conftest import make_relay
from wg_gateway.credential_vault import CredentialVault
from wg_gateway.errors import InvalidCredentialsError, NoCredentialsError, UpstreamUnavailable
from wg_gateway.models import ProtonVpnCredentials
from wg_gateway.relays import (
    HttpRelayDirectory,
    TargetRegion,
    haversine_km,
    parse_relay,
    parse_relay_payload,
    rank_relays,
)


@pytest.fixture
def vault(db_path, directory):
    v = CredentialVault(db_path, directory, timeout=0.5)
    yield v
    v.close()


CREDS = ProtonVpnCredentials(username="alice", password="s3cret")


class TestCredentials:

    def test_empty_vault(self, vault):
        assert vault.get() is None

    def test_save_and_get(self, vault):
        saved = vault.save(CREDS)
        assert saved.saved_at is not None

        stored = vault.get()
        assert stored.username == "alice"
        assert stored.password == "s3cret"

    def test_save_replaces(self, vault):
        vault.save(CREDS)
        vault.save(ProtonVpnCredentials(username="bob", password="other"))
        assert vault.get().username == "bob"

    def test_persists_across_instances(self, db_path, directory, vault):
        vault.save(CREDS)
        again = CredentialVault(db_path, directory)
        try:
            assert again.get().username == "alice"
        finally:
            again.close()

    @pytest.mark.parametrize("username,password", [("", "x"), ("x", "")])
    def test_rejects_empty(self, vault, username, password):
        with pytest.raises(InvalidCredentialsError):
            vault.save(ProtonVpnCredentials(username=username, password=password))
        assert vault.get() is None

    def test_clear(self, vault):
        vault.save(CREDS)
        assert vault.clear() is True
        assert vault.get() is None
        assert vault.clear() is False

    def test_password_masked(self):
        assert "s3cret" not in repr(CREDS)
        assert CREDS.to_public_dict()["password"] == "********"


class TestFetchRelays:

    def test_requires_credentials(self, vault, directory):
        with pytest.raises(NoCredentialsError):
            vault.fetch_relays()
        assert directory.seen_credentials == []

    def test_forwards_credentials(self, vault, directory):
        vault.save(CREDS)
        vault.fetch_relays()
        assert directory.seen_credentials[0].username == "alice"
        assert directory.seen_credentials[0].password == "s3cret"

    def test_ranked_result(self, vault, directory):
        directory.relays = [
            make_relay("US-NC#1", load=40, capacity_mbps=10000),
            make_relay("US-VA#3", load=12, capacity_mbps=1000),
            make_relay("US-GA#7", load=12, capacity_mbps=10000),
            make_relay("US-NY#2", load=5, capacity_mbps=10000, wireguard=False),
        ]
        vault.save(CREDS)
        names = [r.name for r in vault.fetch_relays()]
        assert names == ["US-GA#7", "US-VA#3", "US-NC#1"]
        assert [r.name for r in vault.last_relays] == names

    def test_timeout_keeps_credentials(self, vault, directory):
        vault.save(CREDS)
        directory.hang = 2.0
        with pytest.raises(UpstreamUnavailable):
            vault.fetch_relays()
        assert vault.get().username == "alice"

    def test_upstream_error_passes_through(self, vault, directory):
        vault.save(CREDS)
        directory.error = UpstreamUnavailable("Relay directory answered 401: Unauthorized")
        with pytest.raises(UpstreamUnavailable, match="401"):
            vault.fetch_relays()
        assert vault.get() is not None

    def test_unexpected_error_wrapped(self, vault, directory):
        vault.save(CREDS)
        directory.error = RuntimeError("boom")
        with pytest.raises(UpstreamUnavailable, match="boom"):
            vault.fetch_relays()

    def test_failure_keeps_last_relays(self, vault, directory):
        directory.relays = [make_relay("US-NC#1", load=10, capacity_mbps=10000)]
        vault.save(CREDS)
        vault.fetch_relays()
        directory.error = UpstreamUnavailable("down")
        with pytest.raises(UpstreamUnavailable):
            vault.fetch_relays()
        assert [r.name for r in vault.last_relays] == ["US-NC#1"]


class TestRanking:

    def test_distance_breaks_ties(self):
        raleigh = TargetRegion()
        near = make_relay("US-NC#9", load=20, capacity_mbps=10000, lat=35.99, lon=-78.90)
        far = make_relay("US-CA#1", load=20, capacity_mbps=10000, lat=37.77, lon=-122.42)
        unknown = make_relay("US-XX#1", load=20, capacity_mbps=10000)

        ranked = rank_relays([unknown, far, near], raleigh)
        assert [r.name for r in ranked] == ["US-NC#9", "US-CA#1", "US-XX#1"]
        assert ranked[0].distance_km < 50
        assert ranked[2].distance_km is None

    def test_inputs_untouched(self):
        relay = make_relay("US-NC#9", load=20, capacity_mbps=10000, lat=35.99, lon=-78.90)
        ranked = rank_relays([relay])
        assert ranked[0].distance_km is not None
        assert relay.distance_km is None
        assert ranked[0] is not relay

    def test_haversine(self):
        assert haversine_km(0, 0, 0, 0) == 0
        # Raleigh to Washington DC is roughly 370 km
        assert 350 < haversine_km(35.7796, -78.6382, 38.9072, -77.0369) < 400

    def test_empty(self):
        assert rank_relays([]) == []


class TestParsing:

    def test_camel_case_entry(self):
        relay = parse_relay({
            "name": "US-NC#12",
            "hostname": "node-us-12.example",
            "country": "US",
            "city": "Raleigh",
            "load": 17,
            "capacityMbps": 10000,
            "location": {"lat": 35.78, "long": -78.64},
            "wireguardPublicKey": "abc=",
        })
        assert relay.load == 17
        assert relay.capacity_mbps == 10000
        assert relay.latitude == 35.78
        assert relay.supports_wireguard

    def test_defaults(self):
        relay = parse_relay({"name": "US-NC#1", "protocols": ["WireGuard"]})
        assert relay.hostname == "US-NC#1"
        assert relay.load == 100
        assert relay.capacity_mbps == 0
        assert relay.protocols == ["wireguard"]

    def test_missing_name(self):
        with pytest.raises(ValueError):
            parse_relay({"load": 3})

    def test_payload_shapes(self):
        entry = {"name": "US-NC#1"}
        assert len(parse_relay_payload([entry])) == 1
        assert len(parse_relay_payload({"relays": [entry, entry]})) == 2
        with pytest.raises(ValueError):
            parse_relay_payload({"servers": []})


class _DirectoryHandler(BaseHTTPRequestHandler):
    status = 200
    body = b"[]"
    seen_auth = []

    def do_GET(self):
        type(self).seen_auth.append(self.headers.get("Authorization"))
        self.send_response(self.status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(self.body)))
        self.end_headers()
        self.wfile.write(self.body)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def relay_server():
    handler = type("Handler", (_DirectoryHandler,), {"seen_auth": []})
    server = HTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server, handler
    server.shutdown()
    server.server_close()


class TestHttpRelayDirectory:

    def test_fetch(self, relay_server):
        server, handler = relay_server
        handler.body = json.dumps({"relays": [
            {"name": "US-NC#1", "load": 9, "capacityMbps": 10000, "protocols": ["wireguard"]},
        ]}).encode()

        directory = HttpRelayDirectory(f"http://127.0.0.1:{server.server_port}/relays")
        relays = directory.fetch(CREDS, timeout=2)

        assert [r.name for r in relays] == ["US-NC#1"]
        # base64("alice:s3cret")
        assert handler.seen_auth == ["Basic YWxpY2U6czNjcmV0"]

    def test_http_error(self, relay_server):
        server, handler = relay_server
        handler.status = 401
        handler.body = b'{"error": "unauthorized"}'

        directory = HttpRelayDirectory(f"http://127.0.0.1:{server.server_port}/relays")
        with pytest.raises(UpstreamUnavailable, match="401"):
            directory.fetch(CREDS, timeout=2)

    def test_malformed_payload(self, relay_server):
        server, handler = relay_server
        handler.body = b"not json"

        directory = HttpRelayDirectory(f"http://127.0.0.1:{server.server_port}/relays")
        with pytest.raises(UpstreamUnavailable, match="malformed"):
            directory.fetch(CREDS, timeout=2)

    def test_unreachable(self):
        directory = HttpRelayDirectory("http://127.0.0.1:9/relays")
        with pytest.raises(UpstreamUnavailable):
            directory.fetch(CREDS, timeout=1)
