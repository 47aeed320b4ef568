"""
Tests for the status feed and Prometheus export

Run with: python -m pytest wg_gateway/test_metrics_feed.py -v
"""

import time

import pytest

from wg_gateway.conftest import make_peer
from wg_gateway.metrics_feed import MetricsFeed, compute_status, is_active
from wg_gateway.models import ControllerSnapshot, ServiceState, SystemSample, TunnelHealth
from wg_gateway.peer_registry import PeerRegistry
from wg_gateway.prometheus_metrics import collect_metrics, format_prometheus
from wg_gateway.service_controller import ServiceController
from wg_gateway.system_metrics import StaticSampler

SECOND = 1_000_000_000
NOW = 1_800_000_000 * SECOND


def running_snapshot(health=TunnelHealth.CONNECTED):
    return ControllerSnapshot(ServiceState.RUNNING, health, health, NOW)


class TestComputeStatus:

    def test_totals_and_active_count(self):
        peers = [
            make_peer("fresh", last_seen=NOW - 10 * SECOND, data_usage=100),
            make_peer("edge", last_seen=NOW - 60 * SECOND, data_usage=200),
            make_peer("stale", last_seen=NOW - 61 * SECOND, data_usage=300),
            make_peer("never", data_usage=0),
        ]
        status = compute_status(running_snapshot(), peers, SystemSample(40.0, 1e6), NOW, 60)

        assert status.is_running is True
        assert status.total_peers == 4
        assert status.active_peers == 2
        assert status.total_data_usage == 600
        assert status.cpu_load == 40.0
        assert status.network_speed == 1e6
        assert status.tunnel_health == TunnelHealth.CONNECTED

    def test_stopped_controller(self):
        snapshot = ControllerSnapshot(ServiceState.STOPPED, TunnelHealth.DISCONNECTED,
                                      TunnelHealth.CONNECTED, NOW)
        status = compute_status(snapshot, [], SystemSample(), NOW)
        assert status.is_running is False
        assert status.tunnel_health == TunnelHealth.DISCONNECTED
        assert status.total_data_usage == 0

    def test_is_active_window(self):
        peer = make_peer("p", last_seen=NOW - 5 * SECOND)
        assert is_active(peer, NOW, 10)
        assert not is_active(peer, NOW, 4)
        assert not is_active(make_peer("q"), NOW, 10)

    def test_to_dict_field_names(self):
        status = compute_status(running_snapshot(), [], SystemSample(), NOW)
        assert set(status.to_dict()) == {
            "isRunning", "state", "activePeers", "totalPeers", "totalDataUsage",
            "cpuLoad", "networkSpeed", "tunnelHealth", "generatedAt",
        }


class TestMetricsFeed:

    @pytest.fixture
    def feed(self, db_path, launcher):
        registry = PeerRegistry(db_path)
        controller = ServiceController(launcher)
        return MetricsFeed(registry, controller, StaticSampler(5.0, 100.0), freshness_window=60)

    def test_usage_matches_registry(self, feed):
        registry = feed.registry
        registry.add(make_peer("a"))
        registry.add(make_peer("b", allowed_ips="10.0.0.3/32"))
        registry.record_activity("a", 1234)
        registry.record_activity("b", 766)

        status = feed.get_status()
        assert status.total_data_usage == sum(p.data_usage for p in registry.list()) == 2000
        assert status.active_peers == 2
        assert status.total_peers == 2

    def test_status_follows_controller(self, feed):
        assert feed.get_status().is_running is False
        feed.controller.start()
        status = feed.get_status()
        assert status.is_running is True
        assert status.state == ServiceState.RUNNING
        assert status.tunnel_health == TunnelHealth.CONNECTING

    def test_not_cached_between_reads(self, feed):
        feed.registry.add(make_peer("a"))
        first = feed.get_status()
        feed.registry.record_activity("a", 10)
        second = feed.get_status()
        assert first.total_data_usage == 0
        assert second.total_data_usage == 10

    def test_freshness_window_applies(self, feed):
        feed.registry.add(make_peer("a"))
        feed.registry.record_activity("a", 1, seen_at=time.time_ns() - 120 * SECOND)
        assert feed.get_status().active_peers == 0


class TestPrometheusExport:

    def test_format(self):
        peers = [make_peer("laptop", last_seen=NOW - 2 * SECOND, data_usage=42)]
        status = compute_status(running_snapshot(), peers, SystemSample(7.0, 8.0), NOW)
        text = format_prometheus(collect_metrics(status, peers))

        assert "# TYPE wg_gateway_up gauge" in text
        assert "wg_gateway_up 1.0" in text
        assert 'wg_gateway_service_state{state="running"} 1.0' in text
        assert 'wg_gateway_service_state{state="stopped"} 0.0' in text
        assert 'wg_gateway_tunnel_health{health="connected"} 1.0' in text
        assert 'wg_gateway_peers{kind="total"} 1.0' in text
        assert "wg_gateway_data_usage_bytes_total 42.0" in text
        assert 'wg_gateway_peer_data_usage_bytes{peer="laptop"} 42.0' in text
        assert 'wg_gateway_peer_last_seen_seconds{peer="laptop"} 2.0' in text

    def test_label_escaping(self):
        peers = [make_peer('odd"id', data_usage=1)]
        status = compute_status(running_snapshot(), peers, SystemSample(), NOW)
        text = format_prometheus(collect_metrics(status, peers))
        assert 'peer="odd\\"id"' in text
