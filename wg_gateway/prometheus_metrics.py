"""
Prometheus Metrics Export for wg-gateway.

Renders a status snapshot and the peer list in Prometheus exposition format.

Metrics exposed:
- wg_gateway_up (gauge): 1 while the service is running
- wg_gateway_service_state (gauge): 1 for the current state, by state label
- wg_gateway_tunnel_health (gauge): 1 for the current health, by health label
- wg_gateway_peers (gauge): peer count by kind (total/active)
- wg_gateway_data_usage_bytes_total (counter): sum of all peers' usage
- wg_gateway_cpu_load_percent (gauge)
- wg_gateway_network_speed_bits (gauge)
- wg_gateway_peer_data_usage_bytes (counter): usage per peer
- wg_gateway_peer_last_seen_seconds (gauge): seconds since last activity per peer
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from wg_gateway.models import Peer, ServiceState, ServiceStatus, TunnelHealth


class MetricType(Enum):
    """Prometheus metric types."""
    COUNTER = "counter"
    GAUGE = "gauge"


@dataclass
class MetricValue:
    """A single metric value with labels."""
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class Metric:
    """A Prometheus metric definition."""
    name: str
    help_text: str
    metric_type: MetricType
    values: List[MetricValue] = field(default_factory=list)


def _escape_label(value: str) -> str:
    return value.replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\n')


def collect_metrics(status: ServiceStatus, peers: Optional[List[Peer]] = None) -> List[Metric]:
    """Turn a status snapshot (and optionally peers) into Metric objects"""
    metrics = [
        Metric("wg_gateway_up", "1 while the tunnel service is running", MetricType.GAUGE,
               [MetricValue(1.0 if status.is_running else 0.0)]),
        Metric("wg_gateway_service_state", "Current service state", MetricType.GAUGE,
               [MetricValue(1.0 if status.state == s else 0.0, {"state": s.value}) for s in ServiceState]),
        Metric("wg_gateway_tunnel_health", "Current tunnel health", MetricType.GAUGE,
               [MetricValue(1.0 if status.tunnel_health == h else 0.0, {"health": h.value}) for h in TunnelHealth]),
        Metric("wg_gateway_peers", "Peer count by kind", MetricType.GAUGE, [
            MetricValue(float(status.total_peers), {"kind": "total"}),
            MetricValue(float(status.active_peers), {"kind": "active"}),
        ]),
        Metric("wg_gateway_data_usage_bytes_total", "Sum of all peers' data usage", MetricType.COUNTER,
               [MetricValue(float(status.total_data_usage))]),
        Metric("wg_gateway_cpu_load_percent", "Host CPU load", MetricType.GAUGE,
               [MetricValue(float(status.cpu_load))]),
        Metric("wg_gateway_network_speed_bits", "Host network throughput in bits per second", MetricType.GAUGE,
               [MetricValue(float(status.network_speed))]),
    ]

    if peers:
        usage = Metric("wg_gateway_peer_data_usage_bytes", "Cumulative data usage per peer", MetricType.COUNTER)
        last_seen = Metric("wg_gateway_peer_last_seen_seconds", "Seconds since last peer activity", MetricType.GAUGE)
        for peer in peers:
            labels = {"peer": peer.id}
            usage.values.append(MetricValue(float(peer.data_usage), labels))
            if peer.last_seen is not None:
                age = max(0, status.generated_at - peer.last_seen) / 1_000_000_000
                last_seen.values.append(MetricValue(round(age, 3), labels))
        metrics.append(usage)
        if last_seen.values:
            metrics.append(last_seen)

    return metrics


def format_prometheus(metrics: List[Metric]) -> str:
    """Format metrics in Prometheus exposition format."""
    lines = []

    for metric in metrics:
        lines.append(f"# HELP {metric.name} {metric.help_text}")
        lines.append(f"# TYPE {metric.name} {metric.metric_type.value}")

        for mv in metric.values:
            if mv.labels:
                label_str = ",".join(
                    f'{k}="{_escape_label(v)}"' for k, v in sorted(mv.labels.items())
                )
                lines.append(f"{metric.name}{{{label_str}}} {mv.value}")
            else:
                lines.append(f"{metric.name} {mv.value}")

        lines.append("")

    return "\n".join(lines)
