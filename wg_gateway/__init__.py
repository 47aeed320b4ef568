"""
wg-gateway - WireGuard gateway control plane

Peer registry, service state machine, status feed and relay selection
for a single WireGuard tunnel endpoint.
"""

__version__ = "0.1.0"
