"""
Client Config Export

The configuration text block handed to a peer's owner. The peer record
supplies the interface address and the public key; everything else is
filled in by the caller, defaulting to the placeholders the operator
replaces by hand.
"""

from wg_gateway.models import Peer

CLIENT_TEMPLATE = """[Interface]
PrivateKey = {private_key}
Address = {address}
DNS = {dns}

[Peer]
PublicKey = {public_key}
Endpoint = {endpoint}
AllowedIPs = {allowed_ips}
PersistentKeepalive = {keepalive}"""


def render_client_config(
    peer: Peer,
    endpoint: str = "<SERVER_IP>:51820",
    keepalive: int = 25,
    dns: str = "1.1.1.1",
    private_key: str = "<CLIENT_PRIVATE_KEY>",
    allowed_ips: str = "0.0.0.0/0",
) -> str:
    """Render the client block for peer (no trailing newline)"""
    return CLIENT_TEMPLATE.format(
        private_key=private_key,
        address=peer.allowed_ips,
        dns=dns,
        public_key=peer.public_key,
        endpoint=endpoint,
        allowed_ips=allowed_ips,
        keepalive=keepalive,
    )
