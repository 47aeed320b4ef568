#!/usr/bin/env python3
"""
wg-gateway - WireGuard gateway control plane

Commands:
  serve                       Run the REST API with daemon polling
  status                      Show service status
  peers list|add|remove|config
  service start|stop|restart
  credentials set|show|clear
  relays                      Fetch and rank relays
"""

import argparse
import getpass
import logging
import sys
from datetime import datetime
from typing import Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from wg_gateway import __version__
from wg_gateway.app import Gateway
from wg_gateway.client_config import render_client_config
from wg_gateway.config import load_settings, setup_logging
from wg_gateway.errors import GatewayError
from wg_gateway.keygen import generate_keypair, generate_public_key
from wg_gateway.models import Peer, ProtonVpnCredentials, TunnelHealth

logger = logging.getLogger(__name__)

console = Console()

HEALTH_STYLES = {
    TunnelHealth.CONNECTED: "green",
    TunnelHealth.CONNECTING: "yellow",
    TunnelHealth.RESTARTING: "yellow",
    TunnelHealth.DISCONNECTED: "red",
}


def format_bytes(num_bytes: int) -> str:
    """Human-readable byte count"""
    value = float(num_bytes)
    for unit in ('B', 'KB', 'MB', 'GB', 'TB'):
        if value < 1024 or unit == 'TB':
            return f"{value:.0f} {unit}" if unit == 'B' else f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} TB"


def format_speed(bits_per_second: float) -> str:
    if bits_per_second >= 1_000_000_000:
        return f"{bits_per_second / 1_000_000_000:.2f} Gbps"
    return f"{bits_per_second / 1_000_000:.2f} Mbps"


def format_timestamp(ns: Optional[int]) -> str:
    if ns is None:
        return "Never"
    return datetime.fromtimestamp(ns / 1_000_000_000).strftime('%Y-%m-%d %H:%M:%S')


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_serve(args, gateway: Gateway):
    from wg_gateway.rest_api import run_api_server

    if args.host:
        gateway.settings.api_host = args.host
    if args.port:
        gateway.settings.api_port = args.port

    gateway.controller.sync()
    gateway.start_background(poll_daemon=not args.no_poll)
    try:
        run_api_server(gateway)
    finally:
        gateway.shutdown()


def cmd_status(args, gateway: Gateway):
    gateway.controller.sync()
    status = gateway.feed.get_status()

    health_style = HEALTH_STYLES[status.tunnel_health]
    lines = [
        f"Service:      {'[green]running[/green]' if status.is_running else f'[red]{status.state.value}[/red]'}",
        f"Tunnel:       [{health_style}]{status.tunnel_health.value}[/{health_style}]",
        f"Peers:        {status.active_peers} active / {status.total_peers} total",
        f"Data usage:   {format_bytes(status.total_data_usage)}",
        f"CPU load:     {status.cpu_load}%",
        f"Network:      {format_speed(status.network_speed)}",
    ]
    console.print(Panel("\n".join(lines), title=f"wg-gateway ({gateway.settings.interface})", box=box.ROUNDED))


def cmd_peers_list(args, gateway: Gateway):
    peers = gateway.registry.list()
    if not peers:
        console.print("[dim]No peers configured[/dim]")
        return

    table = Table(title="Peers", box=box.ROUNDED)
    table.add_column("ID", style="cyan")
    table.add_column("Public Key", style="dim")
    table.add_column("Allowed IPs")
    table.add_column("Created")
    table.add_column("Last Seen")
    table.add_column("Usage", justify="right", style="bold")

    for peer in peers:
        table.add_row(
            peer.id,
            peer.public_key[:20] + "...",
            peer.allowed_ips,
            format_timestamp(peer.created_at),
            format_timestamp(peer.last_seen),
            format_bytes(peer.data_usage),
        )

    console.print(table)


def _print_config(gateway: Gateway, peer: Peer, private_key: Optional[str] = None):
    settings = gateway.settings
    kwargs = {}
    if private_key:
        kwargs['private_key'] = private_key
    config = render_client_config(
        peer,
        endpoint=settings.client_endpoint,
        keepalive=settings.client_keepalive,
        dns=settings.client_dns,
        **kwargs,
    )
    console.print(Panel(config, title=f"Client config: {peer.id}", box=box.ROUNDED))


def cmd_peers_add(args, gateway: Gateway):
    private_key = None
    public_key = args.public_key or ""

    if args.keypair:
        if public_key:
            raise GatewayError("--keypair and --public-key are mutually exclusive")
        private_key, public_key = generate_keypair()
    elif not public_key:
        public_key = generate_public_key()

    peer = gateway.registry.add(Peer(id=args.id, public_key=public_key, allowed_ips=args.allowed_ips))
    console.print(f"[green]✓[/green] Added peer [cyan]{peer.id}[/cyan] ({peer.allowed_ips})")

    if private_key:
        console.print("[yellow]The private key below is not stored. Save it now.[/yellow]")
        _print_config(gateway, peer, private_key)


def cmd_peers_remove(args, gateway: Gateway):
    peer = gateway.registry.get(args.id)
    if not args.yes and not Confirm.ask(f"Remove peer [cyan]{peer.id}[/cyan]?", default=False):
        console.print("Cancelled")
        return
    gateway.registry.remove(peer.id)
    console.print(f"[green]✓[/green] Removed peer [cyan]{peer.id}[/cyan]")


def cmd_peers_config(args, gateway: Gateway):
    _print_config(gateway, gateway.registry.get(args.id))


def cmd_service(args, gateway: Gateway):
    controller = gateway.controller
    controller.sync()
    action = {'start': controller.start, 'stop': controller.stop, 'restart': controller.restart}[args.action]
    state = action()
    console.print(f"Service is [bold]{state.value}[/bold]")


def cmd_credentials(args, gateway: Gateway):
    vault = gateway.vault

    if args.action == 'set':
        username = args.username or console.input("Username: ")
        password = args.password or getpass.getpass("Password: ")
        vault.save(ProtonVpnCredentials(username=username, password=password))
        console.print(f"[green]✓[/green] Saved credentials for [cyan]{username}[/cyan]")

    elif args.action == 'show':
        credentials = vault.get()
        if credentials is None:
            console.print("[dim]No credentials saved[/dim]")
        else:
            console.print(f"Username: [cyan]{credentials.username}[/cyan]")
            console.print(f"Saved:    {format_timestamp(credentials.saved_at)}")

    elif args.action == 'clear':
        if vault.clear():
            console.print("[green]✓[/green] Credentials cleared")
        else:
            console.print("[dim]No credentials saved[/dim]")


def cmd_relays(args, gateway: Gateway):
    with console.status("Fetching relays..."):
        relays = gateway.vault.fetch_relays()

    if not relays:
        console.print("[dim]No WireGuard-capable relays offered[/dim]")
        return

    table = Table(title=f"Relays near {gateway.settings.target_name}", box=box.ROUNDED)
    table.add_column("#", style="dim", width=3)
    table.add_column("Name", style="cyan")
    table.add_column("Location")
    table.add_column("Load", justify="right")
    table.add_column("Capacity", justify="right")
    table.add_column("Distance", justify="right", style="dim")

    for index, relay in enumerate(relays[:args.limit], 1):
        location = ", ".join(part for part in (relay.city, relay.country) if part)
        distance = f"{relay.distance_km:.0f} km" if relay.distance_km is not None else "-"
        table.add_row(
            str(index),
            relay.name,
            location,
            f"{relay.load}%",
            f"{relay.capacity_mbps / 1000:g} Gbps",
            distance,
        )

    console.print(table)


# =============================================================================
# PARSER
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wg-gateway", description="WireGuard gateway control plane")
    parser.add_argument('--config', '-c', help='Path to YAML config file')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    sub = parser.add_subparsers(dest='cmd')

    p_serve = sub.add_parser('serve', help='Run the REST API')
    p_serve.add_argument('--host')
    p_serve.add_argument('--port', type=int)
    p_serve.add_argument('--no-poll', action='store_true', help="Don't poll wg show")
    p_serve.set_defaults(func=cmd_serve)

    p_status = sub.add_parser('status', help='Show service status')
    p_status.set_defaults(func=cmd_status)

    p_peers = sub.add_parser('peers', help='Manage peers')
    peers_sub = p_peers.add_subparsers(dest='peers_cmd')

    p_list = peers_sub.add_parser('list')
    p_list.set_defaults(func=cmd_peers_list)

    p_add = peers_sub.add_parser('add')
    p_add.add_argument('id')
    p_add.add_argument('--public-key', help='Leave empty to auto-generate')
    p_add.add_argument('--allowed-ips', default='10.0.0.2/32')
    p_add.add_argument('--keypair', action='store_true', help='Generate a real keypair and print the client config')
    p_add.set_defaults(func=cmd_peers_add)

    p_rm = peers_sub.add_parser('remove')
    p_rm.add_argument('id')
    p_rm.add_argument('--yes', '-y', action='store_true')
    p_rm.set_defaults(func=cmd_peers_remove)

    p_conf = peers_sub.add_parser('config')
    p_conf.add_argument('id')
    p_conf.set_defaults(func=cmd_peers_config)

    p_service = sub.add_parser('service', help='Control the tunnel service')
    p_service.add_argument('action', choices=['start', 'stop', 'restart'])
    p_service.set_defaults(func=cmd_service)

    p_creds = sub.add_parser('credentials', help='Relay provider credentials')
    p_creds.add_argument('action', choices=['set', 'show', 'clear'])
    p_creds.add_argument('--username')
    p_creds.add_argument('--password')
    p_creds.set_defaults(func=cmd_credentials)

    p_relays = sub.add_parser('relays', help='Fetch and rank relays')
    p_relays.add_argument('--limit', type=int, default=10)
    p_relays.set_defaults(func=cmd_relays)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, 'func'):
        parser.print_help()
        return 1

    gateway = None
    try:
        settings = load_settings(args.config)
        setup_logging(settings)
        gateway = Gateway(settings)
        args.func(args, gateway)
        return 0
    except GatewayError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        return 1
    except KeyboardInterrupt:
        console.print("\nCancelled")
        return 130
    finally:
        if gateway is not None and args.func is not cmd_serve:
            gateway.shutdown()


if __name__ == '__main__':
    sys.exit(main())
