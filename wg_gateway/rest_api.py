"""
wg-gateway REST API

The command surface the dashboard talks to.

Endpoints:
  GET    /api/v1/health                - Health check and poll-interval hints
  GET    /api/v1/status                - Service status snapshot
  GET    /api/v1/peers                 - List peers
  POST   /api/v1/peers                 - Add peer
  GET    /api/v1/peers/{id}            - Get peer
  DELETE /api/v1/peers/{id}            - Remove peer
  GET    /api/v1/peers/{id}/config     - Client config text block
  POST   /api/v1/service/start         - Start tunnel service
  POST   /api/v1/service/stop          - Stop tunnel service
  POST   /api/v1/service/restart       - Restart tunnel service
  GET    /api/v1/credentials           - Saved relay credentials (password masked)
  PUT    /api/v1/credentials           - Save relay credentials
  GET    /api/v1/relays                - Last fetched relay ranking
  POST   /api/v1/relays/fetch          - Discover and rank relays
  POST   /api/v1/daemon/activity       - Daemon activity report
  POST   /api/v1/daemon/health         - Daemon health report
  GET    /api/v1/metrics               - Prometheus metrics

Authentication:
  - Bearer token in Authorization header (when api.token is set)
  - Rate limiting per client IP
"""

import hmac
import json
import logging
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, List
from urllib.parse import unquote, urlparse

from wg_gateway.app import Gateway
from wg_gateway.client_config import render_client_config
from wg_gateway.errors import GatewayError
from wg_gateway.keygen import generate_public_key
from wg_gateway.models import Peer, ProtonVpnCredentials, TunnelHealth
from wg_gateway.prometheus_metrics import collect_metrics, format_prometheus

logger = logging.getLogger(__name__)

API_PREFIX = '/api/v1'


class RateLimiter:
    """Simple rate limiter per IP address."""

    def __init__(self, max_requests: int = 100, window_seconds: int = 60):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.requests: Dict[str, List[float]] = {}
        self.lock = threading.Lock()
        self._last_sweep = time.time()

    def _sweep(self, now: float, cutoff: float):
        """Forget clients with no requests inside the window"""
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        for ip in [ip for ip, times in self.requests.items() if not times or times[-1] <= cutoff]:
            del self.requests[ip]

    def is_allowed(self, client_ip: str) -> bool:
        now = time.time()
        cutoff = now - self.window_seconds

        with self.lock:
            self._sweep(now, cutoff)
            recent = [t for t in self.requests.get(client_ip, []) if t > cutoff]
            if len(recent) >= self.max_requests:
                self.requests[client_ip] = recent
                return False
            recent.append(now)
            self.requests[client_ip] = recent
            return True


class APIError(GatewayError):
    """Malformed request"""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def _require_object(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise APIError("Request body must be a JSON object")
    return data


class GatewayAPI:
    """Maps API calls onto a Gateway; every method returns JSON-ready data"""

    def __init__(self, gateway: Gateway):
        self.gateway = gateway
        self.settings = gateway.settings
        self.rate_limiter = RateLimiter(gateway.settings.api_rate_limit)

    def authenticate(self, headers: Dict[str, str]) -> bool:
        """Verify authentication."""
        if not self.settings.api_token:
            return True

        auth_header = headers.get('Authorization', '')
        if auth_header.startswith('Bearer '):
            return hmac.compare_digest(auth_header[7:], self.settings.api_token)
        return False

    # =========================================================================
    # STATUS
    # =========================================================================

    def get_health(self) -> Dict:
        return {
            "status": "healthy",
            "pollIntervals": {
                "peers": self.settings.peers_poll_interval,
                "status": self.settings.status_poll_interval,
            },
        }

    def get_status(self) -> Dict:
        return self.gateway.feed.get_status().to_dict()

    def get_metrics(self) -> str:
        status = self.gateway.feed.get_status()
        return format_prometheus(collect_metrics(status, self.gateway.registry.list()))

    # =========================================================================
    # PEERS
    # =========================================================================

    def list_peers(self) -> Dict:
        peers = [p.to_dict() for p in self.gateway.registry.list()]
        return {"peers": peers, "count": len(peers)}

    def get_peer(self, peer_id: str) -> Dict:
        return {"peer": self.gateway.registry.get(peer_id).to_dict()}

    def add_peer(self, data: Dict) -> Dict:
        """Add a peer, substituting a generated key when none was given."""
        data = _require_object(data)
        # Usage and activity belong to the registry; only identity comes from the caller
        peer = Peer(
            id=data.get('id') or '',
            public_key=data.get('publicKey') or generate_public_key(),
            allowed_ips=data.get('allowedIps') or '',
        )

        return {"peer": self.gateway.registry.add(peer).to_dict()}

    def delete_peer(self, peer_id: str) -> Dict:
        removed = self.gateway.registry.remove(peer_id)
        return {"deleted": True, "id": removed.id}

    def get_peer_config(self, peer_id: str) -> Dict:
        peer = self.gateway.registry.get(peer_id)
        config = render_client_config(
            peer,
            endpoint=self.settings.client_endpoint,
            keepalive=self.settings.client_keepalive,
            dns=self.settings.client_dns,
        )
        return {"id": peer.id, "config": config}

    # =========================================================================
    # SERVICE
    # =========================================================================

    def service_command(self, command: str) -> Dict:
        controller = self.gateway.controller
        actions = {
            'start': controller.start,
            'stop': controller.stop,
            'restart': controller.restart,
        }
        if command not in actions:
            raise APIError(f"Unknown service command: {command}", 404)

        state = actions[command]()
        return {"state": state.value, "status": self.get_status()}

    # =========================================================================
    # CREDENTIALS & RELAYS
    # =========================================================================

    def get_credentials(self) -> Dict:
        credentials = self.gateway.vault.get()
        return {"credentials": credentials.to_public_dict() if credentials else None}

    def save_credentials(self, data: Dict) -> Dict:
        data = _require_object(data)
        self.gateway.vault.save(ProtonVpnCredentials(
            username=str(data.get('username') or ''),
            password=str(data.get('password') or ''),
        ))
        return {"saved": True}

    def get_relays(self) -> Dict:
        relays = [r.to_dict() for r in self.gateway.vault.last_relays]
        return {"relays": relays, "count": len(relays)}

    def fetch_relays(self) -> Dict:
        relays = [r.to_dict() for r in self.gateway.vault.fetch_relays()]
        return {"relays": relays, "count": len(relays)}

    # =========================================================================
    # DAEMON REPORTS
    # =========================================================================

    def daemon_activity(self, data: Dict) -> Dict:
        data = _require_object(data)
        reports = data.get('reports', [data])
        if not isinstance(reports, list):
            raise APIError("reports must be a list")

        accepted = 0
        for report in reports:
            report = _require_object(report)
            peer_id = report.get('id')
            try:
                delta = int(report.get('bytesDelta', 0))
            except (TypeError, ValueError) as e:
                raise APIError(f"Invalid bytesDelta: {e}") from e
            if not peer_id:
                raise APIError("Activity report needs an id")
            if self.gateway.adapter.submit_activity(str(peer_id), delta):
                accepted += 1
        return {"accepted": accepted}

    def daemon_health(self, data: Dict) -> Dict:
        data = _require_object(data)
        value = data.get('health')
        try:
            TunnelHealth(value)
        except ValueError as e:
            raise APIError(f"Invalid health value: {value!r}") from e
        return {"accepted": self.gateway.adapter.submit_health(value)}


class APIRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the API."""

    api: GatewayAPI = None

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.client_address[0], format % args)

    def _send_json(self, data: Dict, status_code: int = 200):
        body = json.dumps(data, indent=2).encode('utf-8')
        self.send_response(status_code)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', str(len(body)))
        self.send_header('Access-Control-Allow-Origin', '*')
        self.send_header('Access-Control-Allow-Methods', 'GET, POST, PUT, DELETE, OPTIONS')
        self.send_header('Access-Control-Allow-Headers', 'Authorization, Content-Type')
        self.end_headers()
        self.wfile.write(body)

    def _send_text(self, text: str, content_type: str = 'text/plain', status_code: int = 200):
        body = text.encode('utf-8')
        self.send_response(status_code)
        self.send_header('Content-Type', content_type)
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_error(self, message: str, status_code: int = 400):
        self._send_json({"error": message}, status_code)

    def _get_body(self) -> Any:
        try:
            content_length = int(self.headers.get('Content-Length', 0))
        except ValueError as e:
            raise APIError("Invalid Content-Length header") from e
        if content_length < 0:
            raise APIError("Invalid Content-Length header")
        if content_length == 0:
            return {}
        body = self.rfile.read(content_length)
        try:
            return json.loads(body.decode('utf-8'))
        except (ValueError, UnicodeDecodeError) as e:
            raise APIError(f"Invalid JSON body: {e}") from e

    def _path_parts(self) -> List[str]:
        """Path segments after /api/v1, URL-decoded"""
        path = urlparse(self.path).path
        if not path.startswith(API_PREFIX):
            return []
        return [unquote(p) for p in path[len(API_PREFIX):].split('/') if p]

    def _guard(self) -> bool:
        if not self.api.rate_limiter.is_allowed(self.client_address[0]):
            self._send_error("Rate limit exceeded", 429)
            return False
        if self._path_parts() != ['health'] and not self.api.authenticate(dict(self.headers.items())):
            self._send_error("Unauthorized", 401)
            return False
        return True

    def _dispatch(self, handler):
        if not self._guard():
            return
        try:
            handler(self._path_parts())
        except GatewayError as e:
            self._send_error(e.message, e.status_code)
        except Exception as e:
            logger.exception(f"Unhandled error for {self.command} {self.path}")
            self._send_error(f"Internal error: {e}", 500)

    def do_OPTIONS(self):
        self.send_response(204)
        self.send_header('Access-Control-Allow-Origin', '*')
        self.send_header('Access-Control-Allow-Methods', 'GET, POST, PUT, DELETE, OPTIONS')
        self.send_header('Access-Control-Allow-Headers', 'Authorization, Content-Type')
        self.end_headers()

    def do_GET(self):
        self._dispatch(self._handle_get)

    def do_POST(self):
        self._dispatch(self._handle_post)

    def do_PUT(self):
        self._dispatch(self._handle_put)

    def do_DELETE(self):
        self._dispatch(self._handle_delete)

    def _handle_get(self, parts: List[str]):
        if parts == ['health']:
            self._send_json(self.api.get_health())
        elif parts == ['status']:
            self._send_json(self.api.get_status())
        elif parts == ['peers']:
            self._send_json(self.api.list_peers())
        elif len(parts) == 2 and parts[0] == 'peers':
            self._send_json(self.api.get_peer(parts[1]))
        elif len(parts) == 3 and parts[0] == 'peers' and parts[2] == 'config':
            self._send_json(self.api.get_peer_config(parts[1]))
        elif parts == ['credentials']:
            self._send_json(self.api.get_credentials())
        elif parts == ['relays']:
            self._send_json(self.api.get_relays())
        elif parts == ['metrics']:
            self._send_text(self.api.get_metrics(), 'text/plain; version=0.0.4')
        else:
            self._send_error("Not found", 404)

    def _handle_post(self, parts: List[str]):
        if parts == ['peers']:
            self._send_json(self.api.add_peer(self._get_body()), 201)
        elif len(parts) == 2 and parts[0] == 'service':
            self._send_json(self.api.service_command(parts[1]))
        elif parts == ['relays', 'fetch']:
            self._send_json(self.api.fetch_relays())
        elif parts == ['daemon', 'activity']:
            self._send_json(self.api.daemon_activity(self._get_body()), 202)
        elif parts == ['daemon', 'health']:
            self._send_json(self.api.daemon_health(self._get_body()), 202)
        else:
            self._send_error("Not found", 404)

    def _handle_put(self, parts: List[str]):
        if parts == ['credentials']:
            self._send_json(self.api.save_credentials(self._get_body()))
        else:
            self._send_error("Not found", 404)

    def _handle_delete(self, parts: List[str]):
        if len(parts) == 2 and parts[0] == 'peers':
            self._send_json(self.api.delete_peer(parts[1]))
        else:
            self._send_error("Not found", 404)


def make_server(gateway: Gateway, host: str = None, port: int = None) -> ThreadingHTTPServer:
    """Build (but don't start) the HTTP server for gateway"""
    api = GatewayAPI(gateway)
    handler = type('Handler', (APIRequestHandler,), {'api': api})
    return ThreadingHTTPServer(
        (host or gateway.settings.api_host, port if port is not None else gateway.settings.api_port),
        handler,
    )


def run_api_server(gateway: Gateway) -> None:
    """Run the API server until interrupted."""
    server = make_server(gateway)
    host, port = server.server_address[:2]
    logger.info(f"API listening on http://{host}:{port} (auth {'enabled' if gateway.settings.api_token else 'disabled'})")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down API server")
    finally:
        server.server_close()
