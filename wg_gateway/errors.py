"""
Gateway Errors

Every command either commits or raises one of these, leaving prior state
intact. status_code is what the REST layer answers with.
"""


class GatewayError(Exception):
    """Base error with HTTP status code."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidPeerError(GatewayError):
    status_code = 400


class DuplicateIdError(GatewayError):
    status_code = 409

    def __init__(self, peer_id: str):
        self.peer_id = peer_id
        super().__init__(f"Peer already exists: {peer_id}")


class DuplicatePublicKeyError(GatewayError):
    status_code = 409

    def __init__(self, public_key: str, owner_id: str):
        self.public_key = public_key
        self.owner_id = owner_id
        super().__init__(f"Public key already in use by peer: {owner_id}")


class NotFoundError(GatewayError):
    status_code = 404

    def __init__(self, peer_id: str):
        self.peer_id = peer_id
        super().__init__(f"Peer not found: {peer_id}")


class ServiceStartFailed(GatewayError):
    """Tunnel daemon could not be brought up. Controller is back in stopped."""
    status_code = 502


class ServiceStopFailed(GatewayError):
    """Tunnel daemon could not be brought down. Controller is back in running."""
    status_code = 502


class UpstreamUnavailable(GatewayError):
    """Relay directory failed, timed out or returned garbage."""
    status_code = 503


class NoCredentialsError(GatewayError):
    status_code = 412

    def __init__(self, message: str = "No relay provider credentials saved"):
        super().__init__(message)


class InvalidCredentialsError(GatewayError):
    status_code = 400


class ConfigError(GatewayError):
    status_code = 500
