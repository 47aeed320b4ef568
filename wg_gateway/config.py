"""
Configuration

Settings come from a YAML file (see config.example.yaml). Every key is
optional; a missing file means all defaults.

Lookup order for the file:
1. --config on the command line
2. WG_GATEWAY_CONFIG environment variable
3. ./wg-gateway.yaml
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from wg_gateway.errors import ConfigError
from wg_gateway.relays import TargetRegion

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "wg-gateway.yaml"
CONFIG_ENV_VAR = "WG_GATEWAY_CONFIG"


@dataclass
class Settings:
    """Flattened configuration"""
    db_path: str = "wg-gateway.db"
    interface: str = "wg0"
    enforce_unique_keys: bool = True

    freshness_window: float = 60.0
    peers_poll_interval: float = 5.0
    status_poll_interval: float = 3.0

    daemon_poll_interval: float = 5.0
    upstream_public_key: Optional[str] = None

    relay_url: Optional[str] = None
    relay_timeout: float = 10.0
    target_name: str = "Raleigh, NC"
    target_latitude: float = 35.7796
    target_longitude: float = -78.6382

    api_host: str = "127.0.0.1"
    api_port: int = 8080
    api_token: Optional[str] = None
    api_rate_limit: int = 100

    client_endpoint: str = "<SERVER_IP>:51820"
    client_dns: str = "1.1.1.1"
    client_keepalive: int = 25

    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def target_region(self) -> TargetRegion:
        return TargetRegion(self.target_name, self.target_latitude, self.target_longitude)


# (yaml section, yaml key) -> Settings field
_KEY_MAP = {
    (None, 'database'): 'db_path',
    (None, 'interface'): 'interface',
    (None, 'enforce_unique_keys'): 'enforce_unique_keys',
    ('metrics', 'freshness_window'): 'freshness_window',
    ('polling', 'peers_interval'): 'peers_poll_interval',
    ('polling', 'status_interval'): 'status_poll_interval',
    ('daemon', 'poll_interval'): 'daemon_poll_interval',
    ('daemon', 'upstream_public_key'): 'upstream_public_key',
    ('relays', 'url'): 'relay_url',
    ('relays', 'timeout'): 'relay_timeout',
    ('relays', 'target_name'): 'target_name',
    ('relays', 'target_latitude'): 'target_latitude',
    ('relays', 'target_longitude'): 'target_longitude',
    ('api', 'host'): 'api_host',
    ('api', 'port'): 'api_port',
    ('api', 'token'): 'api_token',
    ('api', 'rate_limit'): 'api_rate_limit',
    ('client', 'endpoint'): 'client_endpoint',
    ('client', 'dns'): 'client_dns',
    ('client', 'keepalive'): 'client_keepalive',
    ('logging', 'level'): 'log_level',
    ('logging', 'file'): 'log_file',
}

_SECTIONS = {section for section, _ in _KEY_MAP if section}
_FIELD_TYPES = {f.name: f.type for f in fields(Settings)}
_NULLABLE = {"upstream_public_key", "relay_url", "api_token", "log_file"}


def _coerce(field_name: str, value: Any) -> Any:
    if value is None:
        return None

    expected = _FIELD_TYPES[field_name]
    if expected is bool:
        if not isinstance(value, bool):
            raise ConfigError(f"{field_name} must be true or false, got {value!r}")
        return value
    if expected is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{field_name} must be an integer, got {value!r}")
        return value
    if expected is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"{field_name} must be a number, got {value!r}")
        return float(value)
    return str(value)


def settings_from_dict(data: Dict[str, Any]) -> Settings:
    """Build Settings from the parsed YAML mapping"""
    if data is None:
        return Settings()
    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a mapping")

    values = {}
    for key, value in data.items():
        if key in _SECTIONS:
            if not isinstance(value, dict):
                raise ConfigError(f"Config section '{key}' must be a mapping")
            for sub_key, sub_value in value.items():
                field_name = _KEY_MAP.get((key, sub_key))
                if field_name is None:
                    logger.warning(f"Ignoring unknown config key: {key}.{sub_key}")
                    continue
                values[field_name] = _coerce(field_name, sub_value)
        elif (None, key) in _KEY_MAP:
            field_name = _KEY_MAP[(None, key)]
            values[field_name] = _coerce(field_name, value)
        else:
            logger.warning(f"Ignoring unknown config key: {key}")

    settings = Settings(**{k: v for k, v in values.items() if v is not None or k in _NULLABLE})

    if settings.freshness_window <= 0:
        raise ConfigError("metrics.freshness_window must be positive")
    if settings.relay_timeout <= 0:
        raise ConfigError("relays.timeout must be positive")
    if not isinstance(getattr(logging, settings.log_level.upper(), None), int):
        raise ConfigError(f"Unknown log level: {settings.log_level}")

    return settings


def resolve_config_path(config_path: Optional[str] = None) -> Path:
    if config_path:
        return Path(config_path).expanduser()
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return Path(DEFAULT_CONFIG_NAME)


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Load configuration file"""
    path = resolve_config_path(config_path)
    if not path.exists():
        if config_path:
            raise ConfigError(f"Config file not found: {path}")
        logger.debug(f"No config file at {path}, using defaults")
        return Settings()

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    return settings_from_dict(data)


def setup_logging(settings: Settings):
    """Setup logging"""
    log_file = settings.log_file
    if log_file:
        log_file = Path(log_file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file) if log_file else logging.StreamHandler(),
        ]
    )
