"""
Tests for configuration loading

Run with: python -m pytest wg_gateway/test_config.py -v
"""

import pytest
import yaml

from wg_gateway.config import CONFIG_ENV_VAR, Settings, load_settings, settings_from_dict
from wg_gateway.errors import ConfigError


class TestSettingsFromDict:

    def test_empty(self):
        assert settings_from_dict(None) == Settings()
        assert settings_from_dict({}) == Settings()

    def test_sections(self):
        settings = settings_from_dict({
            'database': '/var/lib/wg-gateway/gateway.db',
            'interface': 'wg1',
            'enforce_unique_keys': False,
            'metrics': {'freshness_window': 120},
            'polling': {'peers_interval': 10, 'status_interval': 2.5},
            'relays': {'url': 'https://relays.example/api', 'timeout': 4},
            'api': {'port': 9090, 'token': 'abc'},
            'client': {'endpoint': 'vpn.example.net:51820'},
            'logging': {'level': 'debug'},
        })
        assert settings.db_path == '/var/lib/wg-gateway/gateway.db'
        assert settings.interface == 'wg1'
        assert settings.enforce_unique_keys is False
        assert settings.freshness_window == 120.0
        assert settings.peers_poll_interval == 10.0
        assert settings.status_poll_interval == 2.5
        assert settings.relay_url == 'https://relays.example/api'
        assert settings.relay_timeout == 4.0
        assert settings.api_port == 9090
        assert settings.api_token == 'abc'
        assert settings.client_endpoint == 'vpn.example.net:51820'
        assert settings.log_level == 'debug'

    def test_target_region(self):
        settings = settings_from_dict({'relays': {'target_name': 'Ashburn, VA',
                                                  'target_latitude': 39.04, 'target_longitude': -77.49}})
        region = settings.target_region
        assert region.name == 'Ashburn, VA'
        assert region.latitude == 39.04

    def test_unknown_keys_ignored(self, caplog):
        settings = settings_from_dict({'bogus': 1, 'api': {'colour': 'blue'}})
        assert settings == Settings()
        assert 'bogus' in caplog.text
        assert 'api.colour' in caplog.text

    @pytest.mark.parametrize("data", [
        {'api': {'port': 'eighty'}},
        {'api': {'port': True}},
        {'enforce_unique_keys': 'yes'},
        {'metrics': {'freshness_window': 'soon'}},
        {'metrics': {'freshness_window': 0}},
        {'relays': {'timeout': -1}},
        {'logging': {'level': 'chatty'}},
        {'api': 'not a mapping'},
    ])
    def test_invalid(self, data):
        with pytest.raises(ConfigError):
            settings_from_dict(data)

    def test_not_a_mapping(self):
        with pytest.raises(ConfigError):
            settings_from_dict(['a', 'b'])


class TestLoadSettings:

    def test_missing_default_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        assert load_settings() == Settings()

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_settings(str(tmp_path / 'nope.yaml'))

    def test_explicit_file(self, tmp_path):
        path = tmp_path / 'gateway.yaml'
        path.write_text(yaml.safe_dump({'interface': 'wg7', 'api': {'port': 8181}}))
        settings = load_settings(str(path))
        assert settings.interface == 'wg7'
        assert settings.api_port == 8181

    def test_env_var(self, tmp_path, monkeypatch):
        path = tmp_path / 'env.yaml'
        path.write_text("interface: wg3\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert load_settings().interface == 'wg3'

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / 'broken.yaml'
        path.write_text("api: [unclosed\n")
        with pytest.raises(ConfigError):
            load_settings(str(path))
